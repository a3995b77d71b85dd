import pytest

from protocol.config.params import StakingConfig, SECONDS_PER_DAY
from staking.core.contract import StakingContract
from staking.core.token import InMemoryToken

DAY = SECONDS_PER_DAY
LIFETIME = 365 * DAY
T0 = 1_700_000_000

ADMIN = "admin"
ALICE = "alice"
BOB = "bob"
CAROL = "carol"


class FakeClock:
    """Controllable clock; tests move time explicitly."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


def make_config(**overrides) -> StakingConfig:
    params = dict(
        network_id="test",
        reward_lifetime_sec=LIFETIME,
        fixed_apr_bps=500,
        max_stakable=1_000_000,
        check_invariants=True,
        admin_address=ADMIN,
    )
    params.update(overrides)
    return StakingConfig(**params)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token():
    return InMemoryToken(
        symbol="dst",
        balances={ADMIN: 10_000_000, ALICE: 100_000, BOB: 100_000, CAROL: 100_000},
    )


@pytest.fixture
def contract(token, clock):
    c = StakingContract(token=token, admin=ADMIN, config=make_config(), clock=clock)
    yield c
    c.close()
