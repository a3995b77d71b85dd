import pytest
from fastapi.testclient import TestClient

from protocol.types.common import OpType
from protocol.types.request import SignedRequest
from protocol.crypto.keys import public_key_from_private
from protocol.crypto.addresses import address_from_pubkey
from staking.rpc import api
from staking.rpc.auth import RequestVerifier
from staking.core.contract import StakingContract
from staking.core.token import InMemoryToken
from staking.storage.db import StorageDB
from conftest import DAY, LIFETIME, FakeClock, make_config


class Signer:
    """A deterministic test key that builds signed requests."""

    def __init__(self, seed: int):
        self.priv = seed.to_bytes(32, "big")
        self.pub = public_key_from_private(self.priv)
        self.address = address_from_pubkey(self.pub)

    def request(self, op: OpType, nonce: int, caller: str = None, **params) -> dict:
        req = SignedRequest(op=op, caller=caller or self.address, nonce=nonce,
                            params=params, pub_key=self.pub.hex())
        req.sign(self.priv)
        return req.model_dump(mode="json")


ADMIN_KEY = Signer(1)
ALICE_KEY = Signer(2)
MALLORY_KEY = Signer(3)


@pytest.fixture
def node(clock):
    token = InMemoryToken(symbol="dst", balances={
        ADMIN_KEY.address: 10_000_000, ALICE_KEY.address: 100_000, MALLORY_KEY.address: 100,
    })
    c = StakingContract(token=token, admin=ADMIN_KEY.address, config=make_config(), clock=clock)
    api.contract = c
    api.verifier = RequestVerifier()
    yield c
    api.contract = None
    api.verifier = None
    c.close()


@pytest.fixture
def client(node):
    return TestClient(api.app)


class Session:
    """Tracks each signer's nonce the way the client CLI fetches it."""

    def __init__(self, client):
        self.client = client

    def send(self, path, op, signer, **params):
        nonce = self.client.get(f"/nonce/{signer.address}").json()["nonce"]
        return self.client.post(path, json=signer.request(op, nonce, **params))


@pytest.fixture
def session(client):
    return Session(client)


# ═══════════════════════════════════════════════════════════════════
# VIEWS
# ═══════════════════════════════════════════════════════════════════

def test_status_stringifies_amounts(client):
    r = client.get("/status")
    assert r.status_code == 200
    body = r.json()
    assert body["network"] == "test"
    assert body["max_stakable"] == "1000000"
    assert body["total_staked"] == "0"


def test_uninitialized_node(client):
    api.contract = None
    assert client.get("/status").status_code == 503


# ═══════════════════════════════════════════════════════════════════
# AUTHENTICATION
# ═══════════════════════════════════════════════════════════════════

def test_impersonated_admin_cannot_allocate(session, client, node):
    session.send("/admin/deposit_dynamic", OpType.DEPOSIT_DYNAMIC, ADMIN_KEY, amount="5000")

    # Mallory names the admin as caller but can only sign with her own key
    forged = MALLORY_KEY.request(
        OpType.ALLOCATE_DYNAMIC, 0, caller=ADMIN_KEY.address,
        addresses=[MALLORY_KEY.address], amounts=["5000"], total="5000",
    )
    r = client.post("/admin/allocate_dynamic", json=forged)
    assert r.status_code == 401
    assert "pub_key mismatch" in r.json()["detail"]

    # Signing as herself gets her authenticated, and then refused as non-admin
    r = session.send("/admin/allocate_dynamic", OpType.ALLOCATE_DYNAMIC, MALLORY_KEY,
                     addresses=[MALLORY_KEY.address], amounts=["5000"], total="5000")
    assert r.status_code == 403

    assert node.dynamic_tokens_to_allocate == 5000
    assert node.stake_info(MALLORY_KEY.address).pending_dynamic_reward == 0


def test_unsigned_and_tampered_requests_rejected(client, node):
    unsigned = SignedRequest(op=OpType.STAKE, caller=ALICE_KEY.address, nonce=0,
                             params={"amount": "10"}).model_dump(mode="json")
    assert client.post("/stake", json=unsigned).status_code == 401

    tampered = ALICE_KEY.request(OpType.STAKE, 0, amount="10")
    tampered["params"]["amount"] = "90000"
    r = client.post("/stake", json=tampered)
    assert r.status_code == 401
    assert "Invalid signature" in r.json()["detail"]

    # A stake signature is not valid on another endpoint
    wrong_op = ALICE_KEY.request(OpType.STAKE, 0, amount="10")
    assert client.post("/unstake", json=wrong_op).status_code == 401

    assert node.total_staked == 0


def test_nonce_blocks_replay(client, node):
    first = ALICE_KEY.request(OpType.STAKE, 0, amount="10")
    assert client.post("/stake", json=first).status_code == 200
    assert client.get(f"/nonce/{ALICE_KEY.address}").json()["nonce"] == 1

    r = client.post("/stake", json=first)
    assert r.status_code == 401
    assert "Invalid nonce" in r.json()["detail"]
    assert node.staked_amount(ALICE_KEY.address) == 10


def test_nonces_survive_restart(tmp_path):
    db = StorageDB(str(tmp_path / "staking.db"))
    verifier = RequestVerifier(db)
    verifier.verify(SignedRequest(**ALICE_KEY.request(OpType.CLAIM, 0)), OpType.CLAIM)
    verifier.verify(SignedRequest(**ALICE_KEY.request(OpType.CLAIM, 1)), OpType.CLAIM)
    db.close()

    db = StorageDB(str(tmp_path / "staking.db"))
    assert RequestVerifier(db).next_nonce(ALICE_KEY.address) == 2
    db.close()


# ═══════════════════════════════════════════════════════════════════
# OPERATIONS
# ═══════════════════════════════════════════════════════════════════

def test_stake_and_claim_flow(session, client, clock):
    r = session.send("/admin/deposit_fixed", OpType.DEPOSIT_FIXED, ADMIN_KEY, amount="1000")
    assert r.json() == {"status": "ok", "fixed_rewards_available": "1000"}
    assert session.send("/admin/start_clock", OpType.START_CLOCK, ADMIN_KEY).status_code == 200

    r = session.send("/stake", OpType.STAKE, ALICE_KEY, amount="1000")
    assert r.status_code == 200
    assert r.json()["staked"] == "1000"

    clock.advance(LIFETIME)
    account = client.get(f"/account/{ALICE_KEY.address}").json()
    assert account["amount"] == "1000"
    assert account["pending_fixed_reward"] == "50"

    claimed = session.send("/claim", OpType.CLAIM, ALICE_KEY).json()
    assert claimed["fixed_reward"] == "50"
    assert client.get(f"/balance/{ALICE_KEY.address}").json()["balance"] == str(100_000 - 1000 + 50)

    share = client.get(f"/account/{ALICE_KEY.address}/percentage").json()
    assert (share["total_staked"], share["individual_staked"]) == ("1000", "1000")

    events = client.get("/events", params={"limit": 2}).json()["events"]
    assert [e["op"] for e in events] == ["STAKE", "CLAIM"]


def test_error_mapping(session, clock):
    r = session.send("/admin/start_clock", OpType.START_CLOCK, ALICE_KEY)
    assert r.status_code == 403
    assert r.json()["detail"].startswith("Unauthorized")

    # Policy violation and malformed amounts
    assert session.send("/stake", OpType.STAKE, ALICE_KEY, amount="0").status_code == 400
    assert session.send("/stake", OpType.STAKE, ALICE_KEY, amount="ten").status_code == 400
    assert session.send("/stake", OpType.STAKE, ALICE_KEY).status_code == 400
    assert session.send("/admin/allocate_dynamic", OpType.ALLOCATE_DYNAMIC, ADMIN_KEY,
                        addresses=[ALICE_KEY.address], amounts=["1", "2"], total="0").status_code == 400

    # Funding shortfall and refused transfers
    session.send("/admin/start_clock", OpType.START_CLOCK, ADMIN_KEY)
    session.send("/stake", OpType.STAKE, ALICE_KEY, amount="1000")
    clock.advance(30 * DAY)
    assert session.send("/claim", OpType.CLAIM, ALICE_KEY).status_code == 409
    assert session.send("/stake", OpType.STAKE, MALLORY_KEY, amount="500").status_code == 409


@pytest.mark.parametrize("amount", ["-5", str(1 << 128), "1e3"])
def test_out_of_range_amounts_are_client_errors(session, node, amount):
    r = session.send("/stake", OpType.STAKE, ALICE_KEY, amount=amount)
    assert r.status_code == 400
    assert node.total_staked == 0


def test_allocate_endpoint(session, client):
    session.send("/admin/deposit_dynamic", OpType.DEPOSIT_DYNAMIC, ADMIN_KEY, amount="90")
    r = session.send("/admin/allocate_dynamic", OpType.ALLOCATE_DYNAMIC, ADMIN_KEY,
                     addresses=[ALICE_KEY.address, "bob"], amounts=["40", "50"],
                     total="90", batch_id="round-1:abc")
    assert r.json() == {
        "status": "ok", "dynamic_tokens_to_allocate": "0", "dynamic_tokens_allocated": "90",
    }
    assert client.get(f"/account/{ALICE_KEY.address}").json()["pending_dynamic_reward"] == "40"


def test_faucet_only_on_devnet(client, node, clock):
    assert client.post("/faucet", json={"address": "someone", "amount": "5"}).status_code == 403

    api.contract = StakingContract(token=node.token, admin=ADMIN_KEY.address,
                                   config=make_config(network_id="devnet"), clock=clock)
    r = client.post("/faucet", json={"address": "newcomer", "amount": "500"})
    assert r.status_code == 200
    assert r.json()["balance"] == "500"
    assert client.post("/faucet", json={"address": "newcomer", "amount": "-1"}).status_code == 400


def test_metrics_endpoint(session, client):
    session.send("/stake", OpType.STAKE, ALICE_KEY, amount="10")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "dualstake_total_staked" in r.text


def test_events_served_from_db_after_restart(tmp_path):
    clock = FakeClock()

    def boot():
        token = InMemoryToken(symbol="dst", balances={ALICE_KEY.address: 1000},
                              db=StorageDB(str(tmp_path / "token.db")))
        c = StakingContract(token=token, admin=ADMIN_KEY.address, config=make_config(),
                            clock=clock, db_path=str(tmp_path / "staking.db"))
        api.contract = c
        api.verifier = RequestVerifier(c.db)
        return c

    first = boot()
    session = Session(TestClient(api.app))
    session.send("/stake", OpType.STAKE, ALICE_KEY, amount="300")
    session.send("/unstake", OpType.UNSTAKE, ALICE_KEY, amount="100")
    first.close()
    first.token.db.close()

    second = boot()
    try:
        events = session.client.get("/events").json()["events"]
        assert [e["op"] for e in events] == ["STAKE", "UNSTAKE"]
        assert events[1]["amounts"]["unstaked"] == 100
        assert session.client.get(f"/nonce/{ALICE_KEY.address}").json()["nonce"] == 2
    finally:
        api.contract = None
        api.verifier = None
        second.close()
        second.token.db.close()
