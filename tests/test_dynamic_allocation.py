import pytest

from protocol.types.common import ProtocolError, InputIntegrityError, FundingShortfall
from conftest import ADMIN, ALICE, BOB, CAROL, DAY


def pools(contract):
    return contract.dynamic_tokens_to_allocate, contract.dynamic_tokens_allocated


def test_deposit_then_allocate(contract, token):
    assert contract.deposit_dynamic_reward(ADMIN, 200) == 200
    assert token.balance_of(contract.address) == 200

    contract.allocate_dynamic_reward(ADMIN, [ALICE, BOB], [120, 80], 200)
    assert pools(contract) == (0, 200)
    assert contract.stake_info(ALICE).pending_dynamic_reward == 120
    assert contract.stake_info(BOB).pending_dynamic_reward == 80

    with pytest.raises(ProtocolError):
        contract.allocate_dynamic_reward(ADMIN, [ALICE], [5], 1)
    assert pools(contract) == (0, 200)
    assert contract.stake_info(ALICE).pending_dynamic_reward == 120


def test_deposits_accumulate(contract):
    contract.deposit_dynamic_reward(ADMIN, 50)
    assert contract.deposit_dynamic_reward(ADMIN, 70) == 120


def test_sum_mismatch_rejected(contract):
    contract.deposit_dynamic_reward(ADMIN, 100)
    with pytest.raises(InputIntegrityError, match="Sum mismatch"):
        contract.allocate_dynamic_reward(ADMIN, [ALICE, BOB], [30, 30], 50)
    assert pools(contract) == (100, 0)
    assert not contract.state.has_account(ALICE)


def test_length_mismatch_rejected(contract):
    contract.deposit_dynamic_reward(ADMIN, 100)
    with pytest.raises(InputIntegrityError, match="Length mismatch"):
        contract.allocate_dynamic_reward(ADMIN, [ALICE, BOB], [100], 100)
    assert pools(contract) == (100, 0)


def test_declared_total_above_pool(contract):
    contract.deposit_dynamic_reward(ADMIN, 100)
    with pytest.raises(FundingShortfall):
        contract.allocate_dynamic_reward(ADMIN, [ALICE], [101], 101)
    assert pools(contract) == (100, 0)


def test_batches_and_duplicate_addresses(contract):
    contract.deposit_dynamic_reward(ADMIN, 300)
    contract.allocate_dynamic_reward(ADMIN, [ALICE, ALICE], [10, 15], 25)
    contract.allocate_dynamic_reward(ADMIN, [BOB, CAROL], [100, 75], 175)

    assert contract.stake_info(ALICE).pending_dynamic_reward == 25
    assert pools(contract) == (100, 200)
    assert contract.events[-2].allocations == {ALICE: 25}


def test_resubmission_without_batch_id_double_credits(contract):
    contract.deposit_dynamic_reward(ADMIN, 200)
    contract.allocate_dynamic_reward(ADMIN, [ALICE], [100], 100)
    contract.allocate_dynamic_reward(ADMIN, [ALICE], [100], 100)
    assert contract.stake_info(ALICE).pending_dynamic_reward == 200


def test_batch_id_blocks_replay(contract):
    contract.deposit_dynamic_reward(ADMIN, 200)
    contract.allocate_dynamic_reward(ADMIN, [ALICE], [100], 100, batch_id="round-1:0")
    with pytest.raises(InputIntegrityError, match="already applied"):
        contract.allocate_dynamic_reward(ADMIN, [ALICE], [100], 100, batch_id="round-1:0")
    assert contract.stake_info(ALICE).pending_dynamic_reward == 100
    assert pools(contract) == (100, 100)


def test_dynamic_reward_paid_on_settlement(contract, token, clock):
    contract.deposit_fixed_reward(ADMIN, 1000)
    contract.deposit_dynamic_reward(ADMIN, 40)
    contract.start_reward_clock(ADMIN)
    contract.stake(ALICE, 1000)
    contract.allocate_dynamic_reward(ADMIN, [ALICE], [40], 40)

    clock.advance(73 * DAY)
    settled = contract.claim(ALICE)
    assert settled.fixed_reward == 10  # 50 * 73/365
    assert settled.dynamic_reward == 40
    assert token.balance_of(ALICE) == 100_000 - 1000 + 50
    assert pools(contract) == (0, 0)
    assert contract.stake_info(ALICE).pending_dynamic_reward == 0


def test_allocation_only_account_can_claim(contract, token, clock):
    contract.deposit_dynamic_reward(ADMIN, 10)
    contract.allocate_dynamic_reward(ADMIN, [CAROL], [10], 10)
    contract.start_reward_clock(ADMIN)
    clock.advance(DAY)

    settled = contract.claim(CAROL)
    assert (settled.fixed_reward, settled.dynamic_reward) == (0, 10)
    assert token.balance_of(CAROL) == 100_010
