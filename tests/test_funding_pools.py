import pytest

from protocol.types.common import PolicyViolation, FundingShortfall
from conftest import ADMIN, ALICE, DAY, LIFETIME


def test_deposit_fixed_returns_new_available(contract, token):
    assert contract.deposit_fixed_reward(ADMIN, 600) == 600
    assert contract.deposit_fixed_reward(ADMIN, 400) == 1000
    assert token.balance_of(ADMIN) == 10_000_000 - 1000


def test_withdraw_before_expiry_rejected(contract, clock):
    with pytest.raises(PolicyViolation, match="never started"):
        contract.withdraw_fixed_reward(ADMIN)

    contract.deposit_fixed_reward(ADMIN, 1000)
    contract.start_reward_clock(ADMIN)
    clock.advance(LIFETIME)  # exactly at expiry is still locked
    with pytest.raises(PolicyViolation, match="locked until"):
        contract.withdraw_fixed_reward(ADMIN)
    assert contract.fixed_rewards_available == 1000


def test_withdraw_leaves_obligation(contract, token, clock):
    contract.deposit_fixed_reward(ADMIN, 1000)
    contract.stake(ALICE, 6000)          # obligation floor(300 * 365/365) = 300
    contract.start_reward_clock(ADMIN)
    assert contract.fixed_obligation == 300

    clock.advance(LIFETIME + DAY)
    admin_before = token.balance_of(ADMIN)
    assert contract.withdraw_fixed_reward(ADMIN) == 700
    assert contract.fixed_rewards_available == 300
    assert token.balance_of(ADMIN) == admin_before + 700

    # Alice still collects the full year after the withdrawal
    assert contract.claim(ALICE).fixed_reward == 300
    assert contract.fixed_rewards_available == 0
    assert contract.fixed_obligation == 0


def test_withdraw_underfunded_pool(contract, clock):
    contract.deposit_fixed_reward(ADMIN, 100)
    contract.stake(ALICE, 6000)
    contract.start_reward_clock(ADMIN)
    clock.advance(LIFETIME + 1)
    with pytest.raises(FundingShortfall, match="underfunded"):
        contract.withdraw_fixed_reward(ADMIN)
    assert contract.fixed_rewards_available == 100


def test_obligation_bounds_early_withdrawal(contract, clock):
    contract.deposit_fixed_reward(ADMIN, 1000)
    contract.start_reward_clock(ADMIN)
    contract.stake(ALICE, 2000)
    assert contract.fixed_obligation == 100

    clock.advance(LIFETIME // 2)
    contract.claim(ALICE)
    # Half paid out, half still owed
    assert contract.fixed_rewards_available + contract.fixed_obligation <= 1000
    assert contract.fixed_obligation == 50
