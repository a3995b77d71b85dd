"""Funding pools and the one-shot reward clock (administrator operations)."""
from typing import List
import logging
from protocol.types.common import PolicyViolation, FundingShortfall
from .ledger import StakingState
from .token import Transfer
from .uint import require_uint

logger = logging.getLogger(__name__)


def start_reward_clock(state: StakingState, now: int) -> int:
    if state.clock_started:
        raise PolicyViolation(f"Reward clock already started at {state.reward_start_time}")
    state.reward_start_time = now
    logger.info(f"Reward clock started at {now}, expires at {state.reward_end_time}")
    return now


def deposit_fixed(state: StakingState, amount: int, transfers: List[Transfer],
                  admin: str, pool_address: str) -> int:
    """Pull `amount` into the fixed pool. Returns the new available balance."""
    require_uint(amount, "amount", state.bits)
    state.add("fixed_rewards_available", amount)
    if amount > 0:
        transfers.append(Transfer(sender=admin, recipient=pool_address, amount=amount))
    return state.fixed_rewards_available


def withdraw_fixed(state: StakingState, now: int, transfers: List[Transfer],
                   admin: str, pool_address: str) -> int:
    """
    Return the unobligated part of the fixed pool to the administrator.

    Only after expiry. Leaves fixed_rewards_available == fixed_obligation.

    Raises:
        PolicyViolation: clock never started or window not yet expired
        FundingShortfall: obligation exceeds what the pool holds
    """
    if not state.clock_started:
        raise PolicyViolation("Reward clock never started")
    if now <= state.reward_end_time:
        raise PolicyViolation(
            f"Fixed pool locked until {state.reward_end_time} (now {now})"
        )
    if state.fixed_obligation > state.fixed_rewards_available:
        raise FundingShortfall(
            f"Fixed pool underfunded: obligation {state.fixed_obligation} exceeds "
            f"available {state.fixed_rewards_available}"
        )

    withdrawable = state.fixed_rewards_available - state.fixed_obligation
    state.sub("fixed_rewards_available", withdrawable)
    if withdrawable > 0:
        transfers.append(Transfer(sender=pool_address, recipient=admin, amount=withdrawable))
    return withdrawable
