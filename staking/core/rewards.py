"""
Reward Accrual Engine.

Fixed reward for an interval [from, to):

    floor(floor(staked * apr_bps / 10000) * (to - from) / lifetime)

Two sequential truncating divisions, never one combined division. The two
round differently for some inputs.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
from protocol.types.account import StakeAccount
from protocol.types.common import FundingShortfall
from protocol.config.params import BASIS_POINTS
from .ledger import StakingState
from .token import Transfer
from .uint import checked_add, checked_mul, floor_div

logger = logging.getLogger(__name__)

# Products are formed at double width before dividing back into range
INTERMEDIATE_BITS = 256


@dataclass
class Settlement:
    """Outcome of settling one account."""
    fixed_reward: int = 0
    dynamic_reward: int = 0
    from_time: Optional[int] = None
    to_time: Optional[int] = None

    @property
    def total(self) -> int:
        return self.fixed_reward + self.dynamic_reward


def annual_reward(staked: int, apr_bps: int) -> int:
    """First truncation: yearly reward for `staked` at `apr_bps`."""
    return floor_div(checked_mul(staked, apr_bps, INTERMEDIATE_BITS), BASIS_POINTS)


def prorate(annual: int, duration: int, lifetime: int) -> int:
    """Second truncation: share of a yearly reward earned over `duration`."""
    return floor_div(checked_mul(annual, duration, INTERMEDIATE_BITS), lifetime)


def accrual_window(state: StakingState, acc: StakeAccount, now: int) -> Optional[Tuple[int, int]]:
    """
    Interval a settlement at `now` would cover, or None before the clock starts.

    from = max(last_settlement_time, reward_start_time)
    to   = min(now, reward_start_time + reward_lifetime), never before `from`
    """
    if not state.clock_started:
        return None
    last = acc.last_settlement_time if acc.last_settlement_time is not None else 0
    frm = max(last, state.reward_start_time)
    to = min(now, state.reward_end_time)
    if to < frm:
        to = frm
    return frm, to


def fixed_reward_for(state: StakingState, acc: StakeAccount, now: int) -> int:
    """Pending fixed reward as of `now` (pure, ignores pool funding)."""
    window = accrual_window(state, acc, now)
    if window is None or acc.staked_amount == 0:
        return 0
    frm, to = window
    return prorate(annual_reward(acc.staked_amount, state.fixed_apr_bps), to - frm, state.reward_lifetime)


def settle(state: StakingState, acc: StakeAccount, now: int,
           transfers: List[Transfer], pool_address: str) -> Settlement:
    """
    Pays out everything accrued since the last settlement.

    Mutates `state`/`acc` (a clone owned by the caller) and queues the payout
    on `transfers`; the caller executes the queue and commits atomically.

    Raises:
        FundingShortfall: fixed pool cannot cover the accrued fixed reward
    """
    window = accrual_window(state, acc, now)
    if window is None:
        return Settlement()
    frm, to = window

    fixed = fixed_reward_for(state, acc, now)
    dynamic = acc.unclaimed_dynamic_reward

    if state.fixed_rewards_available < fixed:
        raise FundingShortfall(
            f"Fixed reward pool underfunded: available {state.fixed_rewards_available}, "
            f"owed {fixed} to {acc.address}"
        )
    total = checked_add(fixed, dynamic, state.bits)

    state.sub("fixed_rewards_available", fixed)
    state.sub("dynamic_tokens_allocated", dynamic)
    acc.unclaimed_dynamic_reward = 0
    acc.last_settlement_time = to

    if total > 0:
        transfers.append(Transfer(sender=pool_address, recipient=acc.address, amount=total))

    logger.debug(f"Settled {acc.address}: fixed={fixed} dynamic={dynamic} window=[{frm}, {to})")
    return Settlement(fixed_reward=fixed, dynamic_reward=dynamic, from_time=frm, to_time=to)
