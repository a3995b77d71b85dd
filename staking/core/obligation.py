"""
Obligation Tracker.

fixed_obligation is the most the fixed pool could still owe if every account
held its current stake until expiry. It is always computed from `now`, never
from an account's own settlement history.
"""
import logging
from protocol.types.account import StakeAccount
from .ledger import StakingState
from .rewards import annual_reward, prorate

logger = logging.getLogger(__name__)


def effective_time(state: StakingState, now: int) -> int:
    # Before the clock starts start == 0, so this yields 0 and the full lifetime remains
    if not state.clock_started:
        return state.reward_start_time
    return min(max(now, state.reward_start_time), state.reward_end_time)


def remaining_duration(state: StakingState, now: int) -> int:
    return state.reward_end_time - effective_time(state, now)


def max_obligation_for(state: StakingState, staked: int, now: int) -> int:
    annual = annual_reward(staked, state.fixed_apr_bps)
    return prorate(annual, remaining_duration(state, now), state.reward_lifetime)


def recompute(state: StakingState, acc: StakeAccount, now: int) -> int:
    """
    Refresh `acc.max_obligation` and move fixed_obligation by the delta.

    Call after every stake, unstake and claim, once the balance is final.
    """
    new_obligation = max_obligation_for(state, acc.staked_amount, now)
    old_obligation = acc.max_obligation
    if new_obligation >= old_obligation:
        state.add("fixed_obligation", new_obligation - old_obligation)
    else:
        state.sub("fixed_obligation", old_obligation - new_obligation)
    acc.max_obligation = new_obligation
    return new_obligation
