# MIT License
# Copyright (c) 2025 Hashborn

from typing import Callable, Deque, List, Optional, Tuple, Any
from collections import deque
import time
import logging
import threading
from protocol.types.common import (
    OpType, ADMIN_OPS, ProtocolError, PolicyViolation, Unauthorized, InvariantViolation,
)
from protocol.types.account import StakeInfo, StakePercentage
from protocol.types.events import StakingEvent
from protocol.config.params import StakingConfig, CURRENT_NETWORK, CONTRACT_ADDRESS
from ..storage.db import StorageDB
from ..observability.metrics import update_metrics, record_operation, record_rejection
from .ledger import StakingState
from .token import TokenGate, Transfer
from .events import EventBus
from .uint import require_uint, checked_add, checked_sub
from . import rewards, obligation, allocation, pools

logger = logging.getLogger(__name__)

# (draft state, now, transfer queue) -> (result, event)
EVENT_LOG_SIZE = 1000

Handler = Callable[[StakingState, int, List[Transfer]], Tuple[Any, StakingEvent]]


class StakingContract:
    """
    Serialized, all-or-nothing surface over the staking ledger.

    Each public operation runs under one lock against a clone of the state.
    Transfers are queued while the clone is mutated and handed to the token
    gate as one batch; the clone replaces the live state only if the batch
    succeeds. A failed call leaves state, balances and the event log untouched.
    """

    def __init__(self, token: TokenGate, admin: Optional[str] = None,
                 config: Optional[StakingConfig] = None,
                 clock: Optional[Callable[[], int]] = None,
                 db_path: Optional[str] = None,
                 address: str = CONTRACT_ADDRESS,
                 event_bus: Optional[EventBus] = None):
        self.config = config or CURRENT_NETWORK
        self.admin = admin or self.config.admin_address
        if not self.admin:
            raise ValueError("An administrator address is required")
        self.token = token
        self.address = address
        self._clock = clock or (lambda: int(time.time()))
        self._lock = threading.RLock()
        self.event_bus = event_bus or EventBus()
        # Recent committed events; the full history lives in the db when one is configured
        self.events: Deque[StakingEvent] = deque(maxlen=EVENT_LOG_SIZE)

        self.db = StorageDB(db_path) if db_path else None
        if self.db:
            self.state = StakingState.load(self.db, self.config)
        else:
            self.state = StakingState(self.config)

        logger.info(
            f"Staking contract ready on {self.config.network_id}: "
            f"apr={self.config.fixed_apr_bps}bps lifetime={self.config.reward_lifetime_sec}s "
            f"max_stakable={self.config.max_stakable}"
        )

    # --- Execution boundary ---
    def _now(self) -> int:
        now = int(self._clock())
        if now <= 0:
            raise ProtocolError(f"Clock returned reserved timestamp {now}")
        return now

    def _execute(self, op: OpType, caller: str, handler: Handler) -> Any:
        with self._lock:
            try:
                if op in ADMIN_OPS and caller != self.admin:
                    raise Unauthorized(f"{op.value} is restricted to the administrator")
                now = self._now()
                draft = self.state.clone()
                transfers: List[Transfer] = []

                result, event = handler(draft, now, transfers)

                if self.config.check_invariants:
                    ok, msg = draft.validate_invariants()
                    if not ok:
                        raise InvariantViolation(msg)
                if transfers:
                    self.token.execute(transfers)
            except ProtocolError as e:
                logger.warning(f"Rejected {op.value} from {caller}: {e}")
                record_rejection(op, e)
                raise

            self.state = draft
            self._commit(event)
            return result

    def _commit(self, event: StakingEvent):
        if self.db:
            self.state.persist(self.db)
            self.db.append_event(event.op.value, event.model_dump_json())
        self.events.append(event)
        record_operation(event.op)
        update_metrics(self)
        logger.info(f"{event.op.value} account={event.account} amounts={event.amounts}")
        self.event_bus.publish(event)

    # --- Account operations ---
    def stake(self, caller: str, amount: int) -> None:
        def handler(draft: StakingState, now: int, transfers: List[Transfer]):
            require_uint(amount, "amount", draft.bits)
            if amount == 0:
                raise PolicyViolation("Cannot stake zero")
            if draft.clock_started and now >= draft.reward_end_time:
                raise PolicyViolation(f"Staking window closed at {draft.reward_end_time}")
            new_total = checked_add(draft.total_staked, amount, draft.bits)
            if new_total > draft.max_stakable:
                raise PolicyViolation(
                    f"Stake would exceed max stakable: {new_total} > {draft.max_stakable}"
                )

            acc = draft.ensure_account(caller)
            if acc.last_settlement_time is None:
                acc.last_settlement_time = now
            # Reward accrues against the balance in effect before this call
            settled = rewards.settle(draft, acc, now, transfers, self.address)

            transfers.append(Transfer(sender=caller, recipient=self.address, amount=amount))
            acc.staked_amount = checked_add(acc.staked_amount, amount, draft.bits)
            draft.total_staked = new_total
            obligation.recompute(draft, acc, now)

            return None, StakingEvent(
                op=OpType.STAKE, account=caller, timestamp=now,
                amounts={
                    "staked": amount,
                    "fixed_reward": settled.fixed_reward,
                    "dynamic_reward": settled.dynamic_reward,
                },
            )

        self._execute(OpType.STAKE, caller, handler)

    def unstake(self, caller: str, amount: int) -> None:
        def handler(draft: StakingState, now: int, transfers: List[Transfer]):
            require_uint(amount, "amount", draft.bits)
            if amount == 0:
                raise PolicyViolation("Cannot unstake zero")
            acc = draft.get_account(caller)
            if acc is None or acc.staked_amount == 0:
                raise PolicyViolation(f"No stake held by {caller}")
            if amount > acc.staked_amount:
                raise PolicyViolation(
                    f"Unstake amount {amount} exceeds stake {acc.staked_amount}"
                )

            settled = rewards.settle(draft, acc, now, transfers, self.address)

            acc.staked_amount = checked_sub(acc.staked_amount, amount, draft.bits)
            draft.sub("total_staked", amount)
            transfers.append(Transfer(sender=self.address, recipient=caller, amount=amount))
            obligation.recompute(draft, acc, now)

            return None, StakingEvent(
                op=OpType.UNSTAKE, account=caller, timestamp=now,
                amounts={
                    "unstaked": amount,
                    "fixed_reward": settled.fixed_reward,
                    "dynamic_reward": settled.dynamic_reward,
                },
            )

        self._execute(OpType.UNSTAKE, caller, handler)

    def claim(self, caller: str) -> rewards.Settlement:
        def handler(draft: StakingState, now: int, transfers: List[Transfer]):
            if not draft.clock_started:
                raise PolicyViolation("Reward clock not started")
            acc = draft.get_account(caller)
            if acc is None:
                raise PolicyViolation(f"No staking record for {caller}")

            settled = rewards.settle(draft, acc, now, transfers, self.address)
            obligation.recompute(draft, acc, now)

            return settled, StakingEvent(
                op=OpType.CLAIM, account=caller, timestamp=now,
                amounts={
                    "fixed_reward": settled.fixed_reward,
                    "dynamic_reward": settled.dynamic_reward,
                },
            )

        return self._execute(OpType.CLAIM, caller, handler)

    # --- Administrator operations ---
    def start_reward_clock(self, caller: str) -> int:
        def handler(draft: StakingState, now: int, transfers: List[Transfer]):
            started = pools.start_reward_clock(draft, now)
            return started, StakingEvent(
                op=OpType.START_CLOCK, account=caller, timestamp=now,
                amounts={"reward_start_time": started, "reward_end_time": draft.reward_end_time},
            )

        return self._execute(OpType.START_CLOCK, caller, handler)

    def deposit_fixed_reward(self, caller: str, amount: int) -> int:
        def handler(draft: StakingState, now: int, transfers: List[Transfer]):
            available = pools.deposit_fixed(draft, amount, transfers, caller, self.address)
            return available, StakingEvent(
                op=OpType.DEPOSIT_FIXED, account=caller, timestamp=now,
                amounts={"deposited": amount, "fixed_rewards_available": available},
            )

        return self._execute(OpType.DEPOSIT_FIXED, caller, handler)

    def withdraw_fixed_reward(self, caller: str) -> int:
        def handler(draft: StakingState, now: int, transfers: List[Transfer]):
            withdrawn = pools.withdraw_fixed(draft, now, transfers, caller, self.address)
            return withdrawn, StakingEvent(
                op=OpType.WITHDRAW_FIXED, account=caller, timestamp=now,
                amounts={"withdrawn": withdrawn, "fixed_rewards_available": draft.fixed_rewards_available},
            )

        return self._execute(OpType.WITHDRAW_FIXED, caller, handler)

    def deposit_dynamic_reward(self, caller: str, amount: int) -> int:
        def handler(draft: StakingState, now: int, transfers: List[Transfer]):
            pending = allocation.deposit_dynamic(draft, amount, transfers, caller, self.address)
            return pending, StakingEvent(
                op=OpType.DEPOSIT_DYNAMIC, account=caller, timestamp=now,
                amounts={"deposited": amount, "dynamic_tokens_to_allocate": pending},
            )

        return self._execute(OpType.DEPOSIT_DYNAMIC, caller, handler)

    def allocate_dynamic_reward(self, caller: str, addresses: List[str], amounts: List[int],
                                total: int, batch_id: Optional[str] = None) -> None:
        def handler(draft: StakingState, now: int, transfers: List[Transfer]):
            credited = allocation.allocate(draft, list(addresses), list(amounts), total, batch_id)
            return None, StakingEvent(
                op=OpType.ALLOCATE_DYNAMIC, account=caller, timestamp=now,
                amounts={"total": total},
                allocations=credited,
                batch_id=batch_id,
            )

        self._execute(OpType.ALLOCATE_DYNAMIC, caller, handler)

    # --- Views ---
    @property
    def token_symbol(self) -> str:
        return self.token.symbol

    @property
    def reward_start_time(self) -> int:
        return self.state.reward_start_time

    @property
    def reward_lifetime(self) -> int:
        return self.state.reward_lifetime

    @property
    def max_stakable(self) -> int:
        return self.state.max_stakable

    @property
    def total_staked(self) -> int:
        return self.state.total_staked

    @property
    def fixed_obligation(self) -> int:
        return self.state.fixed_obligation

    @property
    def fixed_rewards_available(self) -> int:
        return self.state.fixed_rewards_available

    @property
    def dynamic_tokens_to_allocate(self) -> int:
        return self.state.dynamic_tokens_to_allocate

    @property
    def dynamic_tokens_allocated(self) -> int:
        return self.state.dynamic_tokens_allocated

    def staked_amount(self, address: str) -> int:
        acc = self.state.get_account(address)
        return acc.staked_amount if acc else 0

    def stake_percentage(self, address: str) -> StakePercentage:
        with self._lock:
            return StakePercentage(
                total_staked=self.state.total_staked,
                individual_staked=self.staked_amount(address),
            )

    def stake_info(self, address: str) -> StakeInfo:
        """Account snapshot with pending rewards computed as of now."""
        with self._lock:
            now = self._now()
            acc = self.state.get_account(address)
            if acc is None:
                return StakeInfo(
                    address=address, amount=0, pending_fixed_reward=0,
                    pending_dynamic_reward=0, max_obligation=0,
                )
            window = rewards.accrual_window(self.state, acc, now)
            return StakeInfo(
                address=address,
                amount=acc.staked_amount,
                pending_fixed_reward=rewards.fixed_reward_for(self.state, acc, now),
                pending_dynamic_reward=acc.unclaimed_dynamic_reward,
                max_obligation=acc.max_obligation,
                last_settlement_time=acc.last_settlement_time,
                effective_claim_time=window[1] if window else None,
            )

    def status(self) -> dict:
        with self._lock:
            s = self.state
            return {
                "network": self.config.network_id,
                "token": self.token_symbol,
                "reward_start_time": s.reward_start_time,
                "reward_lifetime": s.reward_lifetime,
                "fixed_apr_bps": s.fixed_apr_bps,
                "max_stakable": s.max_stakable,
                "total_staked": s.total_staked,
                "fixed_obligation": s.fixed_obligation,
                "fixed_rewards_available": s.fixed_rewards_available,
                "dynamic_tokens_to_allocate": s.dynamic_tokens_to_allocate,
                "dynamic_tokens_allocated": s.dynamic_tokens_allocated,
                "accounts": len(s.all_accounts()),
            }

    def recent_events(self, limit: int = 100) -> List[StakingEvent]:
        """Most recent committed events, oldest first. Reads the db when one is configured."""
        if limit <= 0:
            return []
        if self.db:
            return [StakingEvent.model_validate_json(raw) for raw in self.db.get_events(limit)]
        with self._lock:
            return list(self.events)[-limit:]

    def close(self):
        if self.db:
            self.db.close()
