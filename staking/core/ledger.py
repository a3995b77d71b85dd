from typing import Dict, Optional, List, Set, Tuple
import json
import logging
from protocol.types.account import StakeAccount
from protocol.config.params import StakingConfig
from ..storage.db import StorageDB
from .uint import checked_add, checked_sub

logger = logging.getLogger(__name__)

# Global counters persisted alongside the accounts
GLOBAL_FIELDS = (
    "reward_start_time",
    "total_staked",
    "fixed_rewards_available",
    "dynamic_tokens_to_allocate",
    "dynamic_tokens_allocated",
    "fixed_obligation",
)


class StakingState:
    """
    Account Ledger plus every global counter, owned as one aggregate.

    Public operations never mutate a live StakingState directly: they work on
    clone() and the contract swaps the clone in only when the whole operation,
    transfers included, has succeeded.
    """

    def __init__(self, config: StakingConfig, accounts: Dict[str, StakeAccount] = None):
        self.config = config
        # address -> StakeAccount
        self._accounts: Dict[str, StakeAccount] = accounts if accounts is not None else {}

        # Immutable after construction
        self.reward_lifetime = config.reward_lifetime_sec
        self.fixed_apr_bps = config.fixed_apr_bps
        self.max_stakable = config.max_stakable
        self.bits = config.uint_bits

        # 0 until the administrator starts the clock, then immutable
        self.reward_start_time = 0

        self.total_staked = 0
        self.fixed_rewards_available = 0
        self.dynamic_tokens_to_allocate = 0
        self.dynamic_tokens_allocated = 0
        self.fixed_obligation = 0

        # Allocation batch ids already applied (only when callers supply one)
        self.applied_batches: Set[str] = set()

    @property
    def clock_started(self) -> bool:
        return self.reward_start_time != 0

    @property
    def reward_end_time(self) -> int:
        return self.reward_start_time + self.reward_lifetime

    def clone(self) -> 'StakingState':
        """Creates a copy of the state (one per public operation)."""
        new_accounts = {k: v.model_copy() for k, v in self._accounts.items()}
        cloned = StakingState(self.config, new_accounts)
        for field in GLOBAL_FIELDS:
            setattr(cloned, field, getattr(self, field))
        cloned.applied_batches = set(self.applied_batches)
        return cloned

    # --- Accounts ---
    def has_account(self, address: str) -> bool:
        return address in self._accounts

    def get_account(self, address: str) -> Optional[StakeAccount]:
        return self._accounts.get(address)

    def ensure_account(self, address: str) -> StakeAccount:
        """Returns the record, creating an empty one on first touch."""
        acc = self._accounts.get(address)
        if acc is None:
            acc = StakeAccount(address=address)
            self._accounts[address] = acc
            logger.debug(f"Created account record for {address}")
        return acc

    def all_accounts(self) -> List[StakeAccount]:
        return list(self._accounts.values())

    # --- Counter helpers (checked at the configured width) ---
    def add(self, field: str, amount: int):
        setattr(self, field, checked_add(getattr(self, field), amount, self.bits))

    def sub(self, field: str, amount: int):
        setattr(self, field, checked_sub(getattr(self, field), amount, self.bits))

    # --- Invariants ---
    def validate_invariants(self) -> Tuple[bool, Optional[str]]:
        """
        Validate the ledger sums:
            sum(staked_amount)            == total_staked
            sum(max_obligation)           == fixed_obligation
            sum(unclaimed_dynamic_reward) == dynamic_tokens_allocated

        Returns:
            (is_valid, error_message)
        """
        staked = sum(a.staked_amount for a in self._accounts.values())
        obligation = sum(a.max_obligation for a in self._accounts.values())
        dynamic = sum(a.unclaimed_dynamic_reward for a in self._accounts.values())

        if staked != self.total_staked:
            return False, f"Staked sum {staked} != total_staked {self.total_staked}"
        if obligation != self.fixed_obligation:
            return False, f"Obligation sum {obligation} != fixed_obligation {self.fixed_obligation}"
        if dynamic != self.dynamic_tokens_allocated:
            return False, (
                f"Dynamic credit sum {dynamic} != dynamic_tokens_allocated "
                f"{self.dynamic_tokens_allocated}"
            )
        for field in GLOBAL_FIELDS:
            if getattr(self, field) < 0:
                return False, f"Negative counter {field}={getattr(self, field)}"
        return True, None

    # --- Persistence ---
    def persist(self, db: StorageDB):
        """Writes accounts and globals to DB."""
        items = {f"acc:{addr}": acc.model_dump_json() for addr, acc in self._accounts.items()}
        data = {field: str(getattr(self, field)) for field in GLOBAL_FIELDS}
        data["applied_batches"] = sorted(self.applied_batches)
        items["globals"] = json.dumps(data)
        db.set_state_many(items)

    @classmethod
    def load(cls, db: StorageDB, config: StakingConfig) -> 'StakingState':
        """Rebuilds the aggregate from DB (empty state if nothing stored)."""
        accounts = {}
        for k, v in db.get_state_by_prefix("acc:").items():
            addr = k.split(":", 1)[1]
            accounts[addr] = StakeAccount.model_validate_json(v)

        state = cls(config, accounts)
        raw = db.get_state("globals")
        if raw:
            data = json.loads(raw)
            for field in GLOBAL_FIELDS:
                setattr(state, field, int(data.get(field, "0")))
            state.applied_batches = set(data.get("applied_batches", []))
        logger.info(f"Loaded staking state with {len(accounts)} accounts")
        return state
