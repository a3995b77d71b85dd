from pydantic import BaseModel
from typing import Optional

class StakeAccount(BaseModel):
    """Per-account staking record. Created lazily, never deleted."""
    address: str
    staked_amount: int = 0
    unclaimed_dynamic_reward: int = 0   # Credited by allocation, paid in full on settlement
    max_obligation: int = 0             # Share of the global worst-case fixed liability

    # None = never settled. Explicit presence instead of a zero timestamp.
    last_settlement_time: Optional[int] = None

class StakeInfo(BaseModel):
    """Snapshot of an account as of `now` (read-only view)."""
    address: str
    amount: int
    pending_fixed_reward: int
    pending_dynamic_reward: int
    max_obligation: int
    last_settlement_time: Optional[int] = None
    effective_claim_time: Optional[int] = None  # The `to` a settlement right now would use

class StakePercentage(BaseModel):
    total_staked: int
    individual_staked: int

    def as_fraction(self) -> float:
        if self.total_staked == 0:
            return 0.0
        return self.individual_staked / self.total_staked
