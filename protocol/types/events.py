from pydantic import BaseModel, Field
from typing import Dict, Optional
from .common import OpType

class StakingEvent(BaseModel):
    """
    Structured notification emitted after every committed state change.

    `amounts` names each value moved by the operation, e.g.
    {"staked": 100, "fixed_reward": 3, "dynamic_reward": 0}.
    """
    op: OpType
    account: Optional[str] = None       # None for pool-level admin events
    timestamp: int
    amounts: Dict[str, int] = Field(default_factory=dict)

    # ALLOCATE_DYNAMIC only: per-address credits for off-chain audit
    allocations: Dict[str, int] = Field(default_factory=dict)
    batch_id: Optional[str] = None
