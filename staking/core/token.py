"""
Value-transfer gate.

The engine never implements token semantics itself; it hands the gate a list
of transfers per operation and the gate either performs all of them or none.
"""
from typing import Dict, List, Optional, Protocol, runtime_checkable
import logging
import threading
from pydantic import BaseModel
from protocol.types.common import TransferFailed
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)


class Transfer(BaseModel):
    sender: str
    recipient: str
    amount: int


@runtime_checkable
class TokenGate(Protocol):
    symbol: str

    def execute(self, transfers: List[Transfer]) -> None:
        """Perform every transfer or none; raise TransferFailed on refusal."""
        ...


class InMemoryToken:
    """
    Token gate backed by a balance map.

    Used by the devnet node and the test-suite. `fail_next` makes the next
    execute() refuse, to exercise rollback paths.
    """

    def __init__(self, symbol: str = "dst", balances: Dict[str, int] = None,
                 db: Optional[StorageDB] = None):
        self.symbol = symbol
        self.db = db
        self.balances: Dict[str, int] = dict(balances or {})
        self.fail_next = False
        self.executed: List[Transfer] = []
        self._lock = threading.Lock()

        if self.db:
            stored = self.db.get_state_by_prefix("bal:")
            if stored:
                # Persisted balances win over the initial allocation
                self.balances = {k.split(":", 1)[1]: int(v) for k, v in stored.items()}
            else:
                self._persist(self.balances.keys())

    def _persist(self, addresses):
        if self.db:
            self.db.set_state_many({f"bal:{a}": str(self.balances.get(a, 0)) for a in addresses})

    def mint(self, address: str, amount: int):
        with self._lock:
            self.balances[address] = self.balances.get(address, 0) + amount
            self._persist([address])

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def execute(self, transfers: List[Transfer]) -> None:
        with self._lock:
            if self.fail_next:
                self.fail_next = False
                raise TransferFailed("Token gate refused the transfer batch")

            # Apply to a scratch copy so a failure part-way leaves balances untouched
            scratch = dict(self.balances)
            for t in transfers:
                if t.amount <= 0:
                    raise TransferFailed(f"Invalid transfer amount {t.amount}")
                have = scratch.get(t.sender, 0)
                if have < t.amount:
                    raise TransferFailed(
                        f"Insufficient token balance: {t.sender} has {have}, needs {t.amount}"
                    )
                scratch[t.sender] = have - t.amount
                scratch[t.recipient] = scratch.get(t.recipient, 0) + t.amount

            self.balances = scratch
            self.executed.extend(transfers)
            self._persist({a for t in transfers for a in (t.sender, t.recipient)})
            logger.debug(f"Executed {len(transfers)} transfer(s)")
