"""
Subscribers for committed staking operations.

The contract publishes one StakingEvent per committed call, after the new
state is in place. Listeners subscribe to one OpType or, with op=None, to
every operation.
"""
from typing import Callable, Dict, List, Optional
import logging
from protocol.types.common import OpType
from protocol.types.events import StakingEvent

logger = logging.getLogger(__name__)

Listener = Callable[[StakingEvent], None]


class EventBus:
    def __init__(self):
        self._listeners: Dict[Optional[OpType], List[Listener]] = {}

    def subscribe(self, callback: Listener, op: Optional[OpType] = None) -> None:
        self._listeners.setdefault(op, []).append(callback)
        logger.debug(f"Subscribed to {op.value if op else 'all operations'}")

    def listeners_for(self, op: OpType) -> List[Listener]:
        return self._listeners.get(op, []) + self._listeners.get(None, [])

    def publish(self, event: StakingEvent) -> int:
        """
        Deliver `event` synchronously. Returns the number of listeners reached.

        A listener that raises is logged and skipped; the operation it observes
        has already committed.
        """
        listeners = self.listeners_for(event.op)
        for callback in listeners:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Listener failed on {event.op.value}: {e}", exc_info=True)
        return len(listeners)
