"""
Event Bus
Synchronous fan-out of runtime events to external observers.
"""
import logging
from typing import Callable, List

from agent_runtime.domain.models.events import RuntimeEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[RuntimeEvent], None]


class EventBus:
    """
    Delivers events to subscribers in emission order.

    A failing listener is logged and skipped; it never breaks the
    workflow that emitted the event or the other listeners.
    """

    def __init__(self):
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: RuntimeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed for {event.type.value}: {e}", exc_info=True)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
