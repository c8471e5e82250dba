"""In-process event bus for presentation adapters.

The pipeline core never touches a UI; it emits events and whoever renders
(the FastAPI routes, a test, a CLI) subscribes.
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict], Any]


class EventBus:
    """Synchronous publish/subscribe. A failing listener never breaks the emitter."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self.history: List[tuple] = []
        self.max_history = 200

    def subscribe(self, event: str, callback: Listener) -> Callable[[], None]:
        """Register a callback; "*" receives every event. Returns an unsubscribe function."""
        self._listeners.setdefault(event, []).append(callback)

        def unsubscribe():
            listeners = self._listeners.get(event, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def emit(self, event: str, **data) -> None:
        self.history.append((event, data))
        if len(self.history) > self.max_history:
            del self.history[0]

        for callback in list(self._listeners.get(event, [])) + list(self._listeners.get("*", [])):
            try:
                callback(event, data)
            except Exception as e:
                logger.warning("Listener for %s failed: %s", event, e)

    def recent(self, event: str) -> List[dict]:
        return [data for name, data in self.history if name == event]
