"""
Event stream shared between the store, the ordered collections, the
dispatcher and the patch reconciler.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CellChanged:
    table_id: str
    row_id: str
    cell_id: str
    new_value: Any
    old_value: Any


@dataclass(frozen=True, slots=True)
class OrderChanged:
    table_id: str
    row_ids: Tuple[str, ...]


@dataclass(frozen=True, slots=True)
class StateTransitioned:
    table_id: str
    row_id: str
    old_state: Optional[str]
    new_state: str


@dataclass(frozen=True, slots=True)
class PatchApplied:
    table_id: str
    row_ids: Tuple[str, ...]


Handler = Callable[[Any], None]


class EventBus:
    """
    Synchronous publish/subscribe hub keyed by event type.

    Handlers run on the publishing thread, after the publisher released its
    own locks.  A failing handler is logged and does not stop delivery to the
    remaining handlers.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counter = 0
        self._handlers: Dict[int, Tuple[Type[Any], Handler]] = {}

    def subscribe(self, event_type: Type[Any], handler: Handler) -> int:
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._lock:
            self._counter += 1
            token = self._counter
            self._handlers[token] = (event_type, handler)
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._handlers.pop(token, None)

    def publish(self, event: Any) -> None:
        with self._lock:
            handlers = [
                (token, handler)
                for token, (event_type, handler) in self._handlers.items()
                if isinstance(event, event_type)
            ]
        for token, handler in handlers:
            try:
                handler(event)
            except Exception:
                LOG.exception("Event handler %s failed for %s.", token, type(event).__name__)
