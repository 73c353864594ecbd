"""
Minimal event emitter for log-store handles.

Events:
    peer        — ``callback(peer_id)``: a peer opened the same log
    replicated  — ``callback(address)``: entries were received from a peer

``on()`` returns an unsubscribe callable. Callbacks may be coroutine
functions; their coroutines are scheduled on the running loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger("paperdb.db.events")

Unsubscribe = Callable[[], None]


class EventEmitter:

    def __init__(self):
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event: str, callback: Callable[..., Any]) -> Unsubscribe:
        self._listeners.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def emit(self, event: str, *args: Any) -> int:
        """Call every listener of *event*. Returns the number of listeners called."""
        listeners = list(self._listeners.get(event, []))
        for callback in listeners:
            try:
                result = callback(*args)
            except Exception as e:
                logger.error(f"Listener for '{event}' failed: {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        return len(listeners)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def clear(self) -> None:
        self._listeners.clear()
