"""Fan-out of progress and adaptation events to a user's open sessions."""
from __future__ import annotations

import os
import threading
from typing import Any, Callable, Dict, List, Protocol
import logging

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ITINERARY_ENGINE_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

Subscriber = Callable[[str, Dict[str, Any]], None]


class Publisher(Protocol):
    def publish(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class NullPublisher:
    def publish(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        logger.debug("Dropping %s event for %s (no publisher configured)", event, user_id)


class SubscriptionPublisher:
    """Deliver each event to every callback registered for the user.

    A failing subscriber is logged and skipped; the remaining sessions still
    receive the event.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id: str, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(user_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(user_id, None)

        return _unsubscribe

    def subscriber_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def publish(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(user_id, []))
        if not callbacks:
            logger.debug("No active sessions for %s; %s event not delivered", user_id, event)
            return
        for callback in callbacks:
            try:
                callback(event, payload)
            except Exception:
                logger.warning("Subscriber for %s failed on %s event", user_id, event, exc_info=True)
