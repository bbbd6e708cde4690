from __future__ import annotations

import threading
from typing import Callable, List, Protocol

from gatewaysession.logging import get_logger
from gatewaysession.storage.models import SessionExpiredEvent

logger = get_logger(__name__)


class SessionExpiryListener(Protocol):
    def on_session_expired(self, event: SessionExpiredEvent) -> None: ...


class SessionExpiryNotifier:
    """Fan-out of terminal session events to the host application.

    ``notify`` is called exactly once per terminal outcome and delivers the
    event to each listener once. A listener that raises is logged and does not
    stop delivery to the others or the error reaching the caller.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: List[SessionExpiryListener] = []

    def subscribe(self, listener: SessionExpiryListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def notify(self, event: SessionExpiredEvent) -> int:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            # Host never subscribed: nobody will redirect the user
            logger.warning("session_expired_unobserved", reason=event.reason, path=event.path)
            return 0
        delivered = 0
        for listener in listeners:
            try:
                listener.on_session_expired(event)
                delivered += 1
            except Exception as exc:
                logger.error(
                    "session_expiry_listener_failed",
                    listener=type(listener).__name__,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
        return delivered
