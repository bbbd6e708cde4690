from __future__ import annotations

import asyncio
import threading
from typing import Optional

from gatewaysession.logging import get_logger
from gatewaysession.service.errors import (
    GatewayError,
    NetworkFailure,
    ProtocolViolation,
    RenewalFailed,
    SessionClientError,
)
from gatewaysession.service.gateway import GatewayClient
from gatewaysession.storage.session_state import SessionState

logger = get_logger(__name__)


class RefreshCoordinator:
    """Single-flight access token renewal.

    At most one renewal runs at a time. Callers arriving while one is in
    flight await the same task and receive the same token or the same
    ``RenewalFailed`` instance. The in-flight slot is private; the only way
    in is ``renew()``.

    The renewal runs as its own task and is shielded from its callers, so
    cancelling a caller never cancels the renewal. The slot is released in the
    task's ``finally`` block, before any waiter resumes, so a caller that sees
    a failure can immediately start a fresh attempt.
    """

    def __init__(self, gateway: GatewayClient, session: SessionState) -> None:
        self.gateway = gateway
        self.session = session
        self._slot_lock = threading.Lock()
        self._inflight: Optional[asyncio.Task[str]] = None
        self.renewals_started = 0

    @property
    def in_flight(self) -> bool:
        with self._slot_lock:
            return self._inflight is not None

    async def renew(self) -> str:
        """Return a fresh access token, joining an in-flight renewal if any.

        Raises:
            RenewalFailed: the gateway rejected or could not be reached; the
                session tokens have been cleared.
        """
        with self._slot_lock:
            task = self._inflight
            joined = task is not None
            if task is None:
                task = asyncio.ensure_future(self._run_renewal())
                task.add_done_callback(self._retrieve_outcome)
                self._inflight = task
                self.renewals_started += 1
        if joined:
            logger.debug("renewal_joined")
        return await asyncio.shield(task)

    async def _run_renewal(self) -> str:
        snapshot = self.session.snapshot()
        generation = snapshot.generation
        logger.info(
            "renewal_started",
            capability=type(snapshot.refresh_capability).__name__
            if snapshot.refresh_capability is not None
            else None,
        )
        try:
            if snapshot.refresh_capability is None:
                self.session.clear(generation)
                raise RenewalFailed("No refresh capability available")
            try:
                pair = await self.gateway.renew(snapshot.refresh_capability)
                if not pair.access_token:
                    raise ProtocolViolation("Refresh succeeded but no access token was returned.")
            except (GatewayError, NetworkFailure, ProtocolViolation) as e:
                self.session.clear(generation)
                logger.warning(
                    "renewal_failed",
                    error_code=e.error_code,
                    status_code=e.status_code,
                    error=e.message,
                )
                raise RenewalFailed(
                    f"Token renewal failed: {e.message}",
                    status_code=e.status_code,
                    detail={"cause": e.error_code},
                ) from e

            applied = self.session.apply_renewal(pair, generation)
            if applied is None:
                # Session was replaced by login/logout mid-renewal; defer to it
                current = self.session.access_token
                if current is None:
                    raise RenewalFailed("Session ended while renewal was in flight")
                return current
            logger.info("renewal_succeeded", rotated=pair.refresh_token is not None)
            return pair.access_token
        finally:
            with self._slot_lock:
                self._inflight = None

    @staticmethod
    def _retrieve_outcome(task: asyncio.Task) -> None:
        # All callers may have been cancelled; mark the exception as seen
        if not task.cancelled():
            exc = task.exception()
            if exc is not None and not isinstance(exc, SessionClientError):
                logger.error(
                    "renewal_crashed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
