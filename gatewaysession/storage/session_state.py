from __future__ import annotations

import threading
from typing import Optional

from gatewaysession.logging import get_logger
from gatewaysession.storage.models import (
    ExplicitRefresh,
    RefreshCapability,
    SessionPhase,
    SessionSnapshot,
    TokenPair,
)

logger = get_logger(__name__)


class SessionState:
    """In-memory session: access token, refresh capability and phase.

    Every read returns a ``SessionSnapshot`` taken under the lock, so a reader
    never sees a new access token paired with a stale refresh capability.
    Every write bumps ``generation``; a renewal that started under an older
    generation (the user logged out or in meanwhile) must not overwrite the
    newer state.
    """

    def __init__(self, capability: Optional[RefreshCapability] = None) -> None:
        self._lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._refresh_capability: Optional[RefreshCapability] = capability
        self._phase = SessionPhase.UNAUTHENTICATED
        self._generation = 0

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> SessionSnapshot:
        return SessionSnapshot(
            access_token=self._access_token,
            refresh_capability=self._refresh_capability,
            phase=self._phase,
            generation=self._generation,
        )

    @property
    def access_token(self) -> Optional[str]:
        return self.snapshot().access_token

    @property
    def refresh_capability(self) -> Optional[RefreshCapability]:
        return self.snapshot().refresh_capability

    @property
    def phase(self) -> SessionPhase:
        return self.snapshot().phase

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def set_authenticated(
        self, access_token: str, capability: Optional[RefreshCapability]
    ) -> SessionSnapshot:
        """Direct transition used by login and register."""
        if not access_token:
            raise ValueError("access_token is required to authenticate a session")
        with self._lock:
            self._access_token = access_token
            self._refresh_capability = capability
            self._phase = SessionPhase.AUTHENTICATED
            self._generation += 1
            return self._snapshot_locked()

    def restore_capability(self, capability: RefreshCapability) -> bool:
        """Seed a refresh capability kept from a previous run, before any login.

        Ignored once an access token is held; returns whether it applied.
        """
        with self._lock:
            if self._access_token is not None:
                return False
            self._refresh_capability = capability
            self._phase = SessionPhase.UNAUTHENTICATED
            self._generation += 1
            return True

    def begin_hydration(self) -> bool:
        """Enter HYDRATING when a capability exists but no access token does."""
        with self._lock:
            if self._access_token is not None or self._refresh_capability is None:
                return False
            self._phase = SessionPhase.HYDRATING
            return True

    def end_hydration(self) -> None:
        """Leave HYDRATING if the renewal outcome did not already move the phase."""
        with self._lock:
            if self._phase is SessionPhase.HYDRATING:
                self._phase = (
                    SessionPhase.AUTHENTICATED
                    if self._access_token is not None
                    else SessionPhase.UNAUTHENTICATED
                )

    def apply_renewal(self, pair: TokenPair, generation: int) -> Optional[SessionSnapshot]:
        """Store renewed tokens; keep the old capability when none was rotated in.

        Returns None, and changes nothing, when the session moved on since the
        renewal started.
        """
        if not pair.access_token:
            raise ValueError("renewed token pair has no access token")
        with self._lock:
            if generation != self._generation:
                logger.info(
                    "session_renewal_discarded",
                    started_generation=generation,
                    current_generation=self._generation,
                )
                return None
            self._access_token = pair.access_token
            if pair.refresh_token:
                self._refresh_capability = ExplicitRefresh(pair.refresh_token)
            self._phase = SessionPhase.AUTHENTICATED
            self._generation += 1
            return self._snapshot_locked()

    def clear(self, generation: Optional[int] = None) -> bool:
        """Drop both tokens and return to UNAUTHENTICATED.

        With ``generation`` given the clear only applies if nothing else
        mutated the session since; returns whether it applied.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._clear_locked(SessionPhase.UNAUTHENTICATED)
            return True

    def expire(self, generation: Optional[int] = None) -> SessionSnapshot:
        """Terminal clear after SessionExpired; returns the state before clearing.

        A session that was authenticated ends in EXPIRED so the host can tell
        "signed out by the server" from "never signed in". With ``generation``
        given, a session replaced since (a newer login) is left untouched.
        """
        with self._lock:
            previous = self._snapshot_locked()
            if generation is not None and generation != self._generation:
                logger.info(
                    "session_expire_skipped",
                    expired_generation=generation,
                    current_generation=self._generation,
                )
                return previous
            was_signed_in = previous.access_token is not None or previous.phase in (
                SessionPhase.AUTHENTICATED,
                SessionPhase.EXPIRED,
            )
            self._clear_locked(
                SessionPhase.EXPIRED if was_signed_in else SessionPhase.UNAUTHENTICATED
            )
            return previous

    def _clear_locked(self, phase: SessionPhase) -> None:
        self._access_token = None
        self._refresh_capability = None
        self._phase = phase
        self._generation += 1
