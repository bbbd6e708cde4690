from __future__ import annotations

from typing import Optional

from gatewaysession.config import RefreshTransport, Settings
from gatewaysession.logging import get_logger
from gatewaysession.service.errors import ProtocolViolation, RenewalFailed
from gatewaysession.service.gateway import GatewayClient
from gatewaysession.service.notifications import SessionExpiryNotifier
from gatewaysession.service.refresh import RefreshCoordinator
from gatewaysession.storage.models import (
    Credentials,
    ExplicitRefresh,
    ImplicitRefresh,
    RefreshCapability,
    SessionExpiredEvent,
    SessionPhase,
    SessionSnapshot,
    TokenPair,
)
from gatewaysession.storage.session_state import SessionState

logger = get_logger(__name__)


class SessionManager:
    """Explicit auth actions (login, register, logout) and session hydration.

    Tokens live in memory only; a new process starts unauthenticated.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: GatewayClient,
        session: SessionState,
        coordinator: RefreshCoordinator,
        notifier: SessionExpiryNotifier,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.session = session
        self.coordinator = coordinator
        self.notifier = notifier
        self.logger = logger

    @property
    def phase(self) -> SessionPhase:
        return self.session.phase

    @property
    def is_hydrating(self) -> bool:
        return self.session.phase is SessionPhase.HYDRATING

    @property
    def is_authenticated(self) -> bool:
        return self.session.access_token is not None

    def snapshot(self) -> SessionSnapshot:
        return self.session.snapshot()

    def _capability_for(self, pair: TokenPair, action: str) -> Optional[RefreshCapability]:
        if pair.refresh_token:
            return ExplicitRefresh(pair.refresh_token)
        if self.settings.refresh_transport is RefreshTransport.COOKIE:
            return ImplicitRefresh()
        # Without a capability the session cannot be renewed once the token expires
        self.logger.warning("refresh_token_missing", action=action)
        return None

    def _authenticate(self, pair: TokenPair, action: str) -> SessionSnapshot:
        if not pair.access_token:
            raise ProtocolViolation(
                f"{action.capitalize()} succeeded but no access token was returned.",
                detail={"action": action},
            )
        snapshot = self.session.set_authenticated(
            pair.access_token, self._capability_for(pair, action)
        )
        self.logger.info(
            "session_authenticated",
            action=action,
            capability=type(snapshot.refresh_capability).__name__
            if snapshot.refresh_capability is not None
            else None,
        )
        return snapshot

    async def login(self, email: str, password: str) -> TokenPair:
        pair = await self.gateway.login(Credentials(email=email, password=password))
        self._authenticate(pair, "login")
        return pair

    async def register(self, email: str, password: str) -> TokenPair:
        """Register and sign in; the gateway issues tokens on registration."""
        pair = await self.gateway.register(Credentials(email=email, password=password))
        self._authenticate(pair, "register")
        return pair

    async def logout(self) -> None:
        """Invalidate the session at the gateway and always clear it locally.

        Gateway errors still propagate after the local state is cleared.
        """
        snapshot = self.session.snapshot()
        try:
            if snapshot.refresh_capability is not None:
                await self.gateway.logout(snapshot.refresh_capability)
        finally:
            self.session.clear()
            self.logger.info("session_logged_out")

    async def logout_and_notify(self) -> None:
        """Log out, then tell listeners to send the user to sign-in."""
        try:
            await self.logout()
        finally:
            self.notifier.notify(SessionExpiredEvent(reason="logout", status_code=None))

    def restore_capability(self, capability: RefreshCapability) -> bool:
        """Seed a refresh capability persisted by the host so the next
        ``ensure_access_token`` can hydrate. Ignored while signed in."""
        applied = self.session.restore_capability(capability)
        self.logger.info(
            "refresh_capability_restored",
            capability=type(capability).__name__,
            applied=applied,
        )
        return applied

    async def ensure_access_token(self) -> Optional[str]:
        """Return a usable access token, renewing from the refresh capability if needed.

        Returns None when there is nothing to renew from or the renewal failed.
        Overlapping callers share a single renewal.
        """
        snapshot = self.session.snapshot()
        if snapshot.access_token is not None:
            return snapshot.access_token
        if snapshot.refresh_capability is None:
            return None

        self.session.begin_hydration()
        try:
            return await self.coordinator.renew()
        except RenewalFailed as exc:
            self.logger.info("hydration_failed", error=exc.message, status_code=exc.status_code)
            return None
        finally:
            self.session.end_hydration()
