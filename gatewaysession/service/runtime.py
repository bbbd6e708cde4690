from __future__ import annotations

import threading
from typing import Optional

import httpx

from gatewaysession.config import RefreshTransport, Settings, get_settings, reset_settings_cache
from gatewaysession.logging import get_logger
from gatewaysession.service.app_server import AppServerClient
from gatewaysession.service.auth import SessionManager
from gatewaysession.service.executor import AuthenticatedRequestExecutor
from gatewaysession.service.gateway import GatewayClient
from gatewaysession.service.notifications import SessionExpiryNotifier
from gatewaysession.service.refresh import RefreshCoordinator
from gatewaysession.storage.models import ImplicitRefresh
from gatewaysession.storage.session_state import SessionState

logger = get_logger(__name__)


class Runtime:
    """Holds the per-process session components wired together.

    ``transport`` replaces the network for every HTTP client the runtime
    builds; tests pass an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        timeout = httpx.Timeout(
            self.settings.request_timeout_seconds,
            connect=self.settings.connect_timeout_seconds,
        )
        # One client per upstream: the gateway client's cookie jar may carry
        # the refresh credential and must never leak to the app server
        self.gateway_http = httpx.AsyncClient(
            timeout=timeout,
            verify=self.settings.verify_tls,
            follow_redirects=False,
            transport=transport,
        )
        self.app_http = httpx.AsyncClient(
            timeout=timeout,
            verify=self.settings.verify_tls,
            transport=transport,
        )

        # In cookie mode the gateway may already hold a refresh cookie from an
        # earlier visit, so the session starts able to hydrate
        self.session = SessionState(
            ImplicitRefresh()
            if self.settings.refresh_transport is RefreshTransport.COOKIE
            else None
        )
        self.notifier = SessionExpiryNotifier()
        self.gateway = GatewayClient(self.settings, client=self.gateway_http)
        self.coordinator = RefreshCoordinator(self.gateway, self.session)
        self.executor = AuthenticatedRequestExecutor(
            self.settings,
            self.session,
            self.coordinator,
            self.notifier,
            client=self.app_http,
        )
        self.auth = SessionManager(
            self.settings,
            self.gateway,
            self.session,
            self.coordinator,
            self.notifier,
        )
        self.app_server = AppServerClient(self.executor)

        logger.info(
            "runtime_initialized",
            gateway_configured=bool(self.settings.gateway_base_url),
            app_server_configured=bool(self.settings.app_server_base_url),
            refresh_transport=self.settings.refresh_transport.value,
        )

    async def aclose(self) -> None:
        await self.gateway_http.aclose()
        await self.app_http.aclose()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking pattern for efficiency:
    - First check without lock (fast path for existing runtime)
    - Second check with lock to prevent race condition during creation
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> None:
    """Drop the runtime singleton and cached settings for isolated test runs.

    HTTP clients of the dropped runtime are not closed here; tests that open
    connections close their own runtime with ``aclose``.
    """
    global runtime

    with _runtime_lock:
        runtime = None
        reset_settings_cache()
