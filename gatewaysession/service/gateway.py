from __future__ import annotations

from typing import Any, Optional

import httpx

from gatewaysession.config import RefreshTransport, Settings
from gatewaysession.logging import get_logger
from gatewaysession.service.errors import GatewayError, NetworkFailure
from gatewaysession.service.http_utils import decode_body, error_message
from gatewaysession.storage.models import (
    Credentials,
    ExplicitRefresh,
    HealthStatus,
    ImplicitRefresh,
    RefreshCapability,
    TokenPair,
)

logger = get_logger(__name__)


class GatewayClient:
    """Transport adapter for the identity gateway.

    Endpoints:
    - POST /auth/register
    - POST /auth/login
    - POST /auth/refresh
    - POST /auth/logout
    - GET  /health

    The client is stateless apart from the HTTP connection pool. With the
    cookie refresh transport the pool's cookie jar carries the gateway's
    refresh credential, so the same ``httpx.AsyncClient`` must be reused for
    every call. No caching and no retries happen here.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self._client = client
        self._owns_client = client is None

    @property
    def refresh_transport(self) -> RefreshTransport:
        return self.settings.refresh_transport

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client used for gateway calls."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.settings.request_timeout_seconds,
                    connect=self.settings.connect_timeout_seconds,
                ),
                verify=self.settings.verify_tls,
                follow_redirects=False,
            )
        return self._client

    async def _post(self, path: str, payload: dict) -> Any:
        base_url = self.settings.require_gateway_base_url()
        client = await self._get_client()
        try:
            response = await client.post(
                f"{base_url}{path}",
                json=payload,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            logger.error("gateway_timeout", path=path, error=str(e))
            raise NetworkFailure(f"Gateway request timed out ({path})") from e
        except httpx.TransportError as e:
            logger.error(
                "gateway_transport_error",
                path=path,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise NetworkFailure(f"Failed to reach gateway ({path})") from e

        data = decode_body(response)
        if not response.is_success:
            message = error_message(response.status_code, data)
            logger.info(
                "gateway_error_response",
                path=path,
                status_code=response.status_code,
                error=message,
            )
            raise GatewayError(response.status_code, message, data=data)
        return data

    def _capability_payload(self, capability: Optional[RefreshCapability]) -> dict:
        if isinstance(capability, ExplicitRefresh):
            return {"refreshToken": capability.token}
        if isinstance(capability, ImplicitRefresh) or capability is None:
            return {}
        raise TypeError(f"Unsupported refresh capability: {type(capability).__name__}")

    async def register(self, credentials: Credentials) -> TokenPair:
        """Register a user via the gateway."""
        data = await self._post("/auth/register", credentials.as_payload())
        logger.info("gateway_register_success")
        return TokenPair.from_payload(data)

    async def login(self, credentials: Credentials) -> TokenPair:
        """Log in via the gateway. Returns the access token in the response body."""
        data = await self._post("/auth/login", credentials.as_payload())
        logger.info("gateway_login_success")
        return TokenPair.from_payload(data)

    async def renew(self, capability: Optional[RefreshCapability]) -> TokenPair:
        """Trade the refresh capability for a new access token."""
        data = await self._post("/auth/refresh", self._capability_payload(capability))
        pair = TokenPair.from_payload(data)
        logger.info("gateway_refresh_success", rotated=pair.refresh_token is not None)
        return pair

    async def logout(self, capability: Optional[RefreshCapability]) -> None:
        """Log out; the gateway also invalidates the refresh credential."""
        await self._post("/auth/logout", self._capability_payload(capability))
        logger.info("gateway_logout_success")

    async def probe(self) -> HealthStatus:
        """Check gateway liveness. Never raises for network or HTTP failures."""
        base_url = self.settings.require_gateway_base_url()
        client = await self._get_client()
        try:
            response = await client.get(f"{base_url}/health")
        except httpx.TransportError as e:
            logger.warning("gateway_health_unreachable", error=str(e))
            return HealthStatus.UNHEALTHY
        if not response.is_success:
            logger.warning("gateway_health_failed", status_code=response.status_code)
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None
