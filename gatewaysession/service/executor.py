from __future__ import annotations

from typing import Optional

import httpx

from gatewaysession.config import Settings
from gatewaysession.logging import get_correlation_id, get_logger, set_correlation_id
from gatewaysession.service.errors import (
    AuthorizationExpired,
    BusinessError,
    NetworkFailure,
    RenewalFailed,
    SessionClientError,
    SessionExpired,
)
from gatewaysession.service.http_utils import decode_body, error_message, json_headers
from gatewaysession.service.notifications import SessionExpiryNotifier
from gatewaysession.service.refresh import RefreshCoordinator
from gatewaysession.storage.models import (
    ApiResponse,
    AuthenticatedRequest,
    SessionExpiredEvent,
)
from gatewaysession.storage.session_state import SessionState

logger = get_logger(__name__)


class AuthenticatedRequestExecutor:
    """Issue business requests with the bearer token and absorb token expiry.

    A 401 on the first attempt triggers one renewal through the
    ``RefreshCoordinator`` and one reissue of the request. Whatever happens,
    a call performs at most one renewal and one reissue.

    Outcomes reaching the caller:
    - ``ApiResponse`` for any 2xx
    - ``BusinessError`` for any other non-401 status (first attempt or retry)
    - ``NetworkFailure`` for transport errors, including timeouts
    - ``SessionExpired`` when the 401 cannot be recovered; the session it was
      sent under is cleared and the expiry notifier has fired once before it
      is raised
    """

    def __init__(
        self,
        settings: Settings,
        session: SessionState,
        coordinator: RefreshCoordinator,
        notifier: SessionExpiryNotifier,
        *,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self.settings = settings
        self.session = session
        self.coordinator = coordinator
        self.notifier = notifier
        self._base_url = base_url.rstrip("/") if base_url else None
        self._client = client
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return self._base_url or self.settings.require_app_server_base_url()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client for business calls."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.settings.request_timeout_seconds,
                    connect=self.settings.connect_timeout_seconds,
                ),
                verify=self.settings.verify_tls,
            )
        return self._client

    async def execute(self, request: AuthenticatedRequest) -> ApiResponse:
        """Perform ``request`` with token attachment and refresh-on-401 retry.

        Expiry only clears the session the request was sent under. If a
        login replaced it while the request was in flight, ``SessionExpired``
        is still raised and observed but the newer session is kept.
        """
        if get_correlation_id() is None:
            set_correlation_id()
        sent = self.session.snapshot()
        try:
            return await self._send(request, sent.access_token)
        except AuthorizationExpired as e:
            first_rejection = e

        if not request.retry_on_401:
            raise self._expire(request, "retry_disabled", sent.generation) from first_rejection

        snapshot = self.session.snapshot()
        if snapshot.access_token is not None and snapshot.access_token != sent.access_token:
            # Another call already renewed while this one was in flight
            logger.info("request_retry_with_current_token", path=request.path)
            new_token = snapshot.access_token
            generation = snapshot.generation
        else:
            if snapshot.refresh_capability is None:
                raise self._expire(
                    request, "no_refresh_capability", snapshot.generation
                ) from first_rejection
            try:
                new_token = await self.coordinator.renew()
            except RenewalFailed as e:
                after = self.session.snapshot()
                # A failed renewal leaves the session cleared unless it was replaced
                generation = after.generation if after.access_token is None else sent.generation
                raise self._expire(request, "renewal_failed", generation, cause=e) from e
            generation = self.session.generation

        try:
            return await self._send(request, new_token)
        except AuthorizationExpired as e:
            raise self._expire(request, "rejected_after_renewal", generation) from e

    async def _send(self, request: AuthenticatedRequest, token: Optional[str]) -> ApiResponse:
        url = f"{self.base_url}{request.path}"
        client = await self._get_client()
        method = request.method.upper()
        try:
            response = await client.request(
                method,
                url,
                json=request.body,
                headers=json_headers(request.body, token, request.headers),
            )
        except httpx.TimeoutException as e:
            logger.error("request_timeout", method=method, path=request.path, error=str(e))
            raise NetworkFailure(f"Request timed out ({method} {request.path})") from e
        except httpx.TransportError as e:
            logger.error(
                "request_transport_error",
                method=method,
                path=request.path,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise NetworkFailure(f"Failed to reach server ({method} {request.path})") from e

        data = decode_body(response)
        if response.status_code == 401:
            raise AuthorizationExpired(
                error_message(401, data), detail={"data": data, "path": request.path}
            )
        if not response.is_success:
            raise BusinessError(
                response.status_code, error_message(response.status_code, data), data=data
            )
        return ApiResponse(
            status_code=response.status_code,
            data=data,
            headers=dict(response.headers),
        )

    def _expire(
        self,
        request: AuthenticatedRequest,
        reason: str,
        generation: int,
        *,
        cause: Optional[SessionClientError] = None,
    ) -> SessionExpired:
        self.session.expire(generation)
        detail = {"method": request.method.upper(), "path": request.path}
        if cause is not None:
            detail["cause"] = cause.error_code
        error = SessionExpired(reason=reason, detail=detail)
        logger.warning("session_expired", reason=reason, **detail)
        self.notifier.notify(
            SessionExpiredEvent(
                reason=reason,
                method=request.method.upper(),
                path=request.path,
                status_code=cause.status_code if cause is not None else 401,
            )
        )
        return error

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None
