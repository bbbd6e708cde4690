from __future__ import annotations

from typing import Any, Optional


class SessionClientError(Exception):
    """Base class for every error raised by the session client.

    Each class carries a default ``status_code`` and a stable ``error_code``
    so callers can branch on the kind of failure without parsing messages:
    - configuration_error (no status)
    - gateway_error (status of the gateway response)
    - network_failure (no status, transport level)
    - business_error (status of the business response, never 401)
    - authorization_expired (401)
    - renewal_failed (status of the failed renewal, if any)
    - session_expired (401, terminal)
    - protocol_violation (gateway answered 2xx with an unusable body)
    """

    status_code: Optional[int] = None
    error_code: str = "client_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ConfigurationError(SessionClientError):
    """A required setting (usually a base URL) is missing."""
    error_code = "configuration_error"


class GatewayError(SessionClientError):
    """The identity gateway answered with a non-success status."""
    error_code = "gateway_error"

    def __init__(self, status_code: int, message: str, *, data: Any = None) -> None:
        super().__init__(message, status_code=status_code)
        self.data = data


class NetworkFailure(SessionClientError):
    """Transport-level failure: connect error, timeout, protocol error."""
    error_code = "network_failure"


class BusinessError(SessionClientError):
    """A non-401 failure from a business endpoint, returned verbatim."""
    error_code = "business_error"

    def __init__(self, status_code: int, message: str, *, data: Any = None) -> None:
        super().__init__(message, status_code=status_code)
        self.data = data


class AuthorizationExpired(SessionClientError):
    """First-attempt 401; consumed by the executor's refresh-and-retry path."""
    status_code = 401
    error_code = "authorization_expired"


class RenewalFailed(SessionClientError):
    """The renewal call itself failed."""
    error_code = "renewal_failed"


class SessionExpired(SessionClientError):
    """Terminal authentication failure; the host must sign the user in again."""
    status_code = 401
    error_code = "session_expired"

    def __init__(
        self,
        message: str = "Session expired. Please sign in again.",
        *,
        reason: str,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.reason = reason


class ProtocolViolation(SessionClientError):
    """The gateway broke its response contract, e.g. login without a token."""
    status_code = 500
    error_code = "protocol_violation"


__all__ = [
    "SessionClientError",
    "ConfigurationError",
    "GatewayError",
    "NetworkFailure",
    "BusinessError",
    "AuthorizationExpired",
    "RenewalFailed",
    "SessionExpired",
    "ProtocolViolation",
]
