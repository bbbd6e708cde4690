from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class SessionPhase(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    HYDRATING = "hydrating"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ExplicitRefresh:
    """Refresh token held by the client and presented in the request body."""

    token: str

    def __repr__(self) -> str:
        return "ExplicitRefresh(token=***)"


@dataclass(frozen=True)
class ImplicitRefresh:
    """Refresh credential held by the gateway side channel (HTTP-only cookie)."""


RefreshCapability = Union[ExplicitRefresh, ImplicitRefresh]


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str

    def as_payload(self) -> Dict[str, str]:
        return {"email": self.email, "password": self.password}

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, password=***)"


@dataclass(frozen=True)
class TokenPair:
    """Tokens returned by register/login/refresh.

    ``access_token`` is None only when the gateway broke its contract; callers
    decide whether that is fatal. ``refresh_token`` is None when the gateway
    manages the refresh credential itself.
    """

    access_token: Optional[str]
    refresh_token: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_payload(cls, data: Any) -> "TokenPair":
        if not isinstance(data, dict):
            return cls(access_token=None, refresh_token=None)
        # Some gateway builds answer with "token" instead of "accessToken"
        access = data.get("accessToken") or data.get("token") or None
        refresh = data.get("refreshToken") or None
        return cls(access_token=access, refresh_token=refresh, raw=data)


@dataclass(frozen=True)
class SessionSnapshot:
    """Consistent view of the session at one instant."""

    access_token: Optional[str]
    refresh_capability: Optional[RefreshCapability]
    phase: SessionPhase
    generation: int = 0

    @property
    def refresh_token(self) -> Optional[str]:
        if isinstance(self.refresh_capability, ExplicitRefresh):
            return self.refresh_capability.token
        return None


@dataclass
class AuthenticatedRequest:
    path: str
    method: str = "GET"
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    retry_on_401: bool = True


@dataclass
class ApiResponse:
    status_code: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class SessionExpiredEvent:
    """Delivered to expiry observers once per terminal session failure."""

    reason: str
    method: Optional[str] = None
    path: Optional[str] = None
    status_code: Optional[int] = 401
    redirect_to: str = "/login"
