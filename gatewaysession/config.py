from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from gatewaysession.logging import get_logger
from gatewaysession.service.errors import ConfigurationError

logger = get_logger(__name__)


class RefreshTransport(str, Enum):
    """How the refresh capability travels to the gateway.

    - EXPLICIT: the client holds the refresh token and sends it in the JSON body
    - COOKIE: the gateway keeps the refresh token in an HTTP-only cookie; the
      client sends an empty body and lets the cookie jar carry the credential
    """

    EXPLICIT = "explicit"
    COOKIE = "cookie"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


# Older deployments configured the gateway under a different name
_LEGACY_ENV_ALIASES: dict[str, str] = {
    "gateway_base_url": "GATEWAY_BASE_URL",
}


class Settings(BaseModel):
    """Runtime settings for the session client."""

    gateway_base_url: str | None = env_field(
        None, "API_BASE", description="Identity gateway base URL"
    )
    app_server_base_url: str | None = env_field(
        None, "APP_SERVER_BASE_URL", description="Application server base URL"
    )
    refresh_transport: RefreshTransport = env_field(
        RefreshTransport.EXPLICIT,
        "REFRESH_TRANSPORT",
        description="explicit (token in body) or cookie (server-held refresh token)",
    )
    request_timeout_seconds: float = env_field(30.0, "REQUEST_TIMEOUT_SECONDS")
    connect_timeout_seconds: float = env_field(10.0, "CONNECT_TIMEOUT_SECONDS")
    verify_tls: bool = env_field(True, "VERIFY_TLS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            candidates = [env_key or name.upper()]
            if name in _LEGACY_ENV_ALIASES:
                candidates.append(_LEGACY_ENV_ALIASES[name])
            for env_name in candidates:
                if env_name in os.environ:
                    merged[name] = os.environ[env_name]
                    break
                if env_name in env_file_values:
                    merged[name] = env_file_values[env_name]
                    break
        return cls(**merged)

    @field_validator("gateway_base_url", "app_server_base_url")
    @classmethod
    def _normalize_base_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None

    @field_validator("refresh_transport")
    @classmethod
    def _validate_refresh_transport(cls, value: RefreshTransport) -> RefreshTransport:
        return RefreshTransport(value)

    def require_gateway_base_url(self) -> str:
        if not self.gateway_base_url:
            raise ConfigurationError(
                "API_BASE (or legacy GATEWAY_BASE_URL) is not set. "
                "Please configure it in your environment."
            )
        return self.gateway_base_url

    def require_app_server_base_url(self) -> str:
        if not self.app_server_base_url:
            raise ConfigurationError(
                "APP_SERVER_BASE_URL is not set. Please configure it in your environment."
            )
        return self.app_server_base_url


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug(
            "settings_loaded",
            gateway_configured=bool(_settings_cache.gateway_base_url),
            app_server_configured=bool(_settings_cache.app_server_base_url),
            refresh_transport=_settings_cache.refresh_transport.value,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
