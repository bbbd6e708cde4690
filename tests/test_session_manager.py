"""Tests for login, register, logout and session hydration."""

import asyncio

import httpx
import pytest

from gatewaysession.config import RefreshTransport
from gatewaysession.service.errors import GatewayError, ProtocolViolation
from gatewaysession.storage.models import (
    AuthenticatedRequest,
    ExplicitRefresh,
    ImplicitRefresh,
    SessionPhase,
)

GATEWAY = "http://gateway.test"
APP = "http://app.test"


class TestLogin:
    async def test_login_authenticates_with_returned_tokens(self, runtime, backend):
        backend.reply("POST", f"{GATEWAY}/auth/login", 200, {"accessToken": "A1", "refreshToken": "R1"})

        await runtime.auth.login("a@b.com", "password123")

        snapshot = runtime.auth.snapshot()
        assert snapshot.phase is SessionPhase.AUTHENTICATED
        assert snapshot.access_token == "A1"
        assert snapshot.refresh_capability == ExplicitRefresh("R1")
        assert runtime.auth.is_authenticated is True

    async def test_login_without_access_token_is_protocol_violation(self, runtime, backend):
        backend.reply("POST", f"{GATEWAY}/auth/login", 200, {"refreshToken": "R1"})

        with pytest.raises(ProtocolViolation):
            await runtime.auth.login("a@b.com", "password123")

        assert runtime.auth.phase is SessionPhase.UNAUTHENTICATED
        assert runtime.session.refresh_capability is None

    async def test_rejected_login_leaves_session_untouched(self, runtime, backend):
        backend.reply("POST", f"{GATEWAY}/auth/login", 401, {"message": "Invalid credentials"})

        with pytest.raises(GatewayError) as exc_info:
            await runtime.auth.login("a@b.com", "wrong")

        assert exc_info.value.message == "Invalid credentials"
        assert runtime.auth.phase is SessionPhase.UNAUTHENTICATED

    async def test_login_without_refresh_token_in_explicit_mode(self, runtime, backend):
        backend.reply("POST", f"{GATEWAY}/auth/login", 200, {"accessToken": "A1"})

        await runtime.auth.login("a@b.com", "password123")

        assert runtime.session.access_token == "A1"
        assert runtime.session.refresh_capability is None

    async def test_login_after_expiry_recovers(self, runtime, backend):
        backend.reply("POST", f"{GATEWAY}/auth/login", 200, {"accessToken": "A1", "refreshToken": "R1"})
        runtime.session.set_authenticated("A0", ExplicitRefresh("R0"))
        runtime.session.expire()

        await runtime.auth.login("a@b.com", "password123")

        assert runtime.auth.phase is SessionPhase.AUTHENTICATED


class TestRegister:
    async def test_register_authenticates(self, runtime, backend):
        backend.reply("POST", f"{GATEWAY}/auth/register", 201, {"accessToken": "A1", "refreshToken": "R1"})

        pair = await runtime.auth.register("new@b.com", "password123")

        assert pair.access_token == "A1"
        assert runtime.session.access_token == "A1"
        assert backend.calls[0].body == {"email": "new@b.com", "password": "password123"}

    async def test_register_without_access_token_fails_loudly(self, runtime, backend):
        backend.reply("POST", f"{GATEWAY}/auth/register", 201, {"id": "u1"})

        with pytest.raises(ProtocolViolation) as exc_info:
            await runtime.auth.register("new@b.com", "password123")

        assert exc_info.value.detail == {"action": "register"}
        assert runtime.auth.phase is SessionPhase.UNAUTHENTICATED


class TestCookieTransport:
    async def test_login_without_refresh_token_uses_implicit_capability(self, make_runtime, backend):
        runtime = make_runtime(refresh_transport=RefreshTransport.COOKIE)
        backend.reply(
            "POST",
            f"{GATEWAY}/auth/login",
            200,
            {"accessToken": "A1"},
            headers={"set-cookie": "refresh=server-held; Path=/; HttpOnly"},
        )
        backend.reply("POST", f"{GATEWAY}/auth/refresh", 200, {"accessToken": "A2"})

        await runtime.auth.login("a@b.com", "password123")
        assert runtime.session.refresh_capability == ImplicitRefresh()

        assert await runtime.coordinator.renew() == "A2"
        refresh_call = backend.calls_to("POST", f"{GATEWAY}/auth/refresh")[0]
        assert refresh_call.body == {}
        assert "refresh=server-held" in refresh_call.cookie
        assert runtime.session.refresh_capability == ImplicitRefresh()

    async def test_gateway_cookie_is_not_sent_to_app_server(self, make_runtime, backend):
        runtime = make_runtime(refresh_transport=RefreshTransport.COOKIE)
        backend.reply(
            "POST",
            f"{GATEWAY}/auth/login",
            200,
            {"accessToken": "A1"},
            headers={"set-cookie": "refresh=server-held; Path=/; HttpOnly"},
        )
        backend.reply("GET", f"{APP}/me", 200, {"id": "u1"})

        await runtime.auth.login("a@b.com", "password123")
        await runtime.executor.execute(AuthenticatedRequest(path="/me"))

        assert backend.calls_to("GET", f"{APP}/me")[0].cookie is None


class TestLogout:
    async def test_logout_presents_capability_and_clears(self, runtime, backend):
        runtime.session.set_authenticated("A1", ExplicitRefresh("R1"))
        backend.reply("POST", f"{GATEWAY}/auth/logout", 204)

        await runtime.auth.logout()

        assert backend.calls[0].body == {"refreshToken": "R1"}
        assert runtime.auth.phase is SessionPhase.UNAUTHENTICATED
        assert runtime.session.access_token is None

    async def test_logout_clears_even_when_gateway_fails(self, runtime, backend):
        runtime.session.set_authenticated("A1", ExplicitRefresh("R1"))
        backend.reply("POST", f"{GATEWAY}/auth/logout", 500, {"message": "boom"})

        with pytest.raises(GatewayError):
            await runtime.auth.logout()

        assert runtime.session.access_token is None
        assert runtime.session.refresh_capability is None

    async def test_logout_without_capability_skips_gateway(self, runtime, backend):
        runtime.session.set_authenticated("A1", None)

        await runtime.auth.logout()

        assert backend.calls == []
        assert runtime.session.access_token is None

    async def test_logout_and_notify(self, runtime, backend, listener):
        runtime.session.set_authenticated("A1", ExplicitRefresh("R1"))
        backend.reply("POST", f"{GATEWAY}/auth/logout", 503)

        with pytest.raises(GatewayError):
            await runtime.auth.logout_and_notify()

        assert [e.reason for e in listener.events] == ["logout"]
        assert listener.events[0].redirect_to == "/login"


class TestHydration:
    async def test_cached_token_is_returned_without_network(self, runtime, backend):
        runtime.session.set_authenticated("A1", ExplicitRefresh("R1"))

        assert await runtime.auth.ensure_access_token() == "A1"
        assert backend.calls == []

    async def test_no_capability_returns_none(self, runtime, backend):
        assert await runtime.auth.ensure_access_token() is None
        assert backend.calls == []

    async def test_overlapping_hydration_shares_one_renewal(self, runtime, backend):
        gate = asyncio.Event()

        async def slow_refresh(request):
            await gate.wait()
            return httpx.Response(200, json={"accessToken": "A2"})

        backend.route("POST", f"{GATEWAY}/auth/refresh", slow_refresh)
        assert runtime.auth.restore_capability(ExplicitRefresh("R9")) is True

        tasks = [asyncio.create_task(runtime.auth.ensure_access_token()) for _ in range(3)]
        await asyncio.sleep(0.01)
        assert runtime.auth.is_hydrating is True
        gate.set()
        tokens = await asyncio.gather(*tasks)

        assert tokens == ["A2", "A2", "A2"]
        assert len(backend.calls) == 1
        assert runtime.auth.phase is SessionPhase.AUTHENTICATED

    async def test_failed_hydration_returns_none(self, make_runtime, backend):
        runtime = make_runtime(refresh_transport=RefreshTransport.COOKIE)
        backend.reply("POST", f"{GATEWAY}/auth/refresh", 401, None)

        assert await runtime.auth.ensure_access_token() is None
        assert runtime.auth.phase is SessionPhase.UNAUTHENTICATED
        assert runtime.auth.is_hydrating is False

    async def test_cookie_mode_hydrates_from_gateway_cookie_at_startup(self, make_runtime, backend):
        runtime = make_runtime(refresh_transport=RefreshTransport.COOKIE)
        runtime.gateway_http.cookies.set("refresh", "server-held", domain="gateway.test")
        backend.reply("POST", f"{GATEWAY}/auth/refresh", 200, {"accessToken": "A9"})

        assert runtime.session.refresh_capability == ImplicitRefresh()
        assert await runtime.auth.ensure_access_token() == "A9"

        refresh_calls = backend.calls_to("POST", f"{GATEWAY}/auth/refresh")
        assert len(refresh_calls) == 1
        assert refresh_calls[0].body == {}
        assert "refresh=server-held" in refresh_calls[0].cookie
        assert runtime.auth.phase is SessionPhase.AUTHENTICATED

    async def test_explicit_mode_starts_without_capability(self, runtime):
        assert runtime.session.refresh_capability is None

    async def test_restored_refresh_token_is_presented(self, runtime, backend):
        backend.reply("POST", f"{GATEWAY}/auth/refresh", 200, {"accessToken": "A9", "refreshToken": "R10"})

        runtime.auth.restore_capability(ExplicitRefresh("R9"))

        assert await runtime.auth.ensure_access_token() == "A9"
        assert backend.calls[0].body == {"refreshToken": "R9"}
        assert runtime.session.snapshot().refresh_token == "R10"

    async def test_restore_is_ignored_while_signed_in(self, runtime, backend):
        runtime.session.set_authenticated("A1", ExplicitRefresh("R1"))

        assert runtime.auth.restore_capability(ExplicitRefresh("R9")) is False
        assert await runtime.auth.ensure_access_token() == "A1"
        assert backend.calls == []


class TestAppServer:
    async def test_me_and_home(self, runtime, backend):
        runtime.session.set_authenticated("A1", ExplicitRefresh("R1"))
        backend.reply("GET", f"{APP}/me", 200, {"id": "u1"})
        backend.reply("GET", f"{APP}/home", 200, {"greeting": "hi"})

        assert await runtime.app_server.me() == {"id": "u1"}
        assert await runtime.app_server.home() == {"greeting": "hi"}
        assert all(c.token == "A1" for c in backend.calls)


async def test_end_to_end_login_refresh_and_retry(runtime, backend, listener):
    """Login, expired access token, renewal without rotation, retry with the new token."""
    backend.reply("POST", f"{GATEWAY}/auth/login", 200, {"accessToken": "A1", "refreshToken": "R1"})
    backend.reply("POST", f"{GATEWAY}/auth/refresh", 200, {"accessToken": "A2"})

    def me(request):
        if request.headers.get("authorization") == "Bearer A2":
            return httpx.Response(200, json={"id": "u1"})
        return httpx.Response(401, json={"message": "jwt expired"})

    backend.route("GET", f"{APP}/me", me)

    await runtime.auth.login("a@b.com", "password123")
    assert await runtime.app_server.me() == {"id": "u1"}

    snapshot = runtime.auth.snapshot()
    assert (snapshot.access_token, snapshot.refresh_token) == ("A2", "R1")
    assert listener.events == []
    await runtime.aclose()
