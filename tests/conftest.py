import asyncio
import inspect
import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

# Keep test runs independent of the developer's shell and .env
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
for _name in ("API_BASE", "GATEWAY_BASE_URL", "APP_SERVER_BASE_URL", "REFRESH_TRANSPORT"):
    os.environ.pop(_name, None)

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from gatewaysession.config import Settings  # noqa: E402
from gatewaysession.service.runtime import Runtime, reset_runtime_for_tests  # noqa: E402

GATEWAY_URL = "http://gateway.test"
APP_URL = "http://app.test"


@dataclass
class RecordedCall:
    method: str
    url: str
    body: Any
    token: Optional[str]
    cookie: Optional[str]


class FakeBackend:
    """In-process stand-in for the gateway and the app server.

    Routes are keyed by method and full URL. A responder receives the
    ``httpx.Request`` and returns an ``httpx.Response`` (or a coroutine
    resolving to one), so each call gets a fresh response object.
    """

    def __init__(self) -> None:
        self.routes = {}
        self.calls: list[RecordedCall] = []

    def route(self, method: str, url: str, responder) -> None:
        self.routes[(method.upper(), url)] = responder

    def reply(self, method: str, url: str, status: int, body: Any = None, **kwargs) -> None:
        self.sequence(method, url, [(status, body)], **kwargs)

    def sequence(self, method: str, url: str, replies, headers=None) -> None:
        """Answer with ``replies`` in order; the last reply repeats."""
        remaining = list(replies)

        def _responder(request: httpx.Request) -> httpx.Response:
            status, body = remaining.pop(0) if len(remaining) > 1 else remaining[0]
            if body is None:
                return httpx.Response(status, headers=headers)
            if isinstance(body, (bytes, str)):
                return httpx.Response(status, content=body, headers=headers)
            return httpx.Response(status, json=body, headers=headers)

        self.route(method, url, _responder)

    def calls_to(self, method: str, url: str) -> list[RecordedCall]:
        return [c for c in self.calls if c.method == method.upper() and c.url == url]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        content = request.read()
        header = request.headers.get("authorization")
        token = header[len("Bearer "):] if header and header.startswith("Bearer ") else None
        url = str(request.url)
        self.calls.append(
            RecordedCall(
                method=request.method,
                url=url,
                body=json.loads(content) if content else None,
                token=token,
                cookie=request.headers.get("cookie"),
            )
        )
        responder = self.routes.get((request.method, url))
        if responder is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {url}"})
        response = responder(request)
        if inspect.isawaitable(response):
            response = await response
        return response


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    return Settings(gateway_base_url=GATEWAY_URL, app_server_base_url=APP_URL)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_runtime(settings, backend):
    """Build a Runtime whose HTTP clients talk to the fake backend."""

    def _make(**overrides):
        effective = settings.model_copy(update=overrides) if overrides else settings
        return Runtime(effective, transport=httpx.MockTransport(backend.handle))

    return _make


@pytest.fixture
def runtime(make_runtime):
    return make_runtime()


class RecordingListener:
    def __init__(self) -> None:
        self.events = []

    def on_session_expired(self, event) -> None:
        self.events.append(event)


@pytest.fixture
def listener(runtime):
    recorder = RecordingListener()
    runtime.notifier.subscribe(recorder)
    return recorder


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
