"""Shared fixtures for the Game API Proxy test suite."""

import json

import httpx
import pytest

from src.config.settings import Settings, get_settings
from src.main import create_app
from src.proxy.handler import GameAPIClient

ALLOWED_ORIGIN = "https://games.example.com"
UPSTREAM_BASE = "https://upstream.test/api"


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(API_KEY="k", RATE_LIMIT_MAX="5")
    """
    def _override(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key.upper(), raising=False)
            else:
                monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings built explicitly, independent of the process environment."""
    return Settings(
        _env_file=None,
        api_key="rawg-secret-key",
        client_domain=ALLOWED_ORIGIN,
        port=3000,
        rate_limit_window_ms=60_000,
        rate_limit_max=3,
        upstream_base_url=UPSTREAM_BASE,
        upstream_timeout_seconds=2.0,
    )


class StubUpstream:
    """Records upstream requests and answers with a configurable response."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.body: object = {"results": []}
        self.raw: bytes | None = None
        self.error: Exception | None = None

    def respond(self, status_code: int = 200, body: object = None, raw: bytes | None = None):
        self.status_code = status_code
        self.body = body if body is not None else {}
        self.raw = raw

    def fail(self, error: Exception):
        self.error = error

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.raw is not None:
            return httpx.Response(self.status_code, content=self.raw)
        return httpx.Response(self.status_code, content=json.dumps(self.body).encode())

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def upstream() -> StubUpstream:
    return StubUpstream()


@pytest.fixture
def forwarder(settings, upstream) -> GameAPIClient:
    return GameAPIClient(
        base_url=settings.upstream_base_url,
        api_key=settings.api_key,
        timeout=settings.upstream_timeout_seconds,
        transport=upstream.transport(),
    )


@pytest.fixture
def app(settings, forwarder):
    application = create_app(settings)
    application.state.forwarder = forwarder
    return application


@pytest.fixture
async def app_client(app):
    """httpx AsyncClient wired to the proxy app with a stubbed upstream."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
