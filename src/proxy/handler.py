"""Upstream forwarder for the game metadata API.

Builds upstream URLs with the server-side API key, issues GET requests
through a shared httpx client and hands back the parsed JSON untouched.
Any failure is logged here and surfaced as UpstreamError; callers turn
that into a generic message so upstream URLs and keys never leak.
"""

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from src.logging.audit import RequestTimer, get_audit_logger


class UpstreamError(Exception):
    """Non-success status, transport failure or unparsable upstream body."""


@dataclass
class UpstreamRequest:
    path: str
    params: dict[str, str]


@dataclass
class UpstreamResponse:
    status_code: int
    body: Any


class GameAPIClient:
    """Forwards read-only requests to the game metadata API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    def build_search_request(self, search: str | None) -> UpstreamRequest:
        params = {"key": self._api_key}
        if search is not None:
            params["search"] = search
        return UpstreamRequest(path="/games", params=params)

    def build_game_request(self, slug: str) -> UpstreamRequest:
        if not is_valid_slug(slug):
            raise _failed(UpstreamRequest(path="/games/", params={}), "Invalid game slug")
        return UpstreamRequest(
            path=f"/games/{quote(slug, safe='')}",
            params={"key": self._api_key},
        )

    async def search_games(self, search: str | None) -> UpstreamResponse:
        return await self.forward(self.build_search_request(search))

    async def get_game(self, slug: str) -> UpstreamResponse:
        return await self.forward(self.build_game_request(slug))

    async def forward(self, upstream: UpstreamRequest) -> UpstreamResponse:
        client = await self._get_client()

        try:
            with RequestTimer() as timer:
                response = await client.get(
                    f"{self.base_url}{upstream.path}",
                    params=upstream.params,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TimeoutException as e:
            raise _failed(upstream, "Upstream timed out") from e
        except httpx.HTTPError as e:
            # httpx messages can embed the request URL, and with it the key
            raise _failed(upstream, f"Transport error: {type(e).__name__}") from e

        if not response.is_success:
            raise _failed(upstream, f"Upstream returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise _failed(upstream, "Upstream returned invalid JSON") from e

        get_audit_logger().info(
            "Request proxied",
            extra={"audit_data": {
                "upstream_path": upstream.path,
                "upstream_status": response.status_code,
                "latency_ms": timer.elapsed_ms,
            }},
        )
        return UpstreamResponse(status_code=response.status_code, body=body)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def is_valid_slug(slug: str) -> bool:
    """Dot segments would be collapsed by the URL parser and leave /games/."""
    return bool(slug.strip("."))


def _failed(upstream: UpstreamRequest, reason: str) -> UpstreamError:
    """Log an upstream failure and build the error to raise."""
    get_audit_logger().error(
        "Upstream request failed",
        extra={"audit_data": {
            "upstream_path": upstream.path,
            "reason": reason,
        }},
    )
    return UpstreamError(reason)
