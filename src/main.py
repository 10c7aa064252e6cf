"""Game API Proxy — FastAPI application entry point.

Forwards browser requests to the game metadata API, injecting the
server-side API key so it never reaches the client, behind an origin
gate and a per-IP rate limiter.
"""

import asyncio
import sys
from contextlib import asynccontextmanager, suppress

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from src.config.settings import ConfigurationError, Settings, load_settings
from src.logging.audit import audit_request, get_audit_logger, setup_logging
from src.proxy.handler import GameAPIClient, UpstreamError, UpstreamResponse, is_valid_slug
from src.security.origin import ALLOWED_HEADERS, ALLOWED_METHODS, OriginGateMiddleware
from src.security.ratelimit import FixedWindowRateLimiter, RateLimitMiddleware

VERSION = "0.1.0"

WELCOME_MESSAGE = "Welcome to the Game API Proxy with CORS, Rate Limiting, and API Integration!"
UPSTREAM_ERROR = "Failed to fetch data from external API"
MISSING_KEY_ERROR = "API key not found in environment variables"

router = APIRouter()


async def _sweep_rate_limits(limiter: FixedWindowRateLimiter) -> None:
    """Periodically drop expired windows so idle clients don't accumulate."""
    while True:
        await asyncio.sleep(limiter.window_seconds)
        removed = await limiter.purge_expired()
        if removed:
            get_audit_logger().debug(
                "Expired rate limit windows purged",
                extra={"audit_data": {"purged": removed, "active": len(limiter)}},
            )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    settings: Settings = app.state.settings
    logger = get_audit_logger()
    logger.info(f"Server is running on port {settings.port}")
    if not settings.allowed_origin:
        logger.warning("CLIENT_DOMAIN is not set; requests from any origin are accepted")

    sweeper = asyncio.create_task(_sweep_rate_limits(app.state.rate_limiter))
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await app.state.forwarder.close()
    logger.info("Proxy stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the proxy app. Raises ConfigurationError if API_KEY is missing."""
    if settings is None:
        settings = load_settings()

    setup_logging(settings.log_level, settings.audit_log_file)

    app = FastAPI(
        title="Game API Proxy",
        description="Proxy for the game metadata API with CORS and rate limiting",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.rate_limiter = FixedWindowRateLimiter(
        max_requests=settings.rate_limit_max,
        window_seconds=settings.window_seconds,
    )
    app.state.forwarder = GameAPIClient(
        base_url=settings.upstream_base_url,
        api_key=settings.api_key,
        timeout=settings.upstream_timeout_seconds,
    )

    # Middleware added last runs first:
    # CORS -> audit -> origin gate -> rate limit -> route
    app.add_middleware(RateLimitMiddleware, limiter=app.state.rate_limiter)
    app.add_middleware(OriginGateMiddleware, allowed_origin=settings.allowed_origin)

    app.middleware("http")(audit_request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.allowed_origin or "*"],
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
    )

    app.include_router(router)
    return app


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_forwarder(request: Request) -> GameAPIClient:
    return request.app.state.forwarder


async def _relay(call, settings: Settings) -> JSONResponse:
    """Run an upstream call and map its outcome onto the public error contract."""
    if not settings.api_key:
        return JSONResponse(status_code=500, content={"error": MISSING_KEY_ERROR})
    try:
        result: UpstreamResponse = await call()
    except UpstreamError:
        return JSONResponse(status_code=500, content={"error": UPSTREAM_ERROR})
    return JSONResponse(status_code=200, content=result.body)


@router.get("/", response_class=PlainTextResponse)
async def welcome():
    return WELCOME_MESSAGE


@router.get("/api/games")
async def search_games(
    search: str | None = None,
    settings: Settings = Depends(get_app_settings),
    forwarder: GameAPIClient = Depends(get_forwarder),
):
    """Search games by free text."""
    return await _relay(lambda: forwarder.search_games(search), settings)


@router.get("/api/game")
async def get_game(
    game_slug: str = Query(alias="gameSlug"),
    settings: Settings = Depends(get_app_settings),
    forwarder: GameAPIClient = Depends(get_forwarder),
):
    """Fetch a single game by slug or id."""
    if not is_valid_slug(game_slug):
        raise HTTPException(status_code=422, detail="gameSlug must name a single game")
    return await _relay(lambda: forwarder.get_game(game_slug), settings)


def main() -> None:
    """Process entry point: load config, fail fast, serve with uvicorn."""
    setup_logging()
    try:
        settings = load_settings()
    except ConfigurationError as e:
        get_audit_logger().critical("Startup aborted", extra={"audit_data": {"reason": str(e)}})
        sys.exit(1)

    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
