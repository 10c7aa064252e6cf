"""Origin restriction for browser clients.

Starlette's CORSMiddleware only decides which response headers to emit;
it still lets a foreign-origin request through to the route. This gate
rejects those requests outright so they never reach the rate limiter or
the upstream API. Requests without an Origin header are not cross-origin
browser requests and pass unchanged.
"""

from fastapi import Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from src.logging.audit import get_audit_logger
from src.security.ratelimit import client_identity

ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE"]
ALLOWED_HEADERS = ["Content-Type", "Authorization"]
DISALLOWED_ORIGIN_MESSAGE = "Disallowed CORS origin"


def origin_allowed(origin: str | None, allowed_origin: str) -> bool:
    """An empty allowed_origin admits every origin."""
    if origin is None or not allowed_origin:
        return True
    return origin == allowed_origin


class OriginGateMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, allowed_origin: str):
        super().__init__(app)
        self.allowed_origin = allowed_origin

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        origin = request.headers.get("origin")
        if origin_allowed(origin, self.allowed_origin):
            return await call_next(request)

        get_audit_logger().warning(
            "Origin rejected",
            extra={"audit_data": {
                "client_ip": client_identity(request),
                "origin": origin,
                "path": request.url.path,
            }},
        )
        # Same response CORSMiddleware gives a preflight from a foreign origin
        return PlainTextResponse(DISALLOWED_ORIGIN_MESSAGE, status_code=400)
