from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from llm_gateway.config.settings import get_settings

ALLOW_HEADERS = "content-type,authorization,x-role,x-user-id"
ALLOW_METHODS = "POST,OPTIONS"
MAX_AGE_SECONDS = "86400"


def resolve_allowed_origin(origin: str | None, allowed: list[str]) -> str:
    if "*" in allowed:
        return "*"
    if origin and origin in allowed:
        return origin
    return allowed[0]


def build_cors_headers(origin: str | None, allowed: list[str]) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": resolve_allowed_origin(origin, allowed),
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Max-Age": MAX_AGE_SECONDS,
        "Vary": "Origin",
    }


class CORSMiddleware(BaseHTTPMiddleware):
    """Answers preflight requests and stamps CORS headers on every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        settings = get_settings()
        headers = build_cors_headers(request.headers.get("origin"), settings.allow_origin_list)

        if request.method == "OPTIONS":
            return Response(status_code=204, headers=headers)

        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response
