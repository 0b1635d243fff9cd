from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

BEARER_PREFIX = "bearer "


def extract_api_key(request: Request) -> str | None:
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return api_key.strip()
    authorization = request.headers.get("Authorization", "")
    if authorization.lower().startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):].strip() or None
    return None


class ApiKeyAuthMiddleware(BaseHTTPMiddleware):
    """Exposes the caller's API key on ``request.state``.

    Keys are only resolved to identities by the routes that need one, so
    public endpoints stay reachable without credentials.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.api_key = extract_api_key(request)
        return await call_next(request)
