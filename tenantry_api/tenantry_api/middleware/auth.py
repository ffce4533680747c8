"""Authentication middleware that validates bearer tokens.

Extracts ``Authorization: Bearer <token>`` from every request, validates it
with the injected :class:`~tenantry_api.security.TokenVerifier`, and stores
the resulting :class:`~tenantry_api.security.TokenClaims` on
``request.state.claims``.

Public endpoints bypass authentication:

* health and API docs,
* the Stripe webhook (authenticated by its signature instead),
* ``GET /api/v1/invitations/{token}`` so invitees can preview an invitation
  before signing in.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from tenantry_api.security import TokenVerifier

logger = logging.getLogger(__name__)

_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
        "/api/v1/billing/webhooks",
    }
)

_PUBLIC_PREFIXES: tuple[str, ...] = (
    "/docs",
    "/redoc",
)

# Read-only invitation preview; accept/decline on the same prefix still need a token.
_PUBLIC_GET_PREFIXES: tuple[str, ...] = ("/api/v1/invitations/",)


def _is_public(method: str, path: str) -> bool:
    """Return ``True`` if the request should bypass authentication."""
    if path in _PUBLIC_PATHS:
        return True
    if any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES):
        return True
    if method == "GET" and any(path.startswith(prefix) for prefix in _PUBLIC_GET_PREFIXES):
        return path.count("/") == 4
    return False


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    On each request the middleware:

    1. Skips public paths.
    2. Extracts the ``Authorization: Bearer <token>`` header.
    3. Validates the token via the injected verifier.
    4. Stores the typed claims on ``request.state.claims``.
    5. Returns a 401/403 JSON response on failure.
    """

    def __init__(self, app: Any, *, verifier: TokenVerifier) -> None:
        super().__init__(app)
        self._verifier = verifier

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if _is_public(request.method, request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing Authorization header"},
            )

        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return JSONResponse(
                status_code=401,
                content={"detail": "Authorization header must use Bearer scheme"},
            )

        try:
            claims = self._verifier.verify(parts[1])
        except PermissionError as exc:
            error_msg = str(exc)
            # Expired tokens are 403 so clients know to refresh rather than re-login.
            if "expired" in error_msg.lower():
                return JSONResponse(
                    status_code=403,
                    content={"detail": "Token has expired"},
                )
            logger.info("Rejected bearer token on %s: %s", request.url.path, error_msg)
            return JSONResponse(
                status_code=401,
                content={"detail": f"Invalid token: {error_msg}"},
            )

        request.state.claims = claims
        return await call_next(request)
