"""Trusted-gateway authentication middleware.

Tokens are verified upstream.  The gateway forwards the verified user id in a
header (``Settings.trusted_user_header``); this middleware copies it into
``request.state.auth`` for ``get_current_user`` and rejects requests to
protected routes that arrive without it.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.config import Settings, get_settings
from src.dependencies import AuthContext

logger = logging.getLogger("vitalsync.auth")

# Paths that do not require authentication
PUBLIC_PATHS: set[str] = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}


def _is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc")


class TrustedGatewayAuthMiddleware(BaseHTTPMiddleware):
    """Populate request.state.auth from the gateway's user id header."""

    def __init__(self, app: Any, settings: Settings | None = None) -> None:
        super().__init__(app)
        self._settings = settings or get_settings()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if _is_public(request.url.path):
            return await call_next(request)

        # OPTIONS requests pass through (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        user_id = request.headers.get(self._settings.trusted_user_header, "").strip()
        if not user_id:
            logger.warning(
                "Rejected %s %s: missing %s header",
                request.method, request.url.path, self._settings.trusted_user_header,
            )
            return Response(
                content='{"detail":"Not authenticated"}',
                status_code=401,
                media_type="application/json",
            )

        request.state.auth = AuthContext(user_id=user_id)
        return await call_next(request)
