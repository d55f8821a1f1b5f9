"""
Request gate: verifies the caller's token before any protected handler runs.
"""

import logfire

from typing import Callable, Dict, Optional

from fastapi import FastAPI, Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from security.backends import AuthBackend
from security.errors import AuthError

# The credential route must stay open so callers can obtain a first token
DEFAULT_EXEMPT_PATHS: Dict[str, list] = {
    "/refresh-token": ["POST"],
    "/docs": ["GET"],
    "/docs/oauth2-redirect": ["GET"],
    "/redoc": ["GET"],
    "/openapi.json": ["GET"],
}


class RequestGateMiddleware(BaseHTTPMiddleware):
    """
    Runs the configured backend's verifier on every non-exempt request.

    On success the resolved principal is stored on `request.state.principal`;
    on failure the request is answered here and never reaches a handler.
    """

    def __init__(
        self,
        app: FastAPI,
        backend: AuthBackend,
        exempt_paths: Optional[Dict[str, list]] = None,
    ):
        """
        Args:
            app: FastAPI application instance
            backend: Token backend selected from configuration
            exempt_paths: Dict of {path: [methods]} that skip the gate
        """
        super().__init__(app)
        self.backend = backend
        self.exempt_paths = dict(DEFAULT_EXEMPT_PATHS)
        if exempt_paths:
            self.exempt_paths.update(exempt_paths)

    def _is_exempt(self, request: Request) -> bool:
        allowed_methods = self.exempt_paths.get(request.url.path)
        if not allowed_methods:
            return False
        return "*" in allowed_methods or request.method.upper() in allowed_methods

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._is_exempt(request):
            return await call_next(request)

        try:
            principal = await self.backend.authenticate(self.backend.extract(request))
        except AuthError as e:
            logfire.warning(
                f"Rejected {request.method} {request.url.path}: {type(e).__name__}"
            )
            return JSONResponse(status_code=e.status_code, content=e.to_content())
        except Exception as e:
            logfire.error(f"Error during authentication: {type(e).__name__}: {e}")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal error during authentication"},
            )

        request.state.principal = principal
        request.state.auth_mode = self.backend.mode.value

        return await call_next(request)
