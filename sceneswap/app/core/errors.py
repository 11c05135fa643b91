"""
Error taxonomy for the SceneSwap service.

Only three failures are ever visible to a caller:

    AuthError        invalid, missing or expired credential   (401)
    QuotaExhausted   free allowance used up                   (403)
    InputError       missing, oversized or wrong-type upload  (400)

ProviderError, StoreError and RenderError are raised by collaborators
and recovered locally (next strategy, unlimited mode, placeholder page).
They must never reach the HTTP layer as a failure.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("sceneswap.errors")


class SceneSwapError(Exception):
    """Base class for all service errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": False,
            "error": self.message,
            "code": self.code,
        }
        payload.update(self.extra)
        return payload


# ----------------------------------------------------------------------
# Terminal, user-visible
# ----------------------------------------------------------------------

class AuthError(SceneSwapError):
    status_code = 401
    code = "auth_error"


class QuotaExhausted(SceneSwapError):
    status_code = 403
    code = "quota_exhausted"

    def __init__(
        self,
        message: str = "Free allowance exhausted",
        *,
        used: int,
        remaining: int = 0,
    ) -> None:
        super().__init__(message, used=used, remaining=remaining)
        self.used = used
        self.remaining = remaining


class InputError(SceneSwapError):
    status_code = 400
    code = "input_error"


# ----------------------------------------------------------------------
# Transient, recovered locally
# ----------------------------------------------------------------------

class ProviderError(SceneSwapError):
    """Raised when the external synthesis provider fails or times out."""

    code = "provider_error"


class StoreError(SceneSwapError):
    """Raised when the quota store is unreachable or answers an error."""

    code = "store_error"


class RenderError(SceneSwapError):
    """Raised when a single artifact cannot be decoded or drawn."""

    code = "render_error"


# ----------------------------------------------------------------------
# FastAPI wiring
# ----------------------------------------------------------------------

def error_response(
    status_code: int,
    message: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    **extra: Any,
) -> JSONResponse:
    content: Dict[str, Any] = {"ok": False, "error": message}
    content.update(extra)
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=headers,
    )


def install_error_handlers(app: FastAPI) -> None:
    """
    Render every failure as a machine-readable error object.

    Framework errors (405 wrong verb, 404, request validation) share the
    same {"ok": false, "error": ...} shape as service errors.
    """

    @app.exception_handler(SceneSwapError)
    async def _service_error(
        request: Request, exc: SceneSwapError
    ) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "unrecovered_service_error",
                extra={"code": exc.code, "path": request.url.path},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_payload(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        if exc.status_code == 405:
            message = f"Method {request.method} not allowed"
        return error_response(
            exc.status_code,
            message,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return error_response(400, "Malformed request")

    @app.exception_handler(Exception)
    async def _unexpected_error(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception(
            "unexpected_error",
            extra={
                "path": request.url.path,
                "error_type": type(exc).__name__,
            },
        )
        return error_response(500, "Internal error")
