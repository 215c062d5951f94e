"""
ChartSage - Global Exception Handlers

Every error response shares one JSON envelope:
``{"error": true, "status_code", "detail", "request_id"}``.
Domain errors from ``chartsage.errors`` carry their own status code.
"""

from __future__ import annotations

import traceback

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from chartsage.errors import ChartSageError

log = structlog.get_logger(__name__)


def _envelope(request: Request, status_code: int, detail, **extra) -> JSONResponse:
    content = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        "request_id": getattr(request.state, "request_id", None),
    }
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(ChartSageError)
    async def chartsage_error_handler(request: Request, exc: ChartSageError):
        log.info(
            "domain_error",
            path=str(request.url.path),
            error_type=type(exc).__name__,
            status=exc.status_code,
            error=str(exc),
        )
        return _envelope(request, exc.status_code, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _envelope(request, exc.status_code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Pydantic validation errors → 422 with field details."""
        errors = [
            {
                "field": ".".join(str(loc) for loc in err.get("loc", [])),
                "message": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        log.warning("validation_error", path=str(request.url.path), errors=errors)
        return _envelope(request, 422, "Validation error", errors=errors)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        """Catch-all → 500 with safe details."""
        log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
            traceback=traceback.format_exc(),
        )
        return _envelope(request, 500, "Internal server error")
