"""
Global middleware and exception handlers.
"""

from __future__ import annotations

import logging
import time

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from connectors.errors import IntegrationError, UpstreamAPIError

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI) -> None:
    """Attach app-level middleware and the error handlers."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response

    @app.exception_handler(IntegrationError)
    async def integration_error_handler(request: Request, exc: IntegrationError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%d): %s",
                        request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(httpx.HTTPError)
    async def upstream_transport_error_handler(request: Request, exc: httpx.HTTPError):
        logger.error("%s %s upstream call failed: %r", request.method, request.url.path, exc)
        error = UpstreamAPIError(
            "Upstream service unavailable",
            detail="Could not reach the provider. Please try again.",
        )
        return JSONResponse(error.to_dict(), status_code=error.status_code)
