"""
Global middleware: OAuth response headers and request logging.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

NO_STORE_PREFIX = "/api/oauth/"


def register_middleware(app: FastAPI) -> None:
    """Attach any app-level middleware."""

    @app.middleware("http")
    async def oauth_headers(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"

        path = request.url.path
        if path.startswith(NO_STORE_PREFIX):
            # Authorization URLs and connected-account details are never cached.
            response.headers["Cache-Control"] = "no-store"
            response.headers["Pragma"] = "no-cache"

        # Query strings are left out: the OAuth callback carries code and state.
        client = request.client.host if request.client else "-"
        logger.log(
            logging.WARNING if response.status_code >= 500 else logging.DEBUG,
            "%s %s from %s: %d in %.3fs",
            request.method, path, client, response.status_code, elapsed,
        )
        return response
