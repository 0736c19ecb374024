"""
Wedding RSVP mail OAuth service — application entry point.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from api.middleware import register_middleware
from config.settings import Settings, config
from connectors.errors import OAuthFlowError
from connectors.http_client import OAuthHttpClient
from connectors.orchestrator import OAuthOrchestrator
from connectors.routes import callback_router, limiter, oauth_error_handler, rate_limit_handler
from connectors.routes import router as oauth_router
from connectors.store import SqlCredentialStore
from database.session import create_engine, create_session_factory, init_models

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "sqlalchemy.engine"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    orchestrator: Optional[OAuthOrchestrator] = None,
) -> FastAPI:
    """
    Build the app.  Passing *orchestrator* skips database and HTTP client
    wiring (tests do this).
    """
    settings = settings or config

    app = FastAPI(
        title="Wedding RSVP Mail OAuth",
        version="1.0.0",
        description="Per-event Gmail / Outlook OAuth connections for outbound mail.",
    )
    app.state.settings = settings

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(OAuthFlowError, oauth_error_handler)

    # Routes
    app.include_router(oauth_router, prefix="/api")
    app.include_router(callback_router, prefix="/api")

    if orchestrator is not None:
        app.state.orchestrator = orchestrator
        return app

    @app.on_event("startup")
    async def on_startup():
        oauth_config = settings.oauth_config()
        if not settings.oauth_encryption_key:
            logger.warning(
                "OAUTH_ENCRYPTION_KEY not set — storing OAuth tokens will fail. "
                "Generate one: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        engine = create_engine(settings.database_url)
        await init_models(engine)
        http = OAuthHttpClient(
            timeout=oauth_config.http_timeout_seconds,
            max_retries=oauth_config.http_max_retries,
            backoff_base=oauth_config.http_backoff_base_seconds,
        )
        app.state.engine = engine
        app.state.http_client = http
        app.state.orchestrator = OAuthOrchestrator(
            oauth_config,
            SqlCredentialStore(create_session_factory(engine)),
            http,
        )
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.http_client.aclose()
        await app.state.engine.dispose()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
