"""
Integration Hub — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from auth.routes import router as auth_router
from config.settings import config
from connectors.encryption import is_encryption_enabled
from connectors.registry import ConnectorRegistry
from connectors.routes import router as integrations_router
from database.session import create_tables

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "openai", "urllib3", "googleapiclient"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Integration Hub",
        version="1.0.0",
        description="OAuth connections and read-only data feeds for Gmail, GitHub, Slack and Figma.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(auth_router, prefix="/api/v1/auth")
    app.include_router(integrations_router, prefix="/api/v1/integrations")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        await create_tables()

        registry = ConnectorRegistry()
        registry.discover()
        logger.info("Configured providers: %s", registry.list_configured() or "none")

        if not is_encryption_enabled():
            logger.warning("Integration tokens will be stored unencrypted")

        logger.info("Application ready to accept requests.")

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
