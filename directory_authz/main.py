"""
FastAPI application entry point for the directory authorization core.

Authentication is handled upstream: the auth middleware in front of this
app places a Principal on request.state.principal.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from directory_authz.api.errors import register_exception_handlers
from directory_authz.api.routes import entitlements, event_logs, plans, subscriptions
from directory_authz.config.settings import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    logger.info("Starting directory authorization API", extra={
        "billing_timezone": settings.billing_timezone,
        "bulk_delete_threshold": settings.bulk_delete_threshold,
    })
    yield
    logger.info("Shutting down directory authorization API")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Directory Authorization API",
        description="RBAC, plan entitlements, subscription lifecycle and event log",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(subscriptions.router)
    app.include_router(entitlements.router)
    app.include_router(plans.router)
    app.include_router(event_logs.router)

    register_exception_handlers(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("directory_authz.main:app", host="0.0.0.0", port=port)
