"""FastAPI application factory and main entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import safetrust.models  # noqa: F401  (register tables on Base.metadata)
from safetrust.api.v1.router import api_router
from safetrust.common.request_id import RequestIDMiddleware
from safetrust.core.config import settings
from safetrust.core.errors import register_exception_handlers
from safetrust.core.logging import setup_logging
from safetrust.db.base import Base
from safetrust.db.session import Database
from safetrust.services.mfa_service import MFAService
from safetrust.services.notifications import build_notifier


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: own the database and the MFA service."""
    setup_logging()

    database: Database | None = None
    if getattr(app.state, "mfa_service", None) is None:
        database = Database(settings.DATABASE_URL, base=Base)
        # Production schemas are provisioned before deploy
        await database.open(create_tables=settings.ENV != "prod")
        app.state.mfa_service = MFAService(database.session_factory, notifier=build_notifier())

    yield

    await app.state.mfa_service.close()
    if database is not None:
        app.state.mfa_service = None
        await database.close()


def create_app(mfa_service: MFAService | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Passing ``mfa_service`` skips the database setup in the lifespan.
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version="1.0.0",
        description="MFA verification API for the Safety Management System",
        openapi_url="/openapi.json" if settings.ENV != "prod" else None,
        docs_url="/docs" if settings.ENV != "prod" else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.mfa_service = mfa_service

    # Add middleware (order matters - first added is outermost)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(api_router, prefix=settings.API_PREFIX)

    return app


app = create_app()
