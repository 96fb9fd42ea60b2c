"""TariffSync — FastAPI Application Entry Point.

Tariff data aggregation and sync service.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tariffsync.api.query_routes import router as query_router
from tariffsync.api.status_routes import router as status_router
from tariffsync.api.sync_routes import router as sync_router
from tariffsync.config import Settings, settings as default_settings
from tariffsync.core.context import ServiceContext
from tariffsync.core.logging import get_logger
from tariffsync.database import _mask_url, init_db, test_connection
from tariffsync.scheduler.jobs import SyncScheduler
from tariffsync.sync.dispatch import SyncDispatcher

logger = get_logger("main")

VERSION = "1.0.0"


def create_app(
    settings: Optional[Settings] = None,
    context: Optional[ServiceContext] = None,
) -> FastAPI:
    """Build the app. A prebuilt ``context`` is used as-is (and closed at shutdown)."""
    settings = settings or (context.settings if context else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle."""
        logger.info("🚀 TariffSync starting up...")
        ctx = context or ServiceContext.build(settings)
        if test_connection(ctx.engine):
            try:
                init_db(ctx.engine)
            except Exception as e:
                logger.error(f"❌ Table creation failed: {e}")
        else:
            logger.error("❌ Database NOT connected, endpoints will fail")

        scheduler = SyncScheduler(ctx)
        app.state.context = ctx
        app.state.dispatcher = SyncDispatcher()
        app.state.scheduler = scheduler
        scheduler.start()
        yield
        scheduler.stop()
        await app.state.dispatcher.wait_all()
        await ctx.aclose()
        logger.info("TariffSync shut down")

    app = FastAPI(
        title="TariffSync",
        description="Aggregates US tariff data from USITC, USTR, CBP and the Federal Register.",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(sync_router)
    app.include_router(status_router)
    app.include_router(query_router)

    @app.get("/health", tags=["System"])
    async def health_check(request: Request):
        """Health check endpoint; 500 when the database is unreachable."""
        ctx: ServiceContext = request.app.state.context
        db_ok = test_connection(ctx.engine)
        url = ctx.settings.effective_database_url
        return JSONResponse(
            status_code=200 if db_ok else 500,
            content={
                "status": "ok" if db_ok else "error",
                "database": {
                    "connected": db_ok,
                    "backend": "postgresql" if url.startswith("postgresql") else "sqlite",
                    "url": _mask_url(url),
                },
                "version": VERSION,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    return app


app = create_app()
