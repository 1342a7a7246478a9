import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from channelflow.api.campaign import router as campaign_router
from channelflow.api.deps import http_error
from channelflow.api.funnels import router as funnels_router
from channelflow.api.tracking import router as tracking_router
from channelflow.bootstrap import build_services
from channelflow.channels.registry import ChannelRegistry
from channelflow.config import Settings, get_settings
from channelflow.db.init import init_db
from channelflow.exceptions import ChannelflowError
from channelflow.store.base import SequenceStore
from channelflow.store.mongo import MongoSequenceStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[SequenceStore] = None,
    channels: Optional[ChannelRegistry] = None,
) -> FastAPI:
    """
    Build the API. Without an injected store the app connects to MongoDB on
    startup; without injected channels they are built from settings, which
    fails fast on a bad channel configuration.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=== APPLICATION STARTUP ===")
        app_settings = settings or get_settings()
        client = None
        app_store = store
        if app_store is None:
            logger.info("Initializing database...")
            try:
                client = await init_db(app_settings)
                logger.info("Database initialized successfully")
            except Exception as e:
                logger.error(f"Database initialization failed: {e}", exc_info=True)
                raise
            app_store = MongoSequenceStore()
        app_channels = channels or ChannelRegistry.from_settings(app_settings)
        app.state.db_client = client
        app.state.services = build_services(app_settings, app_store, app_channels)
        logger.info(f"Channels enabled: {', '.join(app_channels.names)}")
        logger.info("Celery worker and beat should be running in separate processes.")
        logger.info("=== APPLICATION STARTUP COMPLETE ===")

        yield

        logger.info("=== APPLICATION SHUTDOWN ===")
        if channels is None:
            await app_channels.aclose()
        if client is not None:
            client.close()
        logger.info("=== APPLICATION SHUTDOWN COMPLETE ===")

    app = FastAPI(title="Channelflow API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ChannelflowError)
    async def channelflow_error_handler(request: Request, exc: ChannelflowError):
        error = http_error(exc)
        logger.warning(f"[API] {request.method} {request.url.path} -> {error.status_code}: {exc.message}")
        return JSONResponse(status_code=error.status_code, content={"detail": error.detail})

    @app.get("/")
    async def root():
        return {"message": "Channelflow API"}

    @app.get("/health")
    async def health_check(request: Request):
        """Health check with database status"""
        client = getattr(request.app.state, "db_client", None)
        if client is None:
            db_status = "not_configured"
        else:
            try:
                await client.admin.command("ping")
                db_status = "healthy"
            except Exception as e:
                db_status = f"unhealthy: {str(e)}"

        services = request.app.state.services
        return {
            "status": "degraded" if db_status.startswith("unhealthy") else "healthy",
            "database": db_status,
            "channels": services.channels.names,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(campaign_router, prefix="/api", tags=["campaigns"])
    app.include_router(funnels_router, prefix="/api", tags=["funnels"])
    app.include_router(tracking_router, prefix="/api", tags=["tracking"])
    return app


app = create_app()
