from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from autosdlc.settings import Settings, settings
from autosdlc.config.logging_config import setup_logging
from autosdlc.api import mcp, status
from autosdlc.services.status_synchronizer import StatusSynchronizer

# Initialize logging
setup_logging(
    log_level=settings.log_level,
    log_file='autosdlc.log' if settings.environment == 'production' else None,
    process_name='coordinator'
)
logger = logging.getLogger(__name__)


def create_app(app_settings: Settings = settings) -> FastAPI:
    """Build the coordinator app; the synchronizer runs for the app's lifetime"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Starting AutoSDLC coordinator...")
        synchronizer = StatusSynchronizer(
            app_settings.shared_status_dir,
            watch_interval=app_settings.watch_interval,
            debounce_ms=app_settings.watch_debounce_ms,
        )
        await synchronizer.start()
        app.state.status_synchronizer = synchronizer
        logger.info(f"Status synchronizer watching {app_settings.shared_status_dir}")

        yield

        # Shutdown
        logger.info("Shutting down AutoSDLC coordinator...")
        await synchronizer.stop()
        logger.info("Status synchronizer stopped")

    app = FastAPI(
        title="AutoSDLC",
        description="Multi-agent coordination service",
        version="0.1.0",
        lifespan=lifespan
    )

    # CORS
    cors_origins = app_settings.cors_origins if isinstance(app_settings.cors_origins, list) else [app_settings.cors_origins]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(mcp.router)
    app.include_router(status.router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "environment": app_settings.environment}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "autosdlc.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
