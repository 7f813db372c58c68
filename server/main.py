"""
Main FastAPI application for the circuit lab notebook backend.

This is the entry point for the notebook API: it builds the configured
record store, starts the reconciliation controller and serves the notebook
router.
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.notebook import StateBroadcaster, router as notebook_router
from config import Settings, get_settings, get_system_info, initialize_logging
from notebook import LocalBackup, NotebookController
from notebook.stores import create_record_store

logger = logging.getLogger(__name__)


def create_controller(settings: Settings) -> NotebookController:
    """Build the controller for the configured store and backup."""
    store = create_record_store(settings)
    backup = LocalBackup(settings.backup_path) if settings.backup_path else None
    return NotebookController(store, backup=backup, undo_limit=settings.undo_limit)


def create_app(controller: Optional[NotebookController] = None) -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        controller: Controller to serve; built from settings on startup if omitted
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Lab notebook for analog-circuit experiment records",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(notebook_router)
    app.state.controller = controller
    app.state.broadcaster = StateBroadcaster()

    @app.on_event("startup")
    async def startup_event():
        """Start the notebook controller on application startup."""
        logger.info("=== Starting notebook API server ===")
        if app.state.controller is None:
            app.state.controller = create_controller(settings)
        app.state.remove_broadcast = app.state.controller.add_listener(app.state.broadcaster.broadcast)
        await app.state.controller.start()
        if app.state.controller.error:
            logger.warning(f"Notebook started with error: {app.state.controller.error}")
        logger.info(f"=== Notebook ready with {len(app.state.controller.records)} records ===")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop the controller and release the store."""
        controller = app.state.controller
        if controller is None:
            return
        app.state.remove_broadcast()
        await controller.stop()
        controller.store.close()
        logger.info("=== Notebook API server stopped ===")

    @app.get("/")
    async def root():
        """Root endpoint for health check."""
        return {
            "message": "Circuit Lab Notebook API is running",
            "version": settings.app_version,
            "status": "healthy",
            "storage_backend": settings.storage_backend
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "system": get_system_info()
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Global exception handler for unhandled errors."""
        logger.error(f"Unhandled exception: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app


# Configure logging
logging.basicConfig(level=logging.INFO)

app = create_app()

if __name__ == "__main__":
    import uvicorn
    initialize_logging()
    settings = get_settings()
    uvicorn.run("main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
