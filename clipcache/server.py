"""FastAPI server for the clipcache media pipeline."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from clipcache.api import router as api_router
from clipcache.services.config_service import ConfigService
from clipcache.services.pipeline_service import PipelineService, build_pipeline
from clipcache.services.websocket_service import WebSocketService
from clipcache.websocket import router as ws_router


def create_app(
    pipeline: Optional[PipelineService] = None,
    config: Optional[ConfigService] = None,
) -> FastAPI:
    """Build the application.

    The pipeline is constructed at startup unless one is passed in;
    tests pass a pipeline wired to a fake process launcher.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for app startup/shutdown."""
        app.state.websocket_service.set_event_loop(asyncio.get_running_loop())
        if app.state.pipeline is None:
            app.state.pipeline = build_pipeline(config)
            print(f"  → Cache directory: {app.state.pipeline.config.cache_dir}")

        yield

        await asyncio.to_thread(app.state.pipeline.shutdown)

    app = FastAPI(
        title="clipcache API",
        description="Classify, convert and cache media sources for playback",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.pipeline = pipeline
    app.state.websocket_service = WebSocketService()

    app.include_router(api_router, prefix="/api")
    app.include_router(ws_router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok"}

    return app


app = create_app()
