"""agentboard FastAPI application: live task board and agent transcript streams."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from agentboard.config import BoardConfig
from agentboard.observability import initialize as initialize_observability, shutdown as shutdown_observability
from agentboard.routers.api import api_router
from agentboard.routers.stream import stream_router
from agentboard.streaming.watch_registry import FileWatchRegistry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("agentboard")


def create_app(config: Optional[BoardConfig] = None) -> FastAPI:
    config = config or BoardConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown lifecycle."""
        logger.info(f"agentboard starting (data={config.data_dir}, tasks={config.tasks_dir})")
        initialize_observability(app, config)
        registry = FileWatchRegistry(config)
        app.state.watch_registry = registry

        yield

        logger.info("agentboard shutting down")
        await registry.close()
        shutdown_observability(app)

    app = FastAPI(
        title="agentboard API",
        description="Live task board and agent transcript streams",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            config.frontend_origin,
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)
    app.include_router(stream_router)

    @app.get("/api/health")
    def health(request: Request):
        """Health check endpoint."""
        registry = getattr(request.app.state, "watch_registry", None)
        return {
            "status": "ok",
            "watches": registry.watch_count if registry else 0,
        }

    return app


def run() -> None:
    import uvicorn

    config = BoardConfig.from_env()
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    run()
