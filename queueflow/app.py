from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from queueflow.application import QueueEngine, build_engine, configure_engine
from queueflow.core.config import Settings, load_settings
from queueflow.core.log_config import configure_logging
from queueflow.routes import profiles, queue, staff, touchpoints, workflow


def create_app(settings: Settings | None = None, *, engine: QueueEngine | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings)

    engine = engine or build_engine(settings)
    configure_engine(engine)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await engine.aclose()

    app = FastAPI(title="Queueflow Routing API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(profiles.router, prefix="/api")
    app.include_router(workflow.router, prefix="/api")
    app.include_router(staff.router, prefix="/api")
    app.include_router(queue.router, prefix="/api")
    app.include_router(touchpoints.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Queueflow Routing API",
                "docs": "/docs",
                "health": "/api/profiles",
            }
        )

    return app


app = create_app()
