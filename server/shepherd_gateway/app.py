"""FastAPI application for the Shepherd Gateway."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .app_state import GatewayState, get_state, set_state
from .config import config
from .routers.health import router as health_router
from .routers.projects import router as projects_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Shepherd Gateway starting on %s:%d", config.host, config.port)
    logger.info("Shepherd root: %s", config.shepherd_root)

    owns_state = False
    try:
        get_state()
    except RuntimeError:
        set_state(GatewayState.from_config(config))
        owns_state = True

    yield

    if owns_state:
        get_state().close()
        set_state(None)
    logger.info("Shepherd Gateway stopped")


app = FastAPI(
    title="Shepherd Gateway",
    description="HTTP API managing hosted projects across Jenkins and Kubernetes",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(projects_router)


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
