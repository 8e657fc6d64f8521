from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .clearnode.registry import ClearNodeRegistry
from .config import Settings, get_settings
from .logging import get_logger, setup_logging
from .middleware.errors import install_error_handlers
from .routers.health import router as health_router
from .routers.streams import router as streams_router
from .services.distribution import DistributionService
from .services.store import InMemoryProjectStore, ProjectStore
from .version import __version__

log = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """The ClearNode connection is opened lazily on first use and torn down here."""
    try:
        yield
    finally:
        registry: ClearNodeRegistry = app.state.registry
        await registry.close()
        log.info("app_shutdown")


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ProjectStore] = None,
    registry: Optional[ClearNodeRegistry] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    FastAPI factory. ``store`` and ``registry`` are injectable; by default an
    in-memory store and a settings-driven ClearNode registry are used.
    """
    cfg = settings or get_settings()
    if configure_logging:
        setup_logging(level=cfg.log_level, log_format=cfg.log_format)

    app = FastAPI(title="GitStream", version=__version__, lifespan=_lifespan)
    app.state.settings = cfg
    app.state.store = store if store is not None else InMemoryProjectStore()
    app.state.registry = registry if registry is not None else ClearNodeRegistry.from_settings(cfg)
    app.state.distribution = DistributionService.from_settings(app.state.store, app.state.registry, cfg)

    install_error_handlers(app)
    app.include_router(health_router)
    app.include_router(streams_router)
    return app


# Convenience entrypoint for `uvicorn gitstream.app:app`
app = create_app()
