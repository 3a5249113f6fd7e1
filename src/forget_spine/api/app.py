"""
FastAPI application factory.

``create_app()`` wires settings, the store client, the update pipeline and
the routers into a single ``FastAPI`` instance. Startup fails with
:class:`~forget_spine.core.errors.ConfigError` when the store endpoint is
malformed or unreachable, so the process never begins serving against a
dead store.

Manifesto:
    The app factory is the single composition root: the store client and
    the pipeline are built here and handed to the service, nothing reaches
    for a global connection.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from forget_spine.api.errors import register_error_handlers
from forget_spine.api.routes import router
from forget_spine.core.errors import ConfigError, ForgetError
from forget_spine.core.logging import configure_logging, get_logger
from forget_spine.core.settings import Settings, get_settings
from forget_spine.pipeline import UpdatePipeline
from forget_spine.service import DistributionService
from forget_spine.store import DistributionStore, create_store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Connect the store, start the workers; drain and close on shutdown."""
    settings: Settings = app.state.settings
    log = get_logger("forget_spine.api")

    store: DistributionStore = app.state.store or create_store(settings)
    try:
        await store.ping()
    except ForgetError as exc:
        await store.close()
        log.error("store_unreachable", **exc.to_dict())
        raise ConfigError(
            f"Could not reach the backing store at {settings.redis_host}", cause=exc
        ) from exc
    log.info("store_connected", backend=settings.store_backend, pool_size=settings.store_pool_size)

    pipeline = UpdatePipeline.from_settings(store, settings)
    await pipeline.start()
    app.state.store = store
    app.state.service = DistributionService.from_settings(store, pipeline, settings)

    yield

    await pipeline.stop(drain=True)
    await store.close()
    log.info("api_shutdown")


def create_app(
    *,
    settings: Settings | None = None,
    store: DistributionStore | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : Settings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    store : DistributionStore | None
        Pre-built store client; otherwise one is created from ``settings``
        at startup.
    """
    settings = settings or get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
        service="forget-spine",
    )

    app = FastAPI(title="forget-spine", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store

    register_error_handlers(app)
    app.include_router(router)
    return app
