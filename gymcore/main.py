"""FastAPI application setup; the composition root for the cache and services."""

import datetime as dt
from typing import Callable, Optional

from fastapi import FastAPI

from .api import router as api_router
from .backend import Backend, build_backend
from .cache import CacheStore
from .cache_store.factory import build_cache_store
from .config import Settings, settings as default_settings
from .notifications import NotificationService
from .plan_service import PlanService


def create_app(
    settings: Optional[Settings] = None,
    *,
    cache: Optional[CacheStore] = None,
    backend: Optional[Backend] = None,
    clock: Optional[Callable[[], dt.datetime]] = None,
) -> FastAPI:
    """Build the app with one shared cache store and backend.

    Tests pass their own cache, backend and clock; production builds them
    from settings.
    """
    settings = settings or default_settings
    cache = cache if cache is not None else build_cache_store(settings)
    backend = backend if backend is not None else build_backend(settings)

    app = FastAPI(title="Gym Core")
    app.state.settings = settings
    app.state.cache = cache
    app.state.notifications = NotificationService(backend, cache, settings=settings, clock=clock)
    app.state.plans = PlanService(backend, cache, settings=settings, clock=clock)
    app.include_router(api_router, prefix="/v1")
    return app


app = create_app()
