"""
FastAPI application factory.

* Registers routes for bookings, dispatch, drivers, admin and the realtime
  websocket.
* Builds the per-process service graph (store, cache, event bus, room
  router, coordinator) and keeps it on ``app.state.services``.
* Starts / stops the event bus and the optional auto-dispatch worker via
  lifespan events.
* Applies rate-limiting and maps domain errors to HTTP responses.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI

from src.api.middleware import register_error_handlers
from src.api.routes import admin, bookings, dispatch, drivers, realtime
from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.redis_client import close_redis, get_redis
from src.services.container import Services, build_services
from src.workers import dispatcher as _dispatcher

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start fan-out (and the sweep, if enabled) on startup; stop on shutdown."""
    services: Services = app.state.services
    if settings.realtime_use_redis and services.bus.redis is None:
        services.bus.use_redis(await get_redis(), settings.realtime_channel)
    await services.bus.start()
    if settings.auto_dispatch_enabled:
        await _dispatcher.start_dispatch_loop(services)
    yield
    if settings.auto_dispatch_enabled:
        await _dispatcher.stop_dispatch_loop()
    await services.bus.stop()
    await close_redis()


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="UrbanRide Dispatch API",
        description=(
            "Cab booking lifecycle and driver dispatch.  Assigns drivers "
            "atomically, retries through backend hiccups, and pushes booking "
            "events to customers, drivers and operators in real time."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.services = services or build_services(async_session_factory)

    # Rate limiter + domain error mapping
    register_error_handlers(app)

    # Routers
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(dispatch.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(realtime.router, prefix="/api/v1")

    return app
