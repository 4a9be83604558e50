from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .logging import RequestIdMiddleware, setup_logging
from .routes.diesel import router as diesel_router
from .routes.missed_loads import router as missed_loads_router
from .routes.reports import router as reports_router
from .routes.trips import router as trips_router
from .services.operations import FleetOperations
from .store.factory import get_record_store
from .store.provider import RecordStore


def create_app(store: Optional[RecordStore] = None) -> FastAPI:
    setup_logging()
    logger = structlog.get_logger(__name__)
    app = FastAPI(title=settings.app_name)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.state.operations = FleetOperations(store or get_record_store(), settings)

    app.include_router(trips_router)
    app.include_router(diesel_router)
    app.include_router(missed_loads_router)
    app.include_router(reports_router)

    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        ops: FleetOperations = app.state.operations
        return {
            "status": "ok",
            "environment": settings.environment,
            "store_backend": type(ops.store).__name__,
            "trips": len(ops.trips),
            "diesel_records": len(ops.diesel_records),
            "missed_loads": len(ops.missed_loads),
        }

    logger.info("app_created", app_name=settings.app_name, store_backend=settings.store_backend)
    return app


app = create_app()
