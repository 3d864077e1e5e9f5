import os

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .auth.router import router as auth_router
from .config import settings
from .db import Base, engine
from .logging import RequestIdMiddleware, setup_logging
from .routes.call_admins import router as call_admins_router
from .routes.customers import router as customers_router
from .routes.imports import router as imports_router
from .routes.machines import router as machines_router
from .routes.parts import router as parts_router
from .routes.reports import router as reports_router
from .routes.tickets import router as tickets_router
from .routes.users import router as users_router


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
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

    # Routers
    app.include_router(auth_router)
    app.include_router(tickets_router)
    app.include_router(customers_router)
    app.include_router(machines_router)
    app.include_router(parts_router)
    app.include_router(users_router)
    app.include_router(call_admins_router)
    app.include_router(reports_router)
    app.include_router(imports_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("database_tables_verified", tables=len(Base.metadata.tables))
        logger.info("app_started", app_name=settings.app_name, environment=settings.environment)

    return app


app = create_app()
