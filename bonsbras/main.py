import os

import structlog
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .models import models  # noqa: F401  registers tables on Base.metadata
from .auth.router import router as auth_router
from .routes.profiles import router as profiles_router
from .routes.pros import router as pros_router
from .routes.onboarding import router as onboarding_router
from .routes.projects import router as projects_router
from .routes.requests import router as requests_router
from .routes.dashboard import router as dashboard_router
from .routes.assistant import router as assistant_router
from .routes.changes import router as changes_router


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_base_url] if settings.environment != "dev" else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Redirect"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Routers
    app.include_router(auth_router)
    app.include_router(profiles_router)
    app.include_router(pros_router)
    app.include_router(onboarding_router)
    app.include_router(projects_router)
    app.include_router(requests_router)
    app.include_router(dashboard_router)
    app.include_router(assistant_router)
    app.include_router(changes_router)

    # Uploaded files for the local storage provider
    app.mount("/storage", StaticFiles(directory=settings.local_storage_dir, check_dir=False), name="storage")

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log = structlog.get_logger(__name__)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("startup_tables_ready", tables=len(Base.metadata.tables))
        log.info("startup_complete", environment=settings.environment, storage=settings.storage_provider)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
