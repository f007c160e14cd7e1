import os
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import structlog

from .config import settings
from .db import Base, engine
from .errors import FieldOpsError
from .logging import setup_logging, RequestIdMiddleware
from .routes.audit import router as audit_router
from .routes.schedule import router as schedule_router
from .routes.time_tracking import router as time_tracking_router

logger = structlog.get_logger(__name__)


async def fieldops_error_handler(request: Request, exc: FieldOpsError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log("request_failed", error=exc.code, detail=exc.detail, entity_id=exc.entity_id)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


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

    app.add_exception_handler(FieldOpsError, fieldops_error_handler)

    # Routers
    app.include_router(schedule_router)
    app.include_router(time_tracking_router)
    app.include_router(audit_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("tables_verified", tables=sorted(Base.metadata.tables))
        logger.info("startup_complete", app=settings.app_name, tz_default=settings.tz_default)

    return app


app = create_app()
