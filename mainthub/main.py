from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.middleware import SlowAPIMiddleware

from .config import Settings, settings as default_settings
from .db import Database
from .exception_handlers import register_exception_handlers
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .auth.service import AuthService
from .routes.dashboard import router as dashboard_router
from .routes.tasks import router as tasks_router
from .routes.users import router as users_router
from .services.audit import AuditTrail
from .services.dashboard_service import DashboardService
from .services.report_service import ReportService
from .services.task_service import TaskService
from .services.user_service import UserService


log = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    """Build the application and its services.

    Nothing is constructed at import time; serve with
    `uvicorn --factory mainthub.main:create_app`.
    """
    settings = settings or default_settings
    setup_logging(settings.log_level)
    app = FastAPI(title=settings.app_name)

    # Services
    db = db or Database.from_settings(settings)
    audit = AuditTrail(settings.jwt_secret)
    users = UserService(db, audit=audit)
    app.state.settings = settings
    app.state.db = db
    app.state.users = users
    app.state.tasks = TaskService(db, enforce_transitions=settings.enforce_status_transitions, audit=audit)
    app.state.auth = AuthService(db, users, settings, audit=audit)
    app.state.dashboard = DashboardService(db)
    app.state.reports = ReportService(db)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(tasks_router)
    app.include_router(users_router)
    app.include_router(dashboard_router)

    @app.get("/healthz", tags=["health"])
    def healthz():
        db.query("SELECT 1")
        return {"success": True, "data": {"status": "ok"}, "message": None}

    # Metrics
    if settings.enable_metrics:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log.info("startup", app=settings.app_name, environment=settings.environment, dialect=db.dialect)
        if settings.auto_create_db:
            db.create_all()

    @app.on_event("shutdown")
    def _shutdown():
        db.dispose()
        log.info("shutdown")

    return app

