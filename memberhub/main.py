# memberhub/main.py
from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session

from memberhub.core.config import Settings, load_env
from memberhub.core.errors import register_exception_handlers
from memberhub.db.base import Base
from memberhub.db.session import make_engine, make_session_factory
from memberhub.middleware.request_logging import RequestLoggingMiddleware
from memberhub.services.email import EmailSender, make_email_sender
from memberhub.worker.scheduler import make_scheduler

# ---------------------------
# MODELS (registers every table on Base.metadata)
# ---------------------------
from memberhub import models  # noqa: F401

# ---------------------------
# ROUTERS
# ---------------------------
from memberhub.api import health
from memberhub.api.v1 import audit_logs, auth, notifications, organizations, transfers

log = logging.getLogger("memberhub")


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[Callable[[], Session]] = None,
    email_sender: Optional[EmailSender] = None,
) -> FastAPI:
    """
    Builds the API. Without arguments everything comes from the environment
    (.env files included); tests pass their own settings, session factory
    and email sender.
    """
    if settings is None:
        load_env()
        settings = Settings.from_env()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if session_factory is None:
        engine = make_engine(settings.database_url)
        # dev-only; production schema comes from alembic
        if settings.enable_create_all:
            Base.metadata.create_all(bind=engine)
        session_factory = make_session_factory(engine)

    app = FastAPI(title="HESS Member Hub", version="1.0.0")
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.email_sender = email_sender or make_email_sender(settings)
    app.state.scheduler = None

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    # ---------------------------
    # ROUTER MOUNT
    # ---------------------------
    app.include_router(auth.router, prefix="/api/v1", tags=["auth"])
    app.include_router(organizations.router, prefix="/api/v1")
    app.include_router(transfers.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(audit_logs.router, prefix="/api/v1")
    app.include_router(health.router, prefix="/api")

    # ---------------------------
    # Scheduler (queued email flush), optional
    # ---------------------------
    @app.on_event("startup")
    def _start_scheduler():
        if not settings.enable_scheduler:
            return
        try:
            app.state.scheduler = make_scheduler(
                app.state.session_factory, app.state.email_sender, settings
            )
            app.state.scheduler.start()
            log.info(
                "notification flush scheduled every %s min", settings.dispatch_interval_minutes
            )
        except Exception:
            # keep the API up; post-commit dispatch still delivers
            log.exception("scheduler failed to start")
            app.state.scheduler = None

    @app.on_event("shutdown")
    def _stop_scheduler():
        sched = getattr(app.state, "scheduler", None)
        if sched:
            sched.shutdown(wait=False)

    return app
