# memberhub/worker/scheduler.py
from __future__ import annotations

import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from memberhub.core.config import Settings
from memberhub.services.email import EmailSender
from memberhub.services.notifications import send_pending_notifications

log = logging.getLogger("memberhub.scheduler")


def _with_db(session_factory: Callable[[], Session], fn, *args, **kwargs) -> int:
    """Run a function with a fresh DB session and return an int result (0 on failure)."""
    db = session_factory()
    try:
        return int(fn(db, *args, **kwargs) or 0)
    except Exception:
        db.rollback()
        log.exception("scheduled job %s failed", getattr(fn, "__name__", fn))
        return 0
    finally:
        db.close()


def flush_notification_queue(
    session_factory: Callable[[], Session],
    sender: EmailSender,
    settings: Settings,
) -> int:
    """
    Sends notifications still queued after their post-commit dispatch
    (process restart, crashed background task).
    """
    sent = _with_db(
        session_factory,
        send_pending_notifications,
        sender,
        delay_seconds=settings.email_rate_limit_delay_ms / 1000.0,
    )
    if sent:
        log.info("queue flush sent %s notifications", sent)
    return sent


def make_scheduler(
    session_factory: Callable[[], Session],
    sender: EmailSender,
    settings: Settings,
) -> BackgroundScheduler:
    """
    BackgroundScheduler with a single interval job that flushes the
    notification queue every DISPATCH_INTERVAL_MINUTES (UTC).
    """
    sched = BackgroundScheduler(timezone="UTC")
    sched.add_job(
        flush_notification_queue,
        IntervalTrigger(minutes=max(1, settings.dispatch_interval_minutes)),
        args=[session_factory, sender, settings],
        id="flush_notification_queue",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return sched
