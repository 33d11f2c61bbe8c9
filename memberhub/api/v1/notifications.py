# memberhub/api/v1/notifications.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from memberhub.core.auth import get_db, get_email_sender, get_settings, require_admin
from memberhub.core.config import Settings
from memberhub.models.notification import Notification
from memberhub.models.user import User
from memberhub.services.email import EmailSender
from memberhub.services.notifications import send_pending_notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _coerce_payload(v: Optional[str]) -> Any:
    if v is None:
        return None
    try:
        return json.loads(v)
    except ValueError:
        return v


def _to_dict(row: Notification) -> Dict[str, Any]:
    return {
        "id": row.id,
        "organization_id": row.organization_id,
        "transfer_request_id": row.transfer_request_id,
        "type": row.type,
        "channel": row.channel,
        "recipient": row.recipient,
        "status": row.status,
        "error": row.error,
        "attempts": row.attempts,
        "payload": _coerce_payload(row.payload),
        "created_at": row.created_at,
        "sent_at": row.sent_at,
    }


@router.get("")
def list_notifications(
    type: Optional[List[str]] = Query(None, description="Filter by notification type (repeatable)"),
    status: Optional[List[str]] = Query(None, description="Filter by status (queued|sending|sent|failed; repeatable)"),
    organization_id: Optional[int] = Query(None, ge=1),
    transfer_request_id: Optional[int] = Query(None, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Outbox rows, newest first. Admin only."""
    query = db.query(Notification)

    if type:
        types = [t.strip() for t in type if t and t.strip()]
        if types:
            query = query.filter(Notification.type.in_(types))
    if status:
        statuses = [s.strip().lower() for s in status if s and s.strip()]
        if statuses:
            query = query.filter(Notification.status.in_(statuses))
    if organization_id is not None:
        query = query.filter(Notification.organization_id == organization_id)
    if transfer_request_id is not None:
        query = query.filter(Notification.transfer_request_id == transfer_request_id)

    total = query.count()
    rows = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {"items": [_to_dict(r) for r in rows], "count": total}


@router.get("/{notification_id}")
def get_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
) -> Dict[str, Any]:
    row = db.get(Notification, notification_id)
    if not row:
        raise HTTPException(status_code=404, detail="Notification not found")
    return _to_dict(row)


@router.post("/dispatch")
def dispatch_queued_notifications(
    max_batch: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
    settings: Settings = Depends(get_settings),
    _: User = Depends(require_admin),
) -> Dict[str, Any]:
    """Send everything still queued (e.g. rows left behind by a crashed post-commit task)."""
    sent = send_pending_notifications(
        db,
        sender,
        max_batch=max_batch,
        delay_seconds=settings.email_rate_limit_delay_ms / 1000.0,
    )
    return {"ok": True, "sent": sent}
