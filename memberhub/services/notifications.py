# memberhub/services/notifications.py
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from memberhub.db.base import utcnow
from memberhub.models.notification import Notification
from memberhub.services.audit import audit_log
from memberhub.services.email import EmailSender

log = logging.getLogger("memberhub.notifications")


# ---------------------------------
# Message templates (subject/body) - EN only
# ---------------------------------
def render_message(notif_type: str, payload: Dict[str, Any]) -> Dict[str, str]:
    """
    Plain-text templates keyed by notification type.
    Unknown types fall back to a JSON dump of the payload.
    """
    org = payload.get("organization_name") or "your organization"

    if notif_type == "contact_transfer":
        subject = f"You have been invited to become the primary contact for {org}"
        body = (
            f"{payload.get('current_contact_name') or payload.get('current_contact_email')} "
            f"has asked you to take over as the primary contact for {org} "
            "in the HESS Consortium member portal.\n\n"
            f"Accept the transfer here: {payload.get('transfer_link')}\n\n"
            f"This link expires on {payload.get('expires_at')}. If you do not have an "
            "account yet, please register with this email address first."
        )
        return {"subject": subject, "body": body}

    if notif_type == "admin_contact_transfer":
        subject = "Contact Transfer Request Pending Review"
        body = (
            "An organization contact transfer request has been submitted.\n"
            f"Organization: {org}\n"
            f"Current contact: {payload.get('current_contact_email')}\n"
            f"New contact: {payload.get('new_contact_email')}\n"
            "Status: Pending"
        )
        return {"subject": subject, "body": body}

    if notif_type == "admin_contact_transfer_accepted":
        has_account = "yes" if payload.get("has_account") else "no"
        subject = f"Contact transfer accepted for {org}"
        body = (
            f"{payload.get('new_contact_email')} accepted the primary contact transfer "
            f"for {org} and is waiting for admin approval.\n"
            f"Existing account: {has_account}"
        )
        return {"subject": subject, "body": body}

    if notif_type == "contact_transfer_complete":
        if payload.get("is_new_contact"):
            subject = f"You are now the primary contact for {org}"
            body = (
                f"The primary contact transfer for {org} has been approved. "
                "You can now manage the organization's membership record."
            )
        else:
            subject = f"Primary contact for {org} has changed"
            body = (
                f"The primary contact role for {org} has been transferred to "
                f"{payload.get('new_contact_email')}. No further action is needed."
            )
        return {"subject": subject, "body": body}

    if notif_type == "contact_transfer_rejected":
        subject = f"Contact transfer for {org} was not approved"
        body = (
            f"Your request to transfer the primary contact role for {org} to "
            f"{payload.get('new_contact_email')} was rejected by an administrator."
        )
        if payload.get("admin_notes"):
            body += f"\nNotes: {payload.get('admin_notes')}"
        return {"subject": subject, "body": body}

    # Fallback
    return {
        "subject": f"[{notif_type}] Notification",
        "body": json.dumps(payload, ensure_ascii=False, default=str),
    }


# ---------------------------------
# Queue phase
# ---------------------------------
def enqueue_notification(
    db: Session,
    *,
    notif_type: str,
    recipient: str,
    payload: Dict[str, Any],
    organization_id: Optional[int] = None,
    transfer_request_id: Optional[int] = None,
) -> Notification:
    """
    Adds a queued notification to the caller's transaction. Nothing is sent
    here; delivery happens in send_pending_notifications after commit.
    """
    row = Notification(
        organization_id=organization_id,
        transfer_request_id=transfer_request_id,
        type=notif_type,
        channel="email",
        recipient=recipient,
        payload=json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str),
        status="queued",
        attempts=0,
    )
    db.add(row)
    return row


def enqueue_admin_notifications(
    db: Session,
    *,
    notif_type: str,
    admin_emails: Iterable[str],
    payload: Dict[str, Any],
    organization_id: Optional[int] = None,
    transfer_request_id: Optional[int] = None,
) -> List[Notification]:
    rows = [
        enqueue_notification(
            db,
            notif_type=notif_type,
            recipient=email,
            payload=payload,
            organization_id=organization_id,
            transfer_request_id=transfer_request_id,
        )
        for email in admin_emails
    ]
    if not rows:
        log.info("no admin recipients configured for %s", notif_type)
    return rows


# ---------------------------------
# Send phase
# ---------------------------------
def _claim(db: Session, notification_id: int) -> bool:
    """Moves one row from queued to sending; False when another sender got it first."""
    claimed = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.status == "queued")
        .update({Notification.status: "sending"}, synchronize_session=False)
    )
    db.commit()
    return claimed == 1


def send_pending_notifications(
    db: Session,
    sender: EmailSender,
    *,
    ids: Optional[Iterable[int]] = None,
    max_batch: int = 200,
    delay_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Delivers queued notifications in id order and returns how many were sent.

    Each row is committed as sent/failed on its own so one bad address does
    not hold back the rest. A fixed delay separates sequential sends to stay
    under the provider rate limit. Failed rows are left as 'failed' and are
    not retried automatically.

    A row is claimed ('sending') before it is handed to the sender, so the
    post-commit dispatch, the scheduler and the manual endpoint never deliver
    the same row twice when they overlap.
    """
    query = db.query(Notification).filter(Notification.status == "queued")
    if ids is not None:
        id_list = [int(i) for i in ids]
        if not id_list:
            return 0
        query = query.filter(Notification.id.in_(id_list))
    rows = query.order_by(Notification.id.asc()).limit(max_batch).all()

    sent = 0
    attempted = 0
    for row in rows:
        if attempted and delay_seconds > 0:
            sleep(delay_seconds)

        if not _claim(db, row.id):
            log.info("notification %s already taken by another sender", row.id)
            continue
        attempted += 1

        try:
            payload = json.loads(row.payload or "{}")
        except ValueError:
            payload = {"raw": row.payload}
        templ = render_message(row.type, payload)

        row.attempts = (row.attempts or 0) + 1
        try:
            sender.send(to=row.recipient, subject=templ["subject"], body=templ["body"])
        except Exception as exc:
            row.status = "failed"
            row.error = str(exc)[:1000]
            db.commit()
            log.error(
                "notification send failed id=%s type=%s to=%s error=%s",
                row.id, row.type, row.recipient, exc,
            )
            audit_log(
                db,
                organization_id=row.organization_id,
                user_id=None,
                action="NOTIFICATION_FAILED",
                entity_type="notification",
                entity_id=row.id,
                meta={"type": row.type, "recipient": row.recipient, "error": row.error},
                ip=None,
            )
            continue

        row.status = "sent"
        row.error = None
        row.sent_at = utcnow()
        db.commit()
        sent += 1
        log.info("notification sent id=%s type=%s to=%s", row.id, row.type, row.recipient)
        audit_log(
            db,
            organization_id=row.organization_id,
            user_id=None,
            action="NOTIFICATION_SENT",
            entity_type="notification",
            entity_id=row.id,
            meta={"type": row.type, "recipient": row.recipient, "subject": templ["subject"]},
            ip=None,
        )

    return sent


def dispatch_after_commit(
    session_factory: Callable[[], Session],
    sender: EmailSender,
    ids: Iterable[int],
    *,
    delay_seconds: float = 0.0,
) -> int:
    """
    Fire-and-forget delivery of the notifications a workflow step just
    committed, run as a background task with its own session. Never raises:
    anything still queued is picked up by the scheduled dispatch.
    """
    id_list = [int(i) for i in ids]
    if not id_list:
        return 0
    db = session_factory()
    try:
        return send_pending_notifications(db, sender, ids=id_list, delay_seconds=delay_seconds)
    except Exception:
        db.rollback()
        log.exception("post-commit dispatch failed for notifications %s", id_list)
        return 0
    finally:
        db.close()
