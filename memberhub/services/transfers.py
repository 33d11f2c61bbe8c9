# memberhub/services/transfers.py
"""
Primary contact transfer workflow.

Each public function is one request's worth of work against an open session:
it validates, applies a single state transition, queues outbound emails in
the notifications table and writes the audit entry, then commits once.
Delivery of the queued emails is the caller's post-commit concern.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from memberhub.core.config import Settings
from memberhub.core.errors import (
    AccessDenied,
    AlreadyProcessed,
    Conflict,
    NewUserRequired,
    NotFound,
    TransferExpired,
    ValidationFailed,
)
from memberhub.crud.organization import get_organization
from memberhub.crud.profile import (
    get_profile,
    get_profile_by_email,
    get_profile_by_user,
    normalize_email,
)
from memberhub.crud.transfer import (
    get_open_for_organization,
    get_pending_for_organization,
    get_transfer,
    get_transfer_by_token,
)
from memberhub.db.base import utcnow
from memberhub.models.notification import Notification
from memberhub.models.organization import Organization
from memberhub.models.transfer_request import TransferRequest
from memberhub.models.user import User
from memberhub.services.audit import audit_log
from memberhub.services.notifications import (
    enqueue_admin_notifications,
    enqueue_notification,
)
from memberhub.services.transfer_state import (
    TransferEvent,
    TransferStatus,
    can_transition,
    is_terminal,
    transition,
)

log = logging.getLogger("memberhub.transfers")

ENTITY_TYPE = "organization"


@dataclass
class TransferOutcome:
    transfer: TransferRequest
    organization: Organization
    notifications: List[Notification] = field(default_factory=list)

    @property
    def notification_ids(self) -> List[int]:
        return [n.id for n in self.notifications if n.id is not None]


# -----------------------------
# Helpers
# -----------------------------
def _generate_token() -> str:
    return secrets.token_urlsafe(32)


def _fmt_date(value: datetime) -> str:
    return value.strftime("%B %d, %Y")


def _apply(transfer: TransferRequest, event: TransferEvent) -> TransferStatus:
    new_status = transition(transfer.status, event)
    transfer.status = new_status.value
    return new_status


def _is_expired(transfer: TransferRequest, now: datetime) -> bool:
    return transfer.expires_at is not None and transfer.expires_at < now


def _commit(db: Session, transfer: TransferRequest) -> None:
    """Commit, turning a lost version race into a clean 409."""
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        log.warning("transfer %s changed concurrently; write discarded", transfer.id)
        raise AlreadyProcessed(
            "Transfer request was processed by someone else",
            details={"transfer_id": transfer.id},
        )


def _expire(
    db: Session,
    transfer: TransferRequest,
    *,
    actor_id: Optional[int],
    ip: Optional[str],
) -> None:
    _apply(transfer, TransferEvent.EXPIRE)
    audit_log(
        db,
        organization_id=transfer.organization_id,
        user_id=actor_id,
        action="CONTACT_TRANSFER_EXPIRED",
        entity_type=ENTITY_TYPE,
        entity_id=transfer.organization_id,
        meta={"transfer_request_id": transfer.id, "expires_at": transfer.expires_at},
        ip=ip,
        commit=False,
    )
    _commit(db, transfer)
    log.info("transfer %s expired (org=%s)", transfer.id, transfer.organization_id)


def _load_organization(db: Session, organization_id: int) -> Organization:
    org = get_organization(db, organization_id)
    if org is None:
        raise NotFound("Organization not found")
    return org


def _load_transfer(db: Session, transfer_id: int) -> TransferRequest:
    transfer = get_transfer(db, transfer_id)
    if transfer is None:
        raise NotFound("Transfer request not found")
    return transfer


def _ensure_open(transfer: TransferRequest, expected_version: Optional[int]) -> None:
    if is_terminal(transfer.status):
        raise AlreadyProcessed(
            "Transfer request has already been processed",
            details={"transfer_id": transfer.id, "status": transfer.status},
        )
    if expected_version is not None and expected_version != transfer.version:
        raise Conflict(
            "Transfer request was modified since it was loaded; reload and try again",
            details={"transfer_id": transfer.id, "current_version": transfer.version},
        )


def _require_new_contact(db: Session, transfer: TransferRequest, org: Organization):
    profile = get_profile_by_email(db, transfer.new_contact_email)
    if profile is None:
        raise NewUserRequired(
            f"The new contact ({transfer.new_contact_email}) needs to create an account "
            "before the transfer can be completed.",
            details={
                "transfer_id": transfer.id,
                "new_contact_email": transfer.new_contact_email,
                "organization_name": org.name,
            },
        )
    return profile


# -----------------------------
# Initiate
# -----------------------------
def initiate_transfer(
    db: Session,
    *,
    requester: User,
    organization_id: int,
    new_contact_email: str,
    settings: Settings,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransferOutcome:
    """
    Creates a pending transfer for an organization.
    Only the organization's current primary contact may do this, and only
    while no other transfer is pending for it or awaiting approval.
    """
    now = now or utcnow()
    email = normalize_email(new_contact_email)
    if not email or "@" not in email:
        raise ValidationFailed("A valid new contact email is required")

    org = _load_organization(db, organization_id)

    profile = get_profile_by_user(db, requester.id)
    if profile is None:
        raise NotFound("Profile not found")

    if org.contact_person_id != profile.id:
        log.warning(
            "transfer initiation denied user=%s org=%s (not primary contact)",
            requester.id, org.id,
        )
        raise AccessDenied("Only the primary contact can initiate a transfer")

    if email == normalize_email(profile.email):
        raise ValidationFailed("You are already the primary contact for this organization")

    # an accepted transfer still names this contact as the one being replaced
    existing = get_open_for_organization(db, org.id)
    if existing is not None:
        if _is_expired(existing, now):
            _expire(db, existing, actor_id=requester.id, ip=ip)
        else:
            raise Conflict(
                "A transfer request is already open for this organization",
                details={"transfer_id": existing.id, "status": existing.status},
            )

    expires_at = now + timedelta(days=settings.transfer_expiry_days)
    token = _generate_token()
    new_profile = get_profile_by_email(db, email)

    transfer = TransferRequest(
        organization_id=org.id,
        requested_by=requester.id,
        current_contact_id=profile.id,
        new_contact_id=new_profile.id if new_profile else None,
        new_contact_email=email,
        transfer_token=token,
        status=TransferStatus.PENDING.value,
        expires_at=expires_at,
    )
    db.add(transfer)
    try:
        db.flush()
    except IntegrityError:
        # lost the race against a concurrent initiation
        db.rollback()
        raise Conflict("A transfer request is already pending for this organization")

    notifications = [
        enqueue_notification(
            db,
            notif_type="contact_transfer",
            recipient=email,
            payload={
                "organization_name": org.name,
                "current_contact_name": profile.full_name or profile.email,
                "current_contact_email": profile.email,
                "transfer_link": f"{settings.accept_link_base}{token}",
                "expires_at": _fmt_date(expires_at),
            },
            organization_id=org.id,
            transfer_request_id=transfer.id,
        )
    ]
    notifications += enqueue_admin_notifications(
        db,
        notif_type="admin_contact_transfer",
        admin_emails=settings.admin_notification_emails,
        payload={
            "organization_name": org.name,
            "current_contact_email": profile.email,
            "new_contact_email": email,
        },
        organization_id=org.id,
        transfer_request_id=transfer.id,
    )

    audit_log(
        db,
        organization_id=org.id,
        user_id=requester.id,
        action="CONTACT_TRANSFER_INITIATED",
        entity_type=ENTITY_TYPE,
        entity_id=org.id,
        meta={"new_contact_email": email, "transfer_request_id": transfer.id},
        ip=ip,
        commit=False,
    )
    db.commit()

    log.info(
        "transfer %s initiated org=%s by user=%s to=%s",
        transfer.id, org.id, requester.id, email,
    )
    return TransferOutcome(transfer=transfer, organization=org, notifications=notifications)


# -----------------------------
# Accept / cancel
# -----------------------------
def accept_transfer(
    db: Session,
    *,
    token: str,
    settings: Settings,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransferOutcome:
    """
    Accepts a pending transfer through its emailed token. The transfer then
    waits for an admin. Fails with new_user_required (record stays pending)
    while the invited email has no account.
    """
    now = now or utcnow()
    transfer = get_transfer_by_token(db, token)
    if transfer is None or transfer.status != TransferStatus.PENDING.value:
        raise NotFound("Transfer request not found or already processed")

    if _is_expired(transfer, now):
        _expire(db, transfer, actor_id=None, ip=ip)
        raise TransferExpired("Transfer request has expired")

    org = _load_organization(db, transfer.organization_id)
    new_profile = _require_new_contact(db, transfer, org)

    _apply(transfer, TransferEvent.ACCEPT)
    transfer.new_contact_id = new_profile.id

    notifications = enqueue_admin_notifications(
        db,
        notif_type="admin_contact_transfer_accepted",
        admin_emails=settings.admin_notification_emails,
        payload={
            "organization_name": org.name,
            "new_contact_email": transfer.new_contact_email,
            "has_account": True,
        },
        organization_id=org.id,
        transfer_request_id=transfer.id,
    )
    audit_log(
        db,
        organization_id=org.id,
        user_id=new_profile.user_id,
        action="CONTACT_TRANSFER_ACCEPTED",
        entity_type=ENTITY_TYPE,
        entity_id=org.id,
        meta={
            "new_contact_email": transfer.new_contact_email,
            "transfer_request_id": transfer.id,
        },
        ip=ip,
        commit=False,
    )
    _commit(db, transfer)

    log.info("transfer %s accepted; awaiting admin approval", transfer.id)
    return TransferOutcome(transfer=transfer, organization=org, notifications=notifications)


def cancel_transfer(
    db: Session,
    *,
    transfer_id: int,
    requester: User,
    ip: Optional[str] = None,
) -> TransferOutcome:
    """Requester withdraws a pending transfer. The organization is not touched."""
    transfer = _load_transfer(db, transfer_id)
    if transfer.requested_by != requester.id:
        raise AccessDenied("Only the requester can cancel this transfer")

    if not can_transition(transfer.status, TransferEvent.CANCEL):
        raise AlreadyProcessed(
            f"Transfer request is {transfer.status} and can no longer be cancelled",
            details={"transfer_id": transfer.id, "status": transfer.status},
        )

    _apply(transfer, TransferEvent.CANCEL)
    audit_log(
        db,
        organization_id=transfer.organization_id,
        user_id=requester.id,
        action="CONTACT_TRANSFER_CANCELLED",
        entity_type=ENTITY_TYPE,
        entity_id=transfer.organization_id,
        meta={"transfer_request_id": transfer.id},
        ip=ip,
        commit=False,
    )
    _commit(db, transfer)

    log.info("transfer %s cancelled by user=%s", transfer.id, requester.id)
    org = _load_organization(db, transfer.organization_id)
    return TransferOutcome(transfer=transfer, organization=org)


# -----------------------------
# Admin decisions
# -----------------------------
def approve_transfer(
    db: Session,
    *,
    transfer_id: int,
    admin: User,
    admin_notes: Optional[str] = None,
    expected_version: Optional[int] = None,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransferOutcome:
    """
    Completes a pending or accepted transfer.

    The organization reassignment, the profile update, the status change,
    the audit entry and both completion emails are written in one
    transaction. The version column rejects a concurrent second approval.
    """
    now = now or utcnow()
    transfer = _load_transfer(db, transfer_id)
    _ensure_open(transfer, expected_version)

    if _is_expired(transfer, now):
        _expire(db, transfer, actor_id=admin.id, ip=ip)
        raise TransferExpired("Transfer request has expired")

    org = _load_organization(db, transfer.organization_id)
    new_profile = _require_new_contact(db, transfer, org)
    old_profile = get_profile(db, transfer.current_contact_id)
    previous_contact_id = org.contact_person_id

    org.contact_person_id = new_profile.id
    org.updated_at = now
    new_profile.organization = org.name

    _apply(transfer, TransferEvent.APPROVE)
    transfer.completed_at = now
    transfer.new_contact_id = new_profile.id
    transfer.processed_by = admin.id
    transfer.admin_notes = admin_notes

    notifications = [
        enqueue_notification(
            db,
            notif_type="contact_transfer_complete",
            recipient=new_profile.email,
            payload={"organization_name": org.name, "is_new_contact": True},
            organization_id=org.id,
            transfer_request_id=transfer.id,
        )
    ]
    if old_profile is not None and old_profile.email:
        notifications.append(
            enqueue_notification(
                db,
                notif_type="contact_transfer_complete",
                recipient=old_profile.email,
                payload={
                    "organization_name": org.name,
                    "new_contact_email": transfer.new_contact_email,
                    "is_new_contact": False,
                },
                organization_id=org.id,
                transfer_request_id=transfer.id,
            )
        )

    audit_log(
        db,
        organization_id=org.id,
        user_id=admin.id,
        action="CONTACT_TRANSFER_APPROVED",
        entity_type=ENTITY_TYPE,
        entity_id=org.id,
        meta={
            "old_contact_id": transfer.current_contact_id,
            "previous_contact_person_id": previous_contact_id,
            "new_contact_id": new_profile.id,
            "new_contact_email": transfer.new_contact_email,
            "transfer_request_id": transfer.id,
            "admin_notes": admin_notes,
        },
        ip=ip,
        commit=False,
    )
    _commit(db, transfer)

    log.info(
        "transfer %s completed org=%s contact %s -> %s by admin=%s",
        transfer.id, org.id, previous_contact_id, new_profile.id, admin.id,
    )
    return TransferOutcome(transfer=transfer, organization=org, notifications=notifications)


def reject_transfer(
    db: Session,
    *,
    transfer_id: int,
    admin: User,
    admin_notes: Optional[str] = None,
    expected_version: Optional[int] = None,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransferOutcome:
    """Admin declines a pending or accepted transfer and tells the requester."""
    now = now or utcnow()
    transfer = _load_transfer(db, transfer_id)
    _ensure_open(transfer, expected_version)

    if _is_expired(transfer, now):
        _expire(db, transfer, actor_id=admin.id, ip=ip)
        raise TransferExpired("Transfer request has expired")

    org = _load_organization(db, transfer.organization_id)
    current_contact = get_profile(db, transfer.current_contact_id)

    _apply(transfer, TransferEvent.REJECT)
    transfer.processed_by = admin.id
    transfer.admin_notes = admin_notes

    notifications: List[Notification] = []
    if current_contact is not None and current_contact.email:
        notifications.append(
            enqueue_notification(
                db,
                notif_type="contact_transfer_rejected",
                recipient=current_contact.email,
                payload={
                    "organization_name": org.name,
                    "new_contact_email": transfer.new_contact_email,
                    "admin_notes": admin_notes,
                },
                organization_id=org.id,
                transfer_request_id=transfer.id,
            )
        )

    audit_log(
        db,
        organization_id=org.id,
        user_id=admin.id,
        action="CONTACT_TRANSFER_REJECTED",
        entity_type=ENTITY_TYPE,
        entity_id=org.id,
        meta={"transfer_request_id": transfer.id, "admin_notes": admin_notes},
        ip=ip,
        commit=False,
    )
    _commit(db, transfer)

    log.info("transfer %s rejected by admin=%s", transfer.id, admin.id)
    return TransferOutcome(transfer=transfer, organization=org, notifications=notifications)


# -----------------------------
# Lookups
# -----------------------------
def pending_transfer_for_organization(
    db: Session,
    *,
    organization_id: int,
    user: User,
    now: Optional[datetime] = None,
) -> Optional[TransferRequest]:
    """
    The organization's outstanding pending transfer, visible to its primary
    contact and to admins. A pending record past its expiry is expired here.
    """
    now = now or utcnow()
    org = _load_organization(db, organization_id)
    if not user.is_admin:
        profile = get_profile_by_user(db, user.id)
        if profile is None or org.contact_person_id != profile.id:
            raise AccessDenied("Only the primary contact can view this organization's transfer")

    transfer = get_pending_for_organization(db, org.id)
    if transfer is not None and _is_expired(transfer, now):
        _expire(db, transfer, actor_id=user.id, ip=None)
        return None
    return transfer


def transfer_for_token(
    db: Session,
    *,
    token: str,
    now: Optional[datetime] = None,
) -> TransferRequest:
    """Token lookup for the acceptance page; lazily expires a stale pending record."""
    now = now or utcnow()
    transfer = get_transfer_by_token(db, token)
    if transfer is None:
        raise NotFound("Transfer request not found")
    if transfer.status == TransferStatus.PENDING.value and _is_expired(transfer, now):
        _expire(db, transfer, actor_id=None, ip=None)
    return transfer


def transfer_visible_to(db: Session, *, transfer_id: int, user: User) -> TransferRequest:
    transfer = _load_transfer(db, transfer_id)
    if user.is_admin or transfer.requested_by == user.id:
        return transfer
    profile = get_profile_by_user(db, user.id)
    if profile is not None and profile.id in (transfer.current_contact_id, transfer.new_contact_id):
        return transfer
    raise AccessDenied("You do not have access to this transfer request")
