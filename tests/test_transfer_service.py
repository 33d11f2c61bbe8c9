"""Contact transfer workflow - service layer against a real (in-memory) database."""
import json
from datetime import timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from memberhub.core.errors import (
    AccessDenied,
    AlreadyProcessed,
    Conflict,
    NewUserRequired,
    NotFound,
    TransferExpired,
    ValidationFailed,
)
from memberhub.db.base import utcnow
from memberhub.models.audit_log import AuditLog
from memberhub.models.notification import Notification
from memberhub.models.transfer_request import TransferRequest
from memberhub.services.transfers import (
    accept_transfer,
    approve_transfer,
    cancel_transfer,
    initiate_transfer,
    pending_transfer_for_organization,
    reject_transfer,
    transfer_for_token,
)

from conftest import ADMIN_INBOX, make_profile, make_user

NEW_EMAIL = "new.contact@acme.edu"


def _initiate(db, college, settings, email=NEW_EMAIL):
    return initiate_transfer(
        db,
        requester=college.contact,
        organization_id=college.org.id,
        new_contact_email=email,
        settings=settings,
    )


def _expire_now(db, transfer):
    transfer.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()


def _actions(db):
    return [a.action for a in db.query(AuditLog).order_by(AuditLog.id).all()]


# =============================================================================
# Initiate
# =============================================================================

def test_initiate_creates_pending_transfer_and_queues_emails(db, college, settings, email_sender):
    before = utcnow()
    outcome = _initiate(db, college, settings)
    transfer = outcome.transfer

    assert transfer.status == "pending"
    assert transfer.organization_id == college.org.id
    assert transfer.current_contact_id == college.contact_profile.id
    assert transfer.requested_by == college.contact.id
    assert transfer.new_contact_email == NEW_EMAIL
    assert transfer.new_contact_id is None
    assert len(transfer.transfer_token) >= 40
    assert timedelta(days=6, hours=23) < transfer.expires_at - before <= timedelta(days=7, minutes=1)
    assert transfer.version == 1

    rows = db.query(Notification).order_by(Notification.id).all()
    assert [(n.type, n.recipient, n.status) for n in rows] == [
        ("contact_transfer", NEW_EMAIL, "queued"),
        ("admin_contact_transfer", ADMIN_INBOX, "queued"),
    ]
    assert outcome.notification_ids == [n.id for n in rows]
    payload = json.loads(rows[0].payload)
    assert payload["transfer_link"] == (
        "https://members.test/auth?action=accept-transfer&token=" + transfer.transfer_token
    )
    assert payload["organization_name"] == "Acme College"

    # queued only; delivery happens after commit
    assert email_sender.sent == []
    assert _actions(db) == ["CONTACT_TRANSFER_INITIATED"]


def test_initiate_normalizes_email(db, college, settings):
    outcome = _initiate(db, college, settings, email="  New.Contact@ACME.edu ")
    assert outcome.transfer.new_contact_email == NEW_EMAIL


def test_initiate_links_existing_profile(db, college, settings):
    existing = make_profile(db, NEW_EMAIL)
    outcome = _initiate(db, college, settings)
    assert outcome.transfer.new_contact_id == existing.id


def test_initiate_requires_primary_contact(db, college, settings):
    outsider = make_user(db, "outsider@acme.edu")
    with pytest.raises(AccessDenied):
        initiate_transfer(
            db,
            requester=outsider,
            organization_id=college.org.id,
            new_contact_email=NEW_EMAIL,
            settings=settings,
        )
    assert db.query(TransferRequest).count() == 0
    assert db.query(Notification).count() == 0


def test_initiate_rejects_self_transfer(db, college, settings):
    with pytest.raises(ValidationFailed):
        _initiate(db, college, settings, email="P1@acme.edu")


def test_initiate_unknown_organization(db, college, settings):
    with pytest.raises(NotFound):
        initiate_transfer(
            db,
            requester=college.contact,
            organization_id=9999,
            new_contact_email=NEW_EMAIL,
            settings=settings,
        )


def test_second_initiation_conflicts_while_pending(db, college, settings):
    first = _initiate(db, college, settings)
    with pytest.raises(Conflict) as exc:
        _initiate(db, college, settings, email="someone.else@acme.edu")
    assert exc.value.details == {"transfer_id": first.transfer.id, "status": "pending"}
    assert db.query(TransferRequest).count() == 1


def test_expired_pending_transfer_does_not_block_new_one(db, college, settings):
    first = _initiate(db, college, settings)
    _expire_now(db, first.transfer)

    second = _initiate(db, college, settings, email="someone.else@acme.edu")

    db.refresh(first.transfer)
    assert first.transfer.status == "expired"
    assert second.transfer.status == "pending"
    assert "CONTACT_TRANSFER_EXPIRED" in _actions(db)


def test_accepted_transfer_blocks_new_initiation(db, college, settings, admin):
    first = _initiate(db, college, settings)
    make_user(db, NEW_EMAIL)
    accept_transfer(db, token=first.transfer.transfer_token, settings=settings)

    with pytest.raises(Conflict) as exc:
        _initiate(db, college, settings, email="someone.else@acme.edu")
    assert exc.value.details == {"transfer_id": first.transfer.id, "status": "accepted"}
    assert db.query(TransferRequest).count() == 1

    # the accepted transfer still completes against the contact it was raised by
    approve_transfer(db, transfer_id=first.transfer.id, admin=admin)
    db.refresh(first.transfer)
    assert first.transfer.status == "completed"


def test_expired_accepted_transfer_does_not_block_new_one(db, college, settings):
    first = _initiate(db, college, settings)
    make_user(db, NEW_EMAIL)
    accept_transfer(db, token=first.transfer.transfer_token, settings=settings)
    _expire_now(db, first.transfer)

    second = _initiate(db, college, settings, email="someone.else@acme.edu")

    db.refresh(first.transfer)
    assert first.transfer.status == "expired"
    assert second.transfer.status == "pending"


def test_initiation_allowed_again_after_cancel(db, college, settings):
    first = _initiate(db, college, settings)
    cancel_transfer(db, transfer_id=first.transfer.id, requester=college.contact)
    second = _initiate(db, college, settings)
    assert second.transfer.id != first.transfer.id


# =============================================================================
# Accept
# =============================================================================

def test_accept_without_account_requires_registration(db, college, settings):
    outcome = _initiate(db, college, settings)

    with pytest.raises(NewUserRequired) as exc:
        accept_transfer(db, token=outcome.transfer.transfer_token, settings=settings)

    assert exc.value.details["new_contact_email"] == NEW_EMAIL
    db.refresh(outcome.transfer)
    assert outcome.transfer.status == "pending"


def test_accept_moves_to_accepted_and_notifies_admins(db, college, settings):
    outcome = _initiate(db, college, settings)
    newcomer = make_user(db, NEW_EMAIL)

    accepted = accept_transfer(db, token=outcome.transfer.transfer_token, settings=settings)

    assert accepted.transfer.status == "accepted"
    assert accepted.transfer.new_contact_id == newcomer.profile.id
    assert [n.type for n in accepted.notifications] == ["admin_contact_transfer_accepted"]
    assert accepted.notifications[0].recipient == ADMIN_INBOX
    # acceptance alone does not move the organization
    db.refresh(college.org)
    assert college.org.contact_person_id == college.contact_profile.id


def test_accept_expired_token_marks_expired(db, college, settings):
    outcome = _initiate(db, college, settings)
    make_user(db, NEW_EMAIL)
    _expire_now(db, outcome.transfer)

    with pytest.raises(TransferExpired):
        accept_transfer(db, token=outcome.transfer.transfer_token, settings=settings)

    db.refresh(outcome.transfer)
    assert outcome.transfer.status == "expired"

    # the record is terminal now
    with pytest.raises(NotFound):
        accept_transfer(db, token=outcome.transfer.transfer_token, settings=settings)


def test_accept_unknown_token(db, college, settings):
    with pytest.raises(NotFound):
        accept_transfer(db, token="x" * 43, settings=settings)


# =============================================================================
# Cancel
# =============================================================================

def test_cancel_by_requester(db, college, settings):
    outcome = _initiate(db, college, settings)

    cancelled = cancel_transfer(db, transfer_id=outcome.transfer.id, requester=college.contact)

    assert cancelled.transfer.status == "cancelled"
    assert cancelled.notifications == []
    db.refresh(college.org)
    assert college.org.contact_person_id == college.contact_profile.id
    assert _actions(db)[-1] == "CONTACT_TRANSFER_CANCELLED"


def test_cancel_by_someone_else_is_denied(db, college, settings, admin):
    outcome = _initiate(db, college, settings)
    with pytest.raises(AccessDenied):
        cancel_transfer(db, transfer_id=outcome.transfer.id, requester=admin)


def test_cancel_twice_reports_already_processed(db, college, settings):
    outcome = _initiate(db, college, settings)
    cancel_transfer(db, transfer_id=outcome.transfer.id, requester=college.contact)
    with pytest.raises(AlreadyProcessed):
        cancel_transfer(db, transfer_id=outcome.transfer.id, requester=college.contact)


# =============================================================================
# Approve
# =============================================================================

def test_approve_reassigns_contact_in_one_step(db, college, settings, admin):
    outcome = _initiate(db, college, settings)
    newcomer = make_user(db, NEW_EMAIL)
    accept_transfer(db, token=outcome.transfer.transfer_token, settings=settings)

    approved = approve_transfer(
        db, transfer_id=outcome.transfer.id, admin=admin, admin_notes="verified by phone"
    )

    transfer = approved.transfer
    assert transfer.status == "completed"
    assert transfer.completed_at is not None
    assert transfer.processed_by == admin.id
    assert transfer.admin_notes == "verified by phone"

    db.refresh(college.org)
    db.refresh(newcomer.profile)
    assert college.org.contact_person_id == newcomer.profile.id
    assert newcomer.profile.organization == "Acme College"

    assert sorted(n.recipient for n in approved.notifications) == ["new.contact@acme.edu", "p1@acme.edu"]
    assert {n.type for n in approved.notifications} == {"contact_transfer_complete"}

    entry = db.query(AuditLog).filter(AuditLog.action == "CONTACT_TRANSFER_APPROVED").one()
    meta = json.loads(entry.meta)
    assert meta["old_contact_id"] == college.contact_profile.id
    assert meta["new_contact_id"] == newcomer.profile.id
    assert entry.user_id == admin.id


def test_approve_twice_reports_already_processed(db, college, settings, admin):
    outcome = _initiate(db, college, settings)
    make_user(db, NEW_EMAIL)
    approve_transfer(db, transfer_id=outcome.transfer.id, admin=admin)

    with pytest.raises(AlreadyProcessed):
        approve_transfer(db, transfer_id=outcome.transfer.id, admin=admin)


def test_approve_with_stale_version_conflicts(db, college, settings, admin):
    outcome = _initiate(db, college, settings)
    make_user(db, NEW_EMAIL)
    accept_transfer(db, token=outcome.transfer.transfer_token, settings=settings)
    assert outcome.transfer.version == 2

    with pytest.raises(Conflict) as exc:
        approve_transfer(db, transfer_id=outcome.transfer.id, admin=admin, expected_version=1)

    assert exc.value.error_type == "conflict"
    db.refresh(outcome.transfer)
    assert outcome.transfer.status == "accepted"


def test_concurrent_second_approval_loses(app, db, college, settings, admin):
    outcome = _initiate(db, college, settings)
    make_user(db, NEW_EMAIL)
    transfer_id = outcome.transfer.id

    other = app.state.session_factory()
    try:
        # second admin loaded the record before the first one approved it
        other_admin = other.get(type(admin), admin.id)
        stale = other.get(TransferRequest, transfer_id)
        assert stale.status == "pending"

        approve_transfer(db, transfer_id=transfer_id, admin=admin)

        with pytest.raises(AlreadyProcessed):
            approve_transfer(other, transfer_id=transfer_id, admin=other_admin)
    finally:
        other.close()

    assert db.query(AuditLog).filter(AuditLog.action == "CONTACT_TRANSFER_APPROVED").count() == 1
    assert db.query(Notification).filter(Notification.type == "contact_transfer_complete").count() == 2


def test_approve_expired_transfer_never_completes(db, college, settings, admin):
    outcome = _initiate(db, college, settings)
    make_user(db, NEW_EMAIL)
    _expire_now(db, outcome.transfer)

    with pytest.raises(TransferExpired):
        approve_transfer(db, transfer_id=outcome.transfer.id, admin=admin)

    db.refresh(outcome.transfer)
    db.refresh(college.org)
    assert outcome.transfer.status == "expired"
    assert college.org.contact_person_id == college.contact_profile.id


def test_approve_without_new_account_keeps_pending(db, college, settings, admin):
    outcome = _initiate(db, college, settings)
    with pytest.raises(NewUserRequired):
        approve_transfer(db, transfer_id=outcome.transfer.id, admin=admin)
    db.refresh(outcome.transfer)
    assert outcome.transfer.status == "pending"


def test_approve_unknown_transfer(db, admin):
    with pytest.raises(NotFound):
        approve_transfer(db, transfer_id=404, admin=admin)


# =============================================================================
# Reject
# =============================================================================

def test_reject_accepted_transfer_notifies_requester(db, college, settings, admin):
    outcome = _initiate(db, college, settings)
    make_user(db, NEW_EMAIL)
    accept_transfer(db, token=outcome.transfer.transfer_token, settings=settings)

    rejected = reject_transfer(
        db, transfer_id=outcome.transfer.id, admin=admin, admin_notes="not a staff member"
    )

    assert rejected.transfer.status == "rejected"
    assert rejected.transfer.completed_at is None
    assert [(n.type, n.recipient) for n in rejected.notifications] == [
        ("contact_transfer_rejected", "p1@acme.edu")
    ]
    assert json.loads(rejected.notifications[0].payload)["admin_notes"] == "not a staff member"
    db.refresh(college.org)
    assert college.org.contact_person_id == college.contact_profile.id


def test_reject_after_completion_is_already_processed(db, college, settings, admin):
    outcome = _initiate(db, college, settings)
    make_user(db, NEW_EMAIL)
    approve_transfer(db, transfer_id=outcome.transfer.id, admin=admin)
    with pytest.raises(AlreadyProcessed):
        reject_transfer(db, transfer_id=outcome.transfer.id, admin=admin)


# =============================================================================
# Lookups
# =============================================================================

def test_pending_lookup_expires_lazily(db, college, settings):
    outcome = _initiate(db, college, settings)
    found = pending_transfer_for_organization(
        db, organization_id=college.org.id, user=college.contact
    )
    assert found.id == outcome.transfer.id

    _expire_now(db, outcome.transfer)
    assert pending_transfer_for_organization(
        db, organization_id=college.org.id, user=college.contact
    ) is None
    db.refresh(outcome.transfer)
    assert outcome.transfer.status == "expired"


def test_pending_lookup_hidden_from_other_members(db, college, settings):
    _initiate(db, college, settings)
    outsider = make_user(db, "outsider@acme.edu")
    with pytest.raises(AccessDenied):
        pending_transfer_for_organization(db, organization_id=college.org.id, user=outsider)


def test_token_lookup(db, college, settings):
    outcome = _initiate(db, college, settings)
    assert transfer_for_token(db, token=outcome.transfer.transfer_token).id == outcome.transfer.id
    with pytest.raises(NotFound):
        transfer_for_token(db, token="nope-" * 8)


def test_finished_transfers_outlive_their_organization_row(db, college, settings):
    outcome = _initiate(db, college, settings)
    cancel_transfer(db, transfer_id=outcome.transfer.id, requester=college.contact)

    with pytest.raises(IntegrityError):
        db.execute(text("DELETE FROM organizations WHERE id = :id"), {"id": college.org.id})
        db.commit()
    db.rollback()

    assert db.get(TransferRequest, outcome.transfer.id).status == "cancelled"
