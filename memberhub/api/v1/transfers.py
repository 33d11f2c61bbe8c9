# memberhub/api/v1/transfers.py
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from memberhub.core.auth import get_current_user, get_db, get_settings, require_admin
from memberhub.core.config import Settings
from memberhub.crud.profile import get_profile_by_email
from memberhub.crud.transfer import list_open_transfers
from memberhub.models.transfer_request import TransferRequest
from memberhub.models.user import User
from memberhub.schemas.transfer import (
    ContactSummary,
    TransferAccept,
    TransferAccepted,
    TransferActionResult,
    TransferAdminOut,
    TransferDecision,
    TransferInitiate,
    TransferInitiated,
    TransferOut,
    TransferValidation,
)
from memberhub.services.audit import ip_from_request
from memberhub.services.notifications import dispatch_after_commit
from memberhub.services.transfer_state import TransferStatus
from memberhub.services.transfers import (
    TransferOutcome,
    accept_transfer,
    approve_transfer,
    cancel_transfer,
    initiate_transfer,
    reject_transfer,
    transfer_for_token,
    transfer_visible_to,
)

router = APIRouter(prefix="/transfers", tags=["transfers"])


def _schedule_dispatch(
    background_tasks: BackgroundTasks,
    request: Request,
    settings: Settings,
    outcome: TransferOutcome,
) -> None:
    """Deliver the step's queued emails after the response; the commit already happened."""
    ids = outcome.notification_ids
    if not ids:
        return
    background_tasks.add_task(
        dispatch_after_commit,
        request.app.state.session_factory,
        request.app.state.email_sender,
        ids,
        delay_seconds=settings.email_rate_limit_delay_ms / 1000.0,
    )


def _admin_view(transfer: TransferRequest) -> TransferAdminOut:
    base = TransferOut.model_validate(transfer).model_dump()
    return TransferAdminOut(
        **base,
        organization_name=transfer.organization.name if transfer.organization else None,
        current_contact=(
            ContactSummary.model_validate(transfer.current_contact)
            if transfer.current_contact
            else None
        ),
        new_contact_profile=(
            ContactSummary.model_validate(transfer.new_contact) if transfer.new_contact else None
        ),
    )


@router.post("", response_model=TransferInitiated)
def api_initiate_transfer(
    payload: TransferInitiate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    outcome = initiate_transfer(
        db,
        requester=current_user,
        organization_id=payload.organization_id,
        new_contact_email=payload.new_contact_email,
        settings=settings,
        ip=ip_from_request(request),
    )
    _schedule_dispatch(background_tasks, request, settings, outcome)
    return TransferInitiated(
        transfer_id=outcome.transfer.id,
        expires_at=outcome.transfer.expires_at,
        message="Transfer request created and email sent",
    )


@router.get("", response_model=List[TransferAdminOut])
def api_list_open_transfers(
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    """Pending and accepted transfers awaiting an admin, newest first."""
    return [_admin_view(t) for t in list_open_transfers(db, limit=limit)]


@router.get("/validate", response_model=TransferValidation)
def api_validate_transfer_token(
    token: str = Query(..., min_length=16, description="Transfer token from email link"),
    db: Session = Depends(get_db),
):
    transfer = transfer_for_token(db, token=token)
    return TransferValidation(
        valid=transfer.status == TransferStatus.PENDING.value,
        status=transfer.status,
        organization_name=transfer.organization.name if transfer.organization else None,
        new_contact_email=transfer.new_contact_email,
        expires_at=transfer.expires_at,
        has_account=get_profile_by_email(db, transfer.new_contact_email) is not None,
    )


@router.post("/accept", response_model=TransferAccepted)
def api_accept_transfer(
    payload: TransferAccept,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    outcome = accept_transfer(
        db,
        token=payload.transfer_token,
        settings=settings,
        ip=ip_from_request(request),
    )
    _schedule_dispatch(background_tasks, request, settings, outcome)
    return TransferAccepted(
        organization_name=outcome.organization.name,
        message="Transfer accepted! An administrator will review and complete the transfer shortly.",
    )


@router.get("/{transfer_id}", response_model=TransferOut)
def api_get_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return transfer_visible_to(db, transfer_id=transfer_id, user=current_user)


@router.post("/{transfer_id}/cancel", response_model=TransferActionResult)
def api_cancel_transfer(
    transfer_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    outcome = cancel_transfer(
        db,
        transfer_id=transfer_id,
        requester=current_user,
        ip=ip_from_request(request),
    )
    return TransferActionResult(
        message="The transfer request has been cancelled.",
        transfer=TransferOut.model_validate(outcome.transfer),
        organization_name=outcome.organization.name,
    )


@router.post("/{transfer_id}/approve", response_model=TransferActionResult)
def api_approve_transfer(
    transfer_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: Optional[TransferDecision] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    settings: Settings = Depends(get_settings),
):
    payload = payload or TransferDecision()
    outcome = approve_transfer(
        db,
        transfer_id=transfer_id,
        admin=admin,
        admin_notes=payload.admin_notes,
        expected_version=payload.version,
        ip=ip_from_request(request),
    )
    _schedule_dispatch(background_tasks, request, settings, outcome)
    return TransferActionResult(
        message="Transfer approved and completed successfully",
        transfer=TransferOut.model_validate(outcome.transfer),
        organization_name=outcome.organization.name,
    )


@router.post("/{transfer_id}/reject", response_model=TransferActionResult)
def api_reject_transfer(
    transfer_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: Optional[TransferDecision] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    settings: Settings = Depends(get_settings),
):
    payload = payload or TransferDecision()
    outcome = reject_transfer(
        db,
        transfer_id=transfer_id,
        admin=admin,
        admin_notes=payload.admin_notes,
        expected_version=payload.version,
        ip=ip_from_request(request),
    )
    _schedule_dispatch(background_tasks, request, settings, outcome)
    return TransferActionResult(
        message="The transfer request has been rejected.",
        transfer=TransferOut.model_validate(outcome.transfer),
        organization_name=outcome.organization.name,
    )
