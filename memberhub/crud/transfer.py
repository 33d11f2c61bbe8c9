from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from memberhub.models.transfer_request import TransferRequest
from memberhub.services.transfer_state import OPEN_STATUSES, TransferStatus


def get_transfer(db: Session, transfer_id: int) -> Optional[TransferRequest]:
    return db.get(TransferRequest, transfer_id)


def get_transfer_by_token(db: Session, token: str) -> Optional[TransferRequest]:
    return db.query(TransferRequest).filter(TransferRequest.transfer_token == token).first()


def get_pending_for_organization(db: Session, organization_id: int) -> Optional[TransferRequest]:
    return (
        db.query(TransferRequest)
        .filter(
            TransferRequest.organization_id == organization_id,
            TransferRequest.status == TransferStatus.PENDING.value,
        )
        .first()
    )


def list_open_transfers(db: Session, *, limit: int = 200) -> List[TransferRequest]:
    """Pending and accepted (awaiting admin approval), newest first."""
    return (
        db.query(TransferRequest)
        .options(
            joinedload(TransferRequest.organization),
            joinedload(TransferRequest.current_contact),
            joinedload(TransferRequest.new_contact),
        )
        .filter(TransferRequest.status.in_([s.value for s in OPEN_STATUSES]))
        .order_by(TransferRequest.created_at.desc(), TransferRequest.id.desc())
        .limit(limit)
        .all()
    )


def get_open_for_organization(db: Session, organization_id: int) -> Optional[TransferRequest]:
    """Pending or accepted transfer for the organization, if any."""
    return (
        db.query(TransferRequest)
        .filter(
            TransferRequest.organization_id == organization_id,
            TransferRequest.status.in_([s.value for s in OPEN_STATUSES]),
        )
        .order_by(TransferRequest.id.desc())
        .first()
    )
