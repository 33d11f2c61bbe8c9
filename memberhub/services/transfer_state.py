# memberhub/services/transfer_state.py
"""
Contact transfer lifecycle.

    pending --accept--> accepted
    pending --cancel--> cancelled
    pending|accepted --expire--> expired
    pending|accepted --approve--> completed
    pending|accepted --reject--> rejected

completed, rejected, cancelled and expired are terminal. Every status change
in the service layer goes through transition(); nothing assigns a status
string directly.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Tuple


class TransferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class TransferEvent(str, Enum):
    ACCEPT = "accept"
    CANCEL = "cancel"
    EXPIRE = "expire"
    APPROVE = "approve"
    REJECT = "reject"


TERMINAL_STATUSES: FrozenSet[TransferStatus] = frozenset(
    {
        TransferStatus.COMPLETED,
        TransferStatus.REJECTED,
        TransferStatus.CANCELLED,
        TransferStatus.EXPIRED,
    }
)

# statuses an admin can still act on
OPEN_STATUSES: Tuple[TransferStatus, ...] = (
    TransferStatus.PENDING,
    TransferStatus.ACCEPTED,
)

TRANSITIONS: Dict[Tuple[TransferStatus, TransferEvent], TransferStatus] = {
    (TransferStatus.PENDING, TransferEvent.ACCEPT): TransferStatus.ACCEPTED,
    (TransferStatus.PENDING, TransferEvent.CANCEL): TransferStatus.CANCELLED,
    (TransferStatus.PENDING, TransferEvent.EXPIRE): TransferStatus.EXPIRED,
    (TransferStatus.PENDING, TransferEvent.APPROVE): TransferStatus.COMPLETED,
    (TransferStatus.PENDING, TransferEvent.REJECT): TransferStatus.REJECTED,
    (TransferStatus.ACCEPTED, TransferEvent.EXPIRE): TransferStatus.EXPIRED,
    (TransferStatus.ACCEPTED, TransferEvent.APPROVE): TransferStatus.COMPLETED,
    (TransferStatus.ACCEPTED, TransferEvent.REJECT): TransferStatus.REJECTED,
}


class IllegalTransition(Exception):
    def __init__(self, current: TransferStatus, event: TransferEvent):
        self.current = current
        self.event = event
        super().__init__(f"Cannot {event.value} a transfer that is {current.value}")


def coerce_status(value) -> TransferStatus:
    return value if isinstance(value, TransferStatus) else TransferStatus(str(value))


def is_terminal(status) -> bool:
    return coerce_status(status) in TERMINAL_STATUSES


def can_transition(current, event: TransferEvent) -> bool:
    return (coerce_status(current), event) in TRANSITIONS


def transition(current, event: TransferEvent) -> TransferStatus:
    """Return the status reached by applying event, or raise IllegalTransition."""
    status = coerce_status(current)
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise IllegalTransition(status, event) from None
