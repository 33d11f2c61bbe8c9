# memberhub/models/transfer_request.py
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship

from memberhub.db.base import Base, utcnow
from memberhub.services.transfer_state import TransferStatus


class TransferRequest(Base):
    __tablename__ = "organization_transfer_requests"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    requested_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    current_contact_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    new_contact_id = Column(Integer, ForeignKey("profiles.id"), nullable=True)
    new_contact_email = Column(String(255), nullable=False, index=True)

    transfer_token = Column(String(128), unique=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=TransferStatus.PENDING.value, index=True)

    expires_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    processed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    admin_notes = Column(Text, nullable=True)

    # optimistic concurrency counter, bumped by every UPDATE
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    organization = relationship("Organization")
    current_contact = relationship("Profile", foreign_keys=[current_contact_id])
    new_contact = relationship("Profile", foreign_keys=[new_contact_id])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','accepted','completed','cancelled','rejected','expired')",
            name="ck_transfer_requests_status",
        ),
        # one pending transfer per organization
        Index(
            "uq_transfer_requests_pending_org",
            "organization_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )
