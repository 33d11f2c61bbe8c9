# memberhub/models/notification.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from memberhub.db.base import Base, utcnow


class Notification(Base):
    """Outbox row: written in the same transaction as the change it announces."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    transfer_request_id = Column(
        Integer,
        ForeignKey("organization_transfer_requests.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    type = Column(String(60), nullable=False, index=True)
    channel = Column(String(30), nullable=False, default="email")
    recipient = Column(String(255), nullable=False)
    payload = Column(Text, nullable=False, default="{}")

    status = Column(String(20), nullable=False, default="queued", index=True)  # queued|sending|sent|failed
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    sent_at = Column(DateTime, nullable=True)
