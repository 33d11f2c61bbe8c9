# memberhub/models/organization.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from memberhub.db.base import Base, utcnow


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)

    # pending / approved / inactive
    membership_status = Column(String(30), nullable=False, default="approved")

    # the profile currently treated as primary contact
    contact_person_id = Column(
        Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    contact_person = relationship("Profile", foreign_keys=[contact_person_id])
