# memberhub/models/user.py
from sqlalchemy import Boolean, Column, DateTime, Integer, String, text
from sqlalchemy.orm import relationship

from memberhub.db.base import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)

    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)

    # member / admin
    role = Column(String(50), nullable=False, default="member", index=True)
    is_active = Column(Boolean, nullable=False, server_default=text("1"), default=True)

    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    profile = relationship("Profile", back_populates="user", uselist=False, lazy="joined")

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() == "admin"
