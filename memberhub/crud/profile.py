from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from memberhub.models.profile import Profile


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_profile(db: Session, profile_id: Optional[int]) -> Optional[Profile]:
    if profile_id is None:
        return None
    return db.get(Profile, profile_id)


def get_profile_by_user(db: Session, user_id: int) -> Optional[Profile]:
    return db.query(Profile).filter(Profile.user_id == user_id).first()


def get_profile_by_email(db: Session, email: str) -> Optional[Profile]:
    return (
        db.query(Profile)
        .filter(func.lower(Profile.email) == normalize_email(email))
        .first()
    )
