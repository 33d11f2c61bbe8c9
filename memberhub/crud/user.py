from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from memberhub.core.security import get_password_hash
from memberhub.crud.profile import get_profile_by_email, normalize_email
from memberhub.models.profile import Profile
from memberhub.models.user import User
from memberhub.schemas.user import UserRegister


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(func.lower(User.email) == normalize_email(email)).first()


def register_user(db: Session, payload: UserRegister, *, role: str = "member") -> User:
    """
    Creates an account and its profile.
    A profile that already exists for the email without an account (e.g. an
    imported contact) is claimed instead of duplicated.
    """
    email = normalize_email(payload.email)
    if get_user_by_email(db, email):
        raise ValueError("User with this email already exists")

    user = User(email=email, hashed_password=get_password_hash(payload.password), role=role)
    db.add(user)
    db.flush()

    profile = get_profile_by_email(db, email)
    if profile is not None and profile.user_id is not None:
        db.rollback()
        raise ValueError("Profile for this email belongs to another account")

    if profile is None:
        profile = Profile(email=email)
        db.add(profile)
    profile.user_id = user.id
    if payload.first_name:
        profile.first_name = payload.first_name.strip()
    if payload.last_name:
        profile.last_name = payload.last_name.strip()

    db.commit()
    db.refresh(user)
    return user
