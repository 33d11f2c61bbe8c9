#!/usr/bin/env python3
"""
Minimal seed:
- Ensures an admin account (with profile) exists.
- Safe to run multiple times (idempotent).
"""
import os
import sys

# enable 'memberhub.' imports
sys.path.append(os.getcwd())

from sqlalchemy.orm import Session  # noqa: E402

from memberhub.core.config import Settings, load_env  # noqa: E402
from memberhub.core.security import get_password_hash  # noqa: E402
from memberhub.crud.profile import get_profile_by_email, normalize_email  # noqa: E402
from memberhub.crud.user import get_user_by_email  # noqa: E402
from memberhub.db.session import make_engine, make_session_factory  # noqa: E402
from memberhub.models import Base  # noqa: E402
from memberhub.models.profile import Profile  # noqa: E402
from memberhub.models.user import User  # noqa: E402


def ensure_admin(db: Session, email: str, password: str) -> User:
    email = normalize_email(email)
    user = get_user_by_email(db, email)
    if user:
        # upgrade to admin if needed
        if not user.is_admin or not user.is_active:
            user.role = "admin"
            user.is_active = True
            db.commit()
        return user

    user = User(email=email, role="admin", is_active=True, hashed_password=get_password_hash(password))
    db.add(user)
    db.flush()

    profile = get_profile_by_email(db, email)
    if profile is None:
        profile = Profile(email=email, first_name="Site", last_name="Admin")
        db.add(profile)
    if profile.user_id is None:
        profile.user_id = user.id

    db.commit()
    db.refresh(user)
    return user


def main():
    load_env()
    settings = Settings.from_env()
    email = os.environ.get("SEED_ADMIN_EMAIL", "admin@example.com")
    password = os.environ.get("SEED_ADMIN_PASSWORD", "ChangeMe123!")

    engine = make_engine(settings.database_url)
    if settings.enable_create_all:
        Base.metadata.create_all(bind=engine)

    db = make_session_factory(engine)()
    try:
        u = ensure_admin(db, email, password)
        print(f"OK: admin ensured -> {u.email} (id={u.id})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
