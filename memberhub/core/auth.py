# memberhub/core/auth.py
from typing import Iterator, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import func
from sqlalchemy.orm import Session

from memberhub.core.config import Settings
from memberhub.core.security import decode_access_token, verify_password
from memberhub.models.user import User
from memberhub.services.email import EmailSender

# OAuth2 bearer scheme for Swagger "Authorize" button and DI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/login")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    """Yield a session from the app's session factory and close it afterwards."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    """
    Returns the user on a correct password, None otherwise (without revealing
    whether the account exists). Deactivated accounts get 403.
    """
    user = db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()
    if not user:
        return None

    if getattr(user, "is_active", True) is False:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is disabled")

    if not verify_password(password, user.hashed_password):
        return None
    return user


def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """
    Decode JWT and load the user from DB or return 401.
    Also stores user context on request.state for request logging.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_access_token(token, secret_key=settings.secret_key)
    email = payload.get("sub") if payload else None
    if not email:
        raise credentials_exception

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise credentials_exception

    if getattr(user, "is_active", True) is False:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is disabled")

    request.state.user_id = user.id
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """403 unless the account holds the admin role."""
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user
