# memberhub/api/v1/auth.py
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memberhub.core.auth import authenticate_user, get_current_user, get_db, get_settings
from memberhub.core.config import Settings
from memberhub.core.security import create_access_token
from memberhub.crud.user import get_user_by_email, register_user
from memberhub.db.base import utcnow
from memberhub.models.user import User
from memberhub.schemas.user import Token, UserOut, UserRegister
from memberhub.services.audit import audit_log, ip_from_request

router = APIRouter()


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(
    payload: UserRegister,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        user = register_user(db, payload)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    audit_log(
        db,
        organization_id=None,
        user_id=user.id,
        action="USER_REGISTERED",
        entity_type="user",
        entity_id=user.id,
        meta={"email": user.email},
        ip=ip_from_request(request),
    )
    return user


@router.post("/login", response_model=Token)
def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    email = (form_data.username or "").strip()
    user = authenticate_user(db, email, form_data.password)

    if not user:
        known = get_user_by_email(db, email) if email else None
        audit_log(
            db,
            organization_id=None,
            user_id=known.id if known else None,
            action="LOGIN_FAILED",
            entity_type="auth",
            entity_id=None,
            meta={"email": email},
            ip=ip_from_request(request),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user.last_login_at = utcnow()
        db.commit()
    except SQLAlchemyError:
        db.rollback()

    audit_log(
        db,
        organization_id=None,
        user_id=user.id,
        action="LOGIN_SUCCESS",
        entity_type="auth",
        entity_id=user.id,
        meta={"email": user.email, "method": "password"},
        ip=ip_from_request(request),
    )

    access_token = create_access_token(
        data={"sub": user.email},
        secret_key=settings.secret_key,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
    )
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=UserOut)
def read_me(current_user: User = Depends(get_current_user)):
    return current_user
