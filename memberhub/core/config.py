# memberhub/core/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv, find_dotenv


def load_env() -> None:
    """
    Env loading order:
      1) root .env (if present)
      2) memberhub/.env (do not override values already loaded)
    """
    load_dotenv(find_dotenv(usecwd=True))
    load_dotenv(Path(__file__).resolve().parent.parent / ".env", override=False)


def _env_bool(name: str, default: str) -> bool:
    return (os.getenv(name, default) or "").strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _split_emails(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [e.strip().lower() for e in raw.split(",") if e.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./memberhub.db"
    secret_key: str = "change-this-in-production"
    access_token_expire_minutes: int = 60 * 8

    # public site used to build acceptance links
    site_url: str = "https://members.hessconsortium.app"
    admin_notification_emails: List[str] = field(default_factory=list)

    # email transport (Resend); empty key -> log-only sender
    resend_api_key: str = ""
    email_from: str = "HESS Consortium <noreply@members.hessconsortium.app>"
    email_rate_limit_delay_ms: int = 550

    transfer_expiry_days: int = 7

    enable_create_all: bool = True
    enable_scheduler: bool = False
    dispatch_interval_minutes: int = 5
    log_level: str = "INFO"

    @property
    def accept_link_base(self) -> str:
        return f"{self.site_url.rstrip('/')}/auth?action=accept-transfer&token="

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            secret_key=os.getenv("SECRET_KEY", cls.secret_key),
            access_token_expire_minutes=_env_int(
                "ACCESS_TOKEN_EXPIRE_MINUTES", cls.access_token_expire_minutes
            ),
            site_url=os.getenv("SITE_URL", cls.site_url),
            admin_notification_emails=_split_emails(
                os.getenv("ADMIN_NOTIFICATION_EMAILS")
            ),
            resend_api_key=os.getenv("RESEND_API_KEY", ""),
            email_from=os.getenv("EMAIL_FROM", cls.email_from),
            email_rate_limit_delay_ms=_env_int(
                "EMAIL_RATE_LIMIT_DELAY_MS", cls.email_rate_limit_delay_ms
            ),
            transfer_expiry_days=_env_int(
                "TRANSFER_EXPIRY_DAYS", cls.transfer_expiry_days
            ),
            enable_create_all=_env_bool("ENABLE_CREATE_ALL", "1"),
            enable_scheduler=_env_bool("ENABLE_SCHEDULER", "0"),
            dispatch_interval_minutes=_env_int(
                "DISPATCH_INTERVAL_MINUTES", cls.dispatch_interval_minutes
            ),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
