"""
Test configuration and fixtures.

Provides:
- An app built on an in-memory SQLite database (fresh per test)
- A recording email sender in place of Resend
- Factories for users, profiles and organizations
- JWT headers for authenticated requests
"""
from dataclasses import dataclass, field
from typing import AsyncGenerator, Dict, List, Optional, Set

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from memberhub.core.config import Settings
from memberhub.core.security import create_access_token, get_password_hash
from memberhub.main import create_app
from memberhub.models.organization import Organization
from memberhub.models.profile import Profile
from memberhub.models.user import User
from memberhub.services.email import EmailDeliveryError

ADMIN_INBOX = "membership@hess.test"
DEFAULT_PASSWORD = "Password123!"


# =============================================================================
# Email
# =============================================================================

@dataclass
class RecordingEmailSender:
    """Keeps every message instead of sending it; recipients in fail_for raise."""

    sent: List[Dict[str, str]] = field(default_factory=list)
    fail_for: Set[str] = field(default_factory=set)

    def send(self, *, to: str, subject: str, body: str) -> Optional[str]:
        if to in self.fail_for:
            raise EmailDeliveryError(f"mailbox unavailable: {to}")
        self.sent.append({"to": to, "subject": subject, "body": body})
        return f"msg-{len(self.sent)}"

    def recipients(self) -> List[str]:
        return [m["to"] for m in self.sent]


# =============================================================================
# App / DB
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret",
        site_url="https://members.test",
        admin_notification_emails=[ADMIN_INBOX],
        email_rate_limit_delay_ms=0,
        enable_create_all=True,
        enable_scheduler=False,
        log_level="WARNING",
    )


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def app(settings: Settings, email_sender: RecordingEmailSender):
    return create_app(settings, email_sender=email_sender)


@pytest.fixture
def db(app) -> Session:
    session = app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


# =============================================================================
# Factories
# =============================================================================

def make_profile(db: Session, email: str, *, first_name: str = "Pat", last_name: str = "Lee") -> Profile:
    profile = Profile(email=email, first_name=first_name, last_name=last_name)
    db.add(profile)
    db.commit()
    return profile


def make_user(
    db: Session,
    email: str,
    *,
    role: str = "member",
    password: str = DEFAULT_PASSWORD,
    first_name: str = "Pat",
    last_name: str = "Lee",
) -> User:
    """Creates an account together with its profile."""
    user = User(email=email, role=role, hashed_password=get_password_hash(password))
    db.add(user)
    db.flush()
    db.add(Profile(user_id=user.id, email=email, first_name=first_name, last_name=last_name))
    db.commit()
    db.refresh(user)
    return user


def make_org(db: Session, name: str, contact: Optional[Profile]) -> Organization:
    org = Organization(name=name, contact_person_id=contact.id if contact else None)
    db.add(org)
    if contact is not None:
        contact.organization = name
    db.commit()
    return org


def auth_headers(settings: Settings, user: User) -> Dict[str, str]:
    token = create_access_token(data={"sub": user.email}, secret_key=settings.secret_key)
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Scenario fixtures
# =============================================================================

@dataclass
class College:
    org: Organization
    contact: User
    contact_profile: Profile
    admin: User


@pytest.fixture
def admin(db: Session) -> User:
    return make_user(db, "admin@hess.test", role="admin", first_name="Ada", last_name="Admin")


@pytest.fixture
def college(db: Session, admin: User) -> College:
    contact = make_user(db, "p1@acme.edu", first_name="Paula", last_name="One")
    org = make_org(db, "Acme College", contact.profile)
    return College(org=org, contact=contact, contact_profile=contact.profile, admin=admin)
