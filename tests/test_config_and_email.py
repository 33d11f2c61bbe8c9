"""Environment settings and the Resend transport."""
import json

import httpx
import pytest

from memberhub.core.config import Settings
from memberhub.services.email import (
    RESEND_SEND_URL,
    EmailDeliveryError,
    LogEmailSender,
    ResendEmailSender,
    make_email_sender,
)


# =============================================================================
# Settings
# =============================================================================

def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./other.db")
    monkeypatch.setenv("ADMIN_NOTIFICATION_EMAILS", " One@hess.org, ,two@hess.org ")
    monkeypatch.setenv("TRANSFER_EXPIRY_DAYS", "3")
    monkeypatch.setenv("EMAIL_RATE_LIMIT_DELAY_MS", "1000")
    monkeypatch.setenv("ENABLE_SCHEDULER", "true")
    monkeypatch.setenv("SITE_URL", "https://portal.example.org/")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    s = Settings.from_env()

    assert s.database_url == "sqlite:///./other.db"
    assert s.admin_notification_emails == ["one@hess.org", "two@hess.org"]
    assert s.transfer_expiry_days == 3
    assert s.email_rate_limit_delay_ms == 1000
    assert s.enable_scheduler is True
    assert s.log_level == "DEBUG"
    assert s.accept_link_base == "https://portal.example.org/auth?action=accept-transfer&token="


def test_settings_defaults(monkeypatch):
    for name in (
        "DATABASE_URL",
        "ADMIN_NOTIFICATION_EMAILS",
        "TRANSFER_EXPIRY_DAYS",
        "ENABLE_SCHEDULER",
        "RESEND_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)

    s = Settings.from_env()

    assert s.transfer_expiry_days == 7
    assert s.admin_notification_emails == []
    assert s.enable_scheduler is False
    assert s.resend_api_key == ""


def test_settings_reject_non_integer(monkeypatch):
    monkeypatch.setenv("TRANSFER_EXPIRY_DAYS", "a week")
    with pytest.raises(ValueError, match="TRANSFER_EXPIRY_DAYS"):
        Settings.from_env()


# =============================================================================
# Email transport
# =============================================================================

def _resend(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ResendEmailSender("re_test_key", "Hub <noreply@hub.test>", client=client)


def test_resend_posts_plain_text_message():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_123"})

    message_id = _resend(handler).send(to="p@acme.edu", subject="Hi", body="Hello")

    assert message_id == "email_123"
    assert seen["url"] == RESEND_SEND_URL
    assert seen["auth"] == "Bearer re_test_key"
    assert seen["body"] == {
        "from": "Hub <noreply@hub.test>",
        "to": ["p@acme.edu"],
        "subject": "Hi",
        "text": "Hello",
    }


def test_resend_error_status_raises():
    sender = _resend(lambda request: httpx.Response(429, text="rate limited"))
    with pytest.raises(EmailDeliveryError, match="429"):
        sender.send(to="p@acme.edu", subject="Hi", body="Hello")


def test_resend_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(EmailDeliveryError):
        _resend(handler).send(to="p@acme.edu", subject="Hi", body="Hello")


def test_sender_choice_follows_api_key():
    assert isinstance(make_email_sender(Settings(resend_api_key="")), LogEmailSender)
    assert isinstance(make_email_sender(Settings(resend_api_key="re_x")), ResendEmailSender)
