# memberhub/services/email.py
"""
Outbound email transport.

ResendEmailSender talks to the Resend HTTP API; LogEmailSender is used when
no API key is configured and only writes the message to the log.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from memberhub.core.config import Settings

log = logging.getLogger("memberhub.email")

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 20.0


class EmailDeliveryError(Exception):
    """Raised when the provider refuses or cannot be reached."""


class EmailSender(Protocol):
    def send(self, *, to: str, subject: str, body: str) -> Optional[str]:
        """Deliver one message. Returns the provider message id if there is one."""
        ...


class LogEmailSender:
    def send(self, *, to: str, subject: str, body: str) -> Optional[str]:
        log.info("email (log transport) to=%s subject=%r", to, subject)
        return None


class ResendEmailSender:
    def __init__(
        self,
        api_key: str,
        from_address: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = RESEND_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, *, to: str, subject: str, body: str) -> Optional[str]:
        payload = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "text": body,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = self._client.post(RESEND_SEND_URL, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(f"Resend request failed: {exc}") from exc

        if response.status_code >= 400:
            raise EmailDeliveryError(
                f"Resend returned {response.status_code}: {response.text[:300]}"
            )

        try:
            return response.json().get("id")
        except ValueError:
            return None

    def close(self) -> None:
        self._client.close()


def make_email_sender(settings: Settings) -> EmailSender:
    if settings.resend_api_key:
        return ResendEmailSender(settings.resend_api_key, settings.email_from)
    log.warning("RESEND_API_KEY not set; emails will only be logged")
    return LogEmailSender()
