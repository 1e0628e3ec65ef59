"""Outbound email delivery through the provider's HTTP API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from html import escape

import httpx

from compyy_api.core.logging_config import mask_email
from compyy_api.core.settings import settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    """Raised when the email provider rejects or fails a send."""


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str


class EmailSender:
    """Send transactional email via a Resend-compatible JSON API.

    Without an API key messages are logged instead of sent, which keeps local
    development working without provider credentials.
    """

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url or settings.email_provider_url
        self.api_key = api_key if api_key is not None else settings.email_api_key
        self.sender = sender or settings.email_from
        self.timeout = timeout if timeout is not None else settings.email_timeout_seconds
        self._transport = transport

    async def send(self, message: EmailMessage) -> None:
        if not self.api_key:
            logger.info(
                "Email delivery disabled; would send %r to %s",
                message.subject,
                mask_email(message.to),
            )
            return

        payload = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as err:
            raise EmailDeliveryError(f"Email provider request failed: {err}") from err
        logger.info("Sent %r to %s", message.subject, mask_email(message.to))


def build_verification_email(to: str, first_name: str | None, confirm_url: str) -> EmailMessage:
    name = escape(first_name or "there")
    url = escape(confirm_url, quote=True)
    html = (
        f"<p>Hi {name},</p>"
        "<p>Thanks for signing up for Compyy. Please confirm your email address:</p>"
        f'<p><a href="{url}">Confirm your email</a></p>'
        f"<p>Or paste this link into your browser: {url}</p>"
    )
    return EmailMessage(to=to, subject="Confirm your email - Compyy", html=html)


def build_password_reset_email(
    to: str, first_name: str | None, reset_url: str, expires_minutes: int
) -> EmailMessage:
    name = escape(first_name or "there")
    url = escape(reset_url, quote=True)
    html = (
        f"<p>Hi {name},</p>"
        "<p>We received a request to reset your Compyy password. "
        "If you didn't make this request, you can safely ignore this email.</p>"
        f'<p><a href="{url}">Reset your password</a></p>'
        f"<p>Or paste this link into your browser: {url}</p>"
        f"<p><strong>This link will expire in {expires_minutes} minutes.</strong></p>"
    )
    return EmailMessage(to=to, subject="Reset Your Password - Compyy", html=html)


_SENDER: EmailSender | None = None


def get_email_sender() -> EmailSender:
    """Return the process-wide email sender."""
    global _SENDER
    if _SENDER is None:
        _SENDER = EmailSender()
    return _SENDER
