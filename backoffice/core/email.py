"""
Email dispatch for URL-bearing messages (invitations, magic links, password resets).

The core only needs `send(email, url, purpose, expires_in_minutes) -> bool`.
A False return is a reportable partial failure, never a reason to roll back
the state change that triggered the email.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Optional, Protocol

import httpx
import structlog

from backoffice.core.config import Settings, get_settings

log = structlog.get_logger()


class EmailPurpose(str, Enum):
    INVITATION = "invitation"
    MAGIC_LINK = "magic_link"
    PASSWORD_RESET = "password_reset"


SUBJECTS = {
    EmailPurpose.INVITATION: "You have been invited to join PlayHard",
    EmailPurpose.MAGIC_LINK: "Your PlayHard sign-in link",
    EmailPurpose.PASSWORD_RESET: "Reset your PlayHard password",
}


def render_text(url: str, purpose: EmailPurpose, expires_in_minutes: int) -> str:
    """Plain-text body shared by every dispatcher."""
    if purpose == EmailPurpose.PASSWORD_RESET:
        intro = "We received a request to reset your password."
        footer = "If you did not request a reset, you can ignore this email."
    elif purpose == EmailPurpose.INVITATION:
        intro = "You have been invited to join an organization on the PlayHard backoffice."
        footer = "If you were not expecting this invitation, you can ignore this email."
    else:
        intro = "Use the link below to finish setting up your PlayHard account."
        footer = "If you did not request this link, you can ignore this email."
    return (
        f"{intro}\n\n{url}\n\n"
        f"This link expires in {expires_in_minutes} minutes.\n\n{footer}\n"
    )


class EmailDispatcher(Protocol):
    async def send(
        self,
        email: str,
        url: str,
        purpose: EmailPurpose,
        expires_in_minutes: int,
    ) -> bool: ...


class LoggingEmailDispatcher:
    """Development dispatcher: logs the link instead of sending it.

    The most recent `history` messages are kept in `sent` for inspection.
    """

    def __init__(self, history: int = 100):
        self.sent: deque[dict] = deque(maxlen=history)

    async def send(
        self,
        email: str,
        url: str,
        purpose: EmailPurpose,
        expires_in_minutes: int,
    ) -> bool:
        self.sent.append(
            {
                "email": email,
                "url": url,
                "purpose": EmailPurpose(purpose),
                "expires_in_minutes": expires_in_minutes,
            }
        )
        log.info(
            "email.logged",
            to=email,
            purpose=EmailPurpose(purpose).value,
            url=url,
            expires_in_minutes=expires_in_minutes,
        )
        return True


def _provider_id(resp: httpx.Response) -> Optional[str]:
    """Message id from a Resend response; a missing or malformed body is not an error."""
    try:
        body = resp.json() if resp.content else None
    except ValueError:
        return None
    return body.get("id") if isinstance(body, dict) else None


class ResendEmailDispatcher:
    """Sends email through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: int = 10,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url
        self._timeout = timeout
        self._client = client

    async def send(
        self,
        email: str,
        url: str,
        purpose: EmailPurpose,
        expires_in_minutes: int,
    ) -> bool:
        purpose = EmailPurpose(purpose)
        payload = {
            "from": self._sender,
            "to": [email],
            "subject": SUBJECTS[purpose],
            "text": render_text(url, purpose, expires_in_minutes),
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        try:
            resp = await client.post(self._api_url, json=payload, headers=headers)
            resp.raise_for_status()
            provider_id = _provider_id(resp)
        except httpx.HTTPStatusError as exc:
            log.error(
                "email.provider_error",
                status=exc.response.status_code,
                to=email,
                purpose=purpose.value,
            )
            return False
        except httpx.HTTPError as exc:
            log.error("email.provider_unreachable", to=email, purpose=purpose.value, error=str(exc))
            return False
        finally:
            if self._client is None:
                await client.aclose()

        log.info("email.sent", to=email, purpose=purpose.value, provider_id=provider_id)
        return True


def build_email_dispatcher(settings: Settings | None = None) -> EmailDispatcher:
    """Resend when an API key is configured, the logging dispatcher otherwise."""
    settings = settings or get_settings()
    if settings.resend_api_key:
        return ResendEmailDispatcher(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            api_url=settings.resend_api_url,
            timeout=settings.email_timeout_seconds,
        )
    log.warning("email.no_provider_configured", fallback="logging")
    return LoggingEmailDispatcher()
