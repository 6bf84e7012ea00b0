"""Mail transport used by the flow engine.

The engine only depends on the MailTransport protocol; ResendTransport is
the production implementation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from lifecycle.core.config import settings
from lifecycle.core.constants import MAX_PROVIDER_TAGS
from lifecycle.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries

logger = logging.getLogger(__name__)

RESEND_EMAILS_ENDPOINT = "/emails"
RESEND_MAX_ATTEMPTS = 3
RESEND_RETRY_BASE_DELAY = 0.5
RESEND_RETRY_MAX_DELAY = 4.0


class MailTransportError(Exception):
    """Raised when the mail provider rejects or fails a send."""

    def __init__(self, message: str, status: int, body: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body


@dataclass(frozen=True)
class SendResult:
    id: str


class MailTransport(Protocol):
    def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        tags: dict[str, str] | None = None,
    ) -> SendResult:
        """Send one email. Raises MailTransportError on any failure."""


def build_tag_record(tags: list[str] | None) -> dict[str, str] | None:
    """Forward the first contact tags to the provider as tag_1..tag_8."""
    if not tags:
        return None
    return {f"tag_{index}": tag for index, tag in enumerate(tags[:MAX_PROVIDER_TAGS], start=1)}


def map_resend_error_message(status: int, body: dict | None) -> str:
    if body and body.get("message"):
        return str(body["message"])
    if body and body.get("error"):
        return str(body["error"])
    if status == 401:
        return "Invalid Resend API key"
    if status == 403:
        return "Resend API key lacks required permissions"
    if status == 404:
        return "Resend endpoint not available"
    if status >= 500:
        return "Resend service returned an error"
    return "Unexpected response from Resend"


def _json_body(response: httpx.Response) -> dict | None:
    if "application/json" not in response.headers.get("content-type", ""):
        return None
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class ResendTransport:
    """Send through the Resend REST API with retries on 429/5xx."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        from_email: str | None = None,
        base_url: str | None = None,
        client: httpx.Client | None = None,
        retry_base_delay: float = RESEND_RETRY_BASE_DELAY,
    ) -> None:
        self.api_key = settings.RESEND_API_KEY if api_key is None else api_key
        self.from_email = from_email or settings.RESEND_FROM_EMAIL
        self.base_url = (base_url or settings.RESEND_API_BASE_URL).rstrip("/")
        self._client = client
        self.retry_base_delay = retry_base_delay

    def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        tags: dict[str, str] | None = None,
    ) -> SendResult:
        if not self.api_key:
            raise MailTransportError("Resend API key is not configured", 400)

        payload: dict[str, Any] = {
            "from": self.from_email,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if tags:
            payload["tags"] = [{"name": name, "value": value} for name, value in tags.items()]

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}{RESEND_EMAILS_ENDPOINT}"

        client = self._client or httpx.Client(timeout=settings.RESEND_TIMEOUT_SECONDS)
        try:
            response = request_with_retries(
                lambda: client.post(url, headers=headers, json=payload),
                max_attempts=RESEND_MAX_ATTEMPTS,
                base_delay=self.retry_base_delay,
                max_delay=RESEND_RETRY_MAX_DELAY,
                retry_statuses=DEFAULT_RETRY_STATUSES,
            )
        except httpx.HTTPError as exc:
            logger.warning("Resend request failed: %s", exc.__class__.__name__)
            raise MailTransportError(str(exc) or "Failed to send email via Resend", 0) from exc
        finally:
            if self._client is None:
                client.close()

        body = _json_body(response)
        if not response.is_success:
            raise MailTransportError(
                map_resend_error_message(response.status_code, body),
                response.status_code,
                body,
            )

        message_id = body.get("id") if body else None
        if not isinstance(message_id, str) or not message_id:
            raise MailTransportError(
                "Resend response missing message id", response.status_code, body
            )

        return SendResult(id=message_id)


def get_default_transport() -> MailTransport:
    return ResendTransport()
