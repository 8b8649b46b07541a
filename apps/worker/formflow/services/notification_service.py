"""Email notifications via the Resend API.

Sends templated emails with retry on transient failures. Without a
RESEND_API_KEY the notifier runs in dry-run mode and only logs.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

import httpx

from formflow.core.config import settings
from formflow.core.errors import NotificationFailure
from formflow.core.structured_logging import mask_email
from formflow.schemas.email import TemplateData
from formflow.services.email_templates import render_template
from formflow.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 20.0


@dataclass
class SentEmail:
    """Record of one sent (or dry-run) email, stored on the workflow."""

    recipient: str
    template: str
    subject: str
    message_id: str | None
    sent_at: str
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Notifier(Protocol):
    async def send(
        self,
        recipient: str,
        template_name: str,
        data: TemplateData | Mapping[str, Any],
        subject: str | None = None,
    ) -> SentEmail: ...


class ResendNotifier:
    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_email = from_email or settings.EMAIL_FROM
        self._transport = transport

    @property
    def dry_run(self) -> bool:
        return not self.api_key

    async def send(
        self,
        recipient: str,
        template_name: str,
        data: TemplateData | Mapping[str, Any],
        subject: str | None = None,
    ) -> SentEmail:
        """
        Render and send one email.

        Raises TemplateDataError when data does not match the template schema
        and NotificationFailure when delivery fails.
        """
        rendered = render_template(template_name, data, subject)
        sent_at = datetime.now(timezone.utc).isoformat()

        if self.dry_run:
            logger.info(
                "Dry-run email %s to %s: %s",
                template_name,
                mask_email(recipient),
                rendered.subject,
            )
            return SentEmail(
                recipient=recipient,
                template=template_name,
                subject=rendered.subject,
                message_id=None,
                sent_at=sent_at,
                dry_run=True,
            )

        payload: dict[str, object] = {
            "from": self.from_email,
            "to": [recipient],
            "subject": rendered.subject,
            "html": rendered.html,
            "text": rendered.text,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=RESEND_TIMEOUT_SECONDS, transport=self._transport
            ) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(RESEND_SEND_URL, headers=headers, json=payload)

                response = await request_with_retries(
                    request_fn, retry_statuses=DEFAULT_RETRY_STATUSES
                )
        except httpx.TimeoutException as exc:
            raise NotificationFailure("Resend request timed out") from exc
        except httpx.RequestError as exc:
            raise NotificationFailure(f"Resend request failed ({type(exc).__name__})") from exc

        if response.status_code >= 400:
            try:
                detail = response.json().get("message") or response.text
            except ValueError:
                detail = response.text
            raise NotificationFailure(f"Resend API error {response.status_code}: {detail[:200]}")

        message_id = None
        try:
            message_id = response.json().get("id")
        except ValueError:
            logger.warning("Resend returned a non-JSON success body")

        logger.info(
            "Email %s sent to %s (message_id=%s)",
            template_name,
            mask_email(recipient),
            message_id,
        )
        return SentEmail(
            recipient=recipient,
            template=template_name,
            subject=rendered.subject,
            message_id=message_id,
            sent_at=sent_at,
        )
