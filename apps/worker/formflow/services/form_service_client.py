"""JotForm API client for polling completed submissions.

Handles:
- Submission listing since a watermark, in explicit ascending creation order
- Account form listing and buyer/seller form discovery by title
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

import httpx

from formflow.core.config import DEFAULT_BUYER_FORM_ID, DEFAULT_SELLER_FORM_ID, settings
from formflow.core.errors import FetchError
from formflow.schemas.intake import Submission, TrackedForm, format_submission_time
from formflow.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

HTTPX_TIMEOUT = httpx.Timeout(15.0, connect=5.0)

BUYER_TITLE_KEYWORDS = ("buyer", "purchase")
SELLER_TITLE_KEYWORDS = ("seller", "sell", "listing")


class FormServiceClient:
    """Thin async client over the JotForm REST API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.FORM_SERVICE_API_KEY
        self.base_url = (base_url or settings.FORM_SERVICE_BASE_URL).rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=HTTPX_TIMEOUT,
            transport=self._transport,
        )

    async def _get_content(self, path: str, params: dict[str, Any], *, form_id: str) -> Any:
        query = {"apiKey": self.api_key, **params}
        try:
            async with self._client() as client:
                response = await request_with_retries(lambda: client.get(path, params=query))
        except httpx.RequestError as exc:
            raise FetchError(form_id, f"connection failed ({type(exc).__name__})") from exc

        if response.status_code != 200:
            raise FetchError(form_id, f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as exc:
            raise FetchError(form_id, "invalid JSON response") from exc

        if data.get("responseCode") != 200:
            raise FetchError(form_id, f"API error: {data.get('message')}")
        return data.get("content")

    async def list_submissions(
        self,
        form_id: str,
        since: datetime,
        *,
        limit: int | None = None,
    ) -> list[Submission]:
        """
        Fetch submissions created strictly after `since`, oldest first.

        The server-side filter and ordering are requested explicitly; the
        result is filtered and sorted again locally so callers never depend
        on the service honouring them.
        """
        params = {
            "limit": limit or settings.POLL_FETCH_LIMIT,
            "orderby": "created_at",
            "direction": "ASC",
            "filter": json.dumps({"created_at:gt": format_submission_time(since)}),
        }
        content = await self._get_content(f"/form/{form_id}/submissions", params, form_id=form_id)

        submissions: list[Submission] = []
        for raw in content or []:
            try:
                submission = Submission.model_validate({"form_id": form_id, **raw})
            except ValueError as exc:
                logger.warning(
                    "Skipping malformed submission %s on form %s: %s",
                    raw.get("id") if isinstance(raw, dict) else None,
                    form_id,
                    exc,
                )
                continue
            if submission.created_at > since:
                submissions.append(submission)

        submissions.sort(key=lambda s: (s.created_at, s.id))
        return submissions

    async def list_forms(self) -> list[dict[str, Any]]:
        """List the account's forms ({id, title, url, status, ...})."""
        content = await self._get_content("/user/forms", {}, form_id="*")
        return list(content or [])

    async def discover_tracked_forms(self) -> list[TrackedForm]:
        """
        Resolve which forms to poll.

        Configured ids win; otherwise forms are matched by title keywords;
        otherwise the fixed fallback ids are used.
        """
        configured = settings.configured_form_ids
        resolved: dict[str, str] = dict(configured)

        if len(resolved) < 2 and self.api_key:
            try:
                forms = await self.list_forms()
            except FetchError as exc:
                logger.error("Form discovery failed, using fallback ids: %s", exc)
                forms = []
            for client_type, keywords in (
                ("buyer", BUYER_TITLE_KEYWORDS),
                ("seller", SELLER_TITLE_KEYWORDS),
            ):
                if client_type in resolved:
                    continue
                match = _match_form_by_title(forms, keywords)
                if match:
                    resolved[client_type] = str(match["id"])

        resolved.setdefault("buyer", DEFAULT_BUYER_FORM_ID)
        resolved.setdefault("seller", DEFAULT_SELLER_FORM_ID)
        logger.info("Tracking forms: %s", resolved)
        return [
            TrackedForm(form_id=form_id, client_type=client_type)
            for client_type, form_id in sorted(resolved.items())
        ]


def _match_form_by_title(forms: list[dict[str, Any]], keywords: tuple[str, ...]) -> dict | None:
    for form in forms:
        title = str(form.get("title") or "").lower()
        if any(keyword in title for keyword in keywords):
            return form
    return None
