"""
Dead letters and alerting for failed submissions.

A submission that stops at a pipeline stage gets one FailedSubmission row per
(submission, stage). Recurrences bump the attempt count and reopen resolved
rows. Every recorded failure is passed to the alert hook.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from formflow.core.config import settings
from formflow.db.enums import DeadLetterStatus, PipelineStage
from formflow.db.models import FailedSubmission
from formflow.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

ALERT_WEBHOOK_TIMEOUT_SECONDS = 10.0
MAX_MESSAGE_LENGTH = 2000


def _find(db: Session, submission_id: str, stage: str) -> FailedSubmission | None:
    return db.scalars(
        select(FailedSubmission).where(
            FailedSubmission.submission_id == submission_id,
            FailedSubmission.stage == stage,
        )
    ).first()


def _bump(
    db: Session,
    existing: FailedSubmission,
    error_class: str,
    message: str | None,
    payload: dict | None,
) -> FailedSubmission:
    existing.last_seen_at = datetime.now(timezone.utc)
    existing.attempts += 1
    existing.error_class = error_class
    existing.message = message
    if payload:
        existing.payload = payload
    if existing.status != DeadLetterStatus.OPEN.value:
        existing.status = DeadLetterStatus.OPEN.value
        existing.resolved_at = None
    db.commit()
    db.refresh(existing)
    return existing


def record_failed_submission(
    db: Session,
    *,
    submission_id: str,
    stage: PipelineStage,
    error: BaseException | str,
    form_id: str | None = None,
    client_type: str | None = None,
    payload: dict[str, Any] | None = None,
) -> FailedSubmission:
    """
    Create a dead letter or update the existing one for this stage.

    Updates: last_seen_at, attempts, error details, payload.
    Reopens resolved rows if the failure recurs.
    """
    stage_value = PipelineStage(stage).value
    if isinstance(error, BaseException):
        error_class = type(error).__name__
        message = str(error) or error_class
    else:
        error_class = "Error"
        message = error
    message = message[:MAX_MESSAGE_LENGTH] if message else None

    existing = _find(db, submission_id, stage_value)
    if existing:
        return _bump(db, existing, error_class, message, payload)

    failed = FailedSubmission(
        submission_id=submission_id,
        form_id=form_id,
        client_type=client_type,
        stage=stage_value,
        error_class=error_class,
        message=message,
        payload=payload,
        status=DeadLetterStatus.OPEN.value,
    )
    db.add(failed)
    try:
        db.commit()
    except IntegrityError:
        # Another worker inserted the same (submission, stage) first
        db.rollback()
        existing = _find(db, submission_id, stage_value)
        if existing is None:
            raise
        return _bump(db, existing, error_class, message, payload)
    db.refresh(failed)
    return failed


def list_failed_submissions(
    db: Session,
    status: DeadLetterStatus | None = DeadLetterStatus.OPEN,
    limit: int = 50,
) -> list[FailedSubmission]:
    """List dead letters, most recently seen first."""
    stmt = select(FailedSubmission)
    if status:
        stmt = stmt.where(FailedSubmission.status == status.value)
    stmt = stmt.order_by(FailedSubmission.last_seen_at.desc()).limit(limit)
    return list(db.scalars(stmt).all())


def resolve_failed_submissions(
    db: Session,
    submission_id: str,
    status: DeadLetterStatus = DeadLetterStatus.RESOLVED,
) -> int:
    """Close every open dead letter of a submission. Returns the number closed."""
    rows = db.scalars(
        select(FailedSubmission).where(
            FailedSubmission.submission_id == submission_id,
            FailedSubmission.status == DeadLetterStatus.OPEN.value,
        )
    ).all()
    now = datetime.now(timezone.utc)
    for row in rows:
        row.status = status.value
        row.resolved_at = now
    if rows:
        db.commit()
    return len(rows)


class AlertHook:
    """
    Raises an alert for a dead-lettered submission.

    Always logs at error level; also POSTs to ALERT_WEBHOOK_URL when set.
    Webhook delivery problems are logged and never propagate.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else settings.ALERT_WEBHOOK_URL
        self._transport = transport

    async def __call__(self, failed: FailedSubmission) -> None:
        logger.error(
            "Submission %s dead-lettered at stage %s (attempt %s): %s: %s",
            failed.submission_id,
            failed.stage,
            failed.attempts,
            failed.error_class,
            failed.message,
        )
        if not self.webhook_url:
            return

        body = {
            "type": "intake.submission_failed",
            "submission_id": failed.submission_id,
            "form_id": failed.form_id,
            "client_type": failed.client_type,
            "stage": failed.stage,
            "error_class": failed.error_class,
            "message": failed.message,
            "attempts": failed.attempts,
        }
        try:
            async with httpx.AsyncClient(
                timeout=ALERT_WEBHOOK_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await request_with_retries(
                    lambda: client.post(self.webhook_url, json=body)
                )
        except httpx.RequestError as exc:
            logger.warning("Alert webhook unreachable: %s", type(exc).__name__)
            return
        if response.status_code >= 400:
            logger.warning("Alert webhook returned %s", response.status_code)
