"""
Per-submission processing pipeline.

For one completed form:
1. Extract the client identity (no email: skip permanently)
2. Idempotency guard on the submission id
3. Qualification analysis (failure continues without a summary)
4. Persist the client and move its workflow to form_completed
5. Persist the analysis, generate the report, notify the agent
6. Complete the workflow, or dead-letter the stage that stopped it

Each stage catches its own errors. Nothing a stage does is undone by a later
failure, and no failure escapes to the caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable

from sqlalchemy.orm import Session, sessionmaker

from formflow.core.async_utils import call_with_timeout
from formflow.core.config import settings
from formflow.core.errors import AnalysisFailure, DuplicateSubmission, UnresolvableIdentity
from formflow.core.structured_logging import build_log_context, mask_email
from formflow.db.enums import (
    DeadLetterStatus,
    PipelineOutcome,
    PipelineStage,
    WorkflowStatus,
    WorkflowStepName,
)
from formflow.db.models import Client, FailedSubmission, Workflow
from formflow.schemas.email import AgentSummaryData
from formflow.schemas.intake import Submission
from formflow.services import (
    alert_service,
    client_service,
    idempotency_service,
    identity_service,
    workflow_service,
)
from formflow.services.notification_service import Notifier
from formflow.services.qualification_service import (
    QualificationAnalyzer,
    format_answers_for_analysis,
)
from formflow.services.report_service import ArtifactGenerator, ReportClient

logger = logging.getLogger(__name__)

AlertCallback = Callable[[FailedSubmission], Awaitable[None]]


@dataclass
class PipelineResult:
    submission_id: str
    outcome: PipelineOutcome
    client_id: str | None = None
    workflow_id: str | None = None
    analysis_id: str | None = None
    report_url: str | None = None
    failed_stage: PipelineStage | None = None
    error: str | None = None


@dataclass
class _ClientLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class ClientLockRegistry:
    """
    One asyncio.Lock per client key while anyone holds or waits on it.

    Entries are dropped when the last holder releases, so the map only
    covers clients with submissions in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, _ClientLock] = {}

    @staticmethod
    def key(client_type: str, email: str) -> str:
        return f"{client_type}:{email}"

    @contextlib.asynccontextmanager
    async def hold(self, client_type: str, email: str) -> AsyncIterator[None]:
        key = self.key(client_type, email)
        entry = self._locks.setdefault(key, _ClientLock())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class _StageFailure:
    stage: PipelineStage
    error: BaseException


def _error_text(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__


class IntakePipeline:
    def __init__(
        self,
        session_factory: sessionmaker,
        analyzer: QualificationAnalyzer,
        artifacts: ArtifactGenerator,
        notifier: Notifier,
        *,
        alert_hook: AlertCallback | None = None,
        locks: ClientLockRegistry | None = None,
        agent_email: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.analyzer = analyzer
        self.artifacts = artifacts
        self.notifier = notifier
        self.alert_hook = alert_hook
        self.locks = locks or ClientLockRegistry()
        self.agent_email = agent_email or settings.AGENT_NOTIFICATION_EMAIL

    async def process(
        self,
        submission: Submission,
        client_type: str,
        *,
        resume: bool = False,
    ) -> PipelineResult:
        """
        Process one submission end to end.

        resume=True lets a submission whose analysis already exists pick up
        the report and notification stages instead of being treated as a
        duplicate (used when re-driving dead letters).
        """
        context = build_log_context(form_id=submission.form_id, submission_id=submission.id)
        identity = identity_service.extract_identity(submission.answers)
        if not identity.email:
            logger.warning("Submission has no email, skipping", extra=context)
            with self.session_factory() as db:
                await self._dead_letter(
                    db,
                    submission,
                    client_type,
                    PipelineStage.IDENTITY,
                    UnresolvableIdentity(submission.id),
                )
            return PipelineResult(
                submission_id=submission.id,
                outcome=PipelineOutcome.SKIPPED_NO_EMAIL,
                failed_stage=PipelineStage.IDENTITY,
            )

        async with self.locks.hold(client_type, identity.email):
            with self.session_factory() as db:
                try:
                    return await self._run(db, submission, client_type, resume=resume)
                except Exception as exc:
                    logger.exception("Unexpected pipeline error", extra=context)
                    db.rollback()
                    await self._dead_letter(
                        db, submission, client_type, PipelineStage.UNEXPECTED, exc
                    )
                    return PipelineResult(
                        submission_id=submission.id,
                        outcome=PipelineOutcome.FAILED,
                        failed_stage=PipelineStage.UNEXPECTED,
                        error=_error_text(exc),
                    )

    async def _run(
        self,
        db: Session,
        submission: Submission,
        client_type: str,
        *,
        resume: bool,
    ) -> PipelineResult:
        context = build_log_context(form_id=submission.form_id, submission_id=submission.id)
        resolved = identity_service.resolve_identity(db, submission, client_type)
        identity = resolved.identity
        existing = resolved.client

        analysis = idempotency_service.get_analysis_for_submission(db, submission.id)
        if analysis is not None:
            workflow = workflow_service.get_active_workflow(db, analysis.client_id)
            resumable = (
                resume
                and workflow is not None
                and workflow.submission_id == submission.id
                and workflow.status == WorkflowStatus.FORM_COMPLETED.value
            )
            if not resumable:
                logger.info("Duplicate submission detected, skipping", extra=context)
                return PipelineResult(
                    submission_id=submission.id,
                    outcome=PipelineOutcome.DUPLICATE,
                    client_id=str(analysis.client_id),
                    analysis_id=str(analysis.id),
                )
            client = client_service.get_client(db, analysis.client_id)
            logger.info("Resuming submission after analysis", extra=context)
            return await self._finish(
                db,
                submission,
                client,
                workflow,
                summary=analysis.ai_summary,
                analysis_id=str(analysis.id),
                failure=None,
            )

        if existing is not None:
            latest = workflow_service.get_active_workflow(db, existing.id)
            if latest is not None and latest.status == WorkflowStatus.COMPLETED.value:
                client = client_service.record_form_completion(
                    db, existing, identity, submission.answers, None
                )
                logger.info(
                    "Workflow already completed; updated client only",
                    extra=build_log_context(
                        submission_id=submission.id,
                        client_id=str(client.id),
                        workflow_id=str(latest.id),
                    ),
                )
                return PipelineResult(
                    submission_id=submission.id,
                    outcome=PipelineOutcome.RESUBMITTED,
                    client_id=str(client.id),
                    workflow_id=str(latest.id),
                )

        # Analysis
        summary: str | None = None
        model: str | None = None
        failure: _StageFailure | None = None
        text = format_answers_for_analysis(submission.answers, client_type, submission.created_at)
        try:
            result = await call_with_timeout(
                lambda: self.analyzer.summarize(text, client_type=client_type),
                timeout=settings.ANALYZER_TIMEOUT_SECONDS,
            )
            summary, model = result.summary, result.model
        except Exception as exc:
            logger.warning(
                "Analysis failed, continuing without summary: %s",
                _error_text(exc),
                extra={**context, "stage": PipelineStage.ANALYSIS.value},
            )
            failure = _StageFailure(
                PipelineStage.ANALYSIS,
                exc if isinstance(exc, AnalysisFailure) else AnalysisFailure(_error_text(exc)),
            )

        # Client + workflow
        try:
            client = client_service.upsert_client_from_submission(
                db, existing, identity, client_type, submission.answers, summary
            )
            workflow = workflow_service.ensure_workflow(db, client, form_id=submission.form_id)
            workflow = workflow_service.mark_form_completed(db, workflow, submission)
        except Exception as exc:
            logger.error(
                "Could not persist client for submission: %s",
                _error_text(exc),
                extra={**context, "stage": PipelineStage.PERSIST_CLIENT.value},
            )
            db.rollback()
            await self._dead_letter(db, submission, client_type, PipelineStage.PERSIST_CLIENT, exc)
            return PipelineResult(
                submission_id=submission.id,
                outcome=PipelineOutcome.FAILED,
                failed_stage=PipelineStage.PERSIST_CLIENT,
                error=_error_text(exc),
            )
        logger.info(
            "Client %s %s (%s)",
            "created" if existing is None else "updated",
            mask_email(client.email),
            client_type,
            extra=build_log_context(
                submission_id=submission.id, client_id=str(client.id), workflow_id=str(workflow.id)
            ),
        )

        # Analysis record
        analysis_id: str | None = None
        if summary is not None:
            try:
                analysis_id = idempotency_service.record_analysis(
                    db,
                    {
                        "submission_id": submission.id,
                        "client_id": client.id,
                        "client_email": client.email,
                        "client_name": client.name,
                        "client_type": client_type,
                        "agent_id": client.agent_id,
                        "form_data": submission.answers,
                        "ai_summary": summary,
                        "model": model or settings.AI_MODEL,
                    },
                )
                workflow = workflow_service.complete_step(
                    db, workflow, WorkflowStepName.ANALYZE_SUBMISSION
                )
            except DuplicateSubmission:
                logger.info("Duplicate submission detected on analysis insert", extra=context)
                return PipelineResult(
                    submission_id=submission.id,
                    outcome=PipelineOutcome.DUPLICATE,
                    client_id=str(client.id),
                    workflow_id=str(workflow.id),
                )
            except Exception as exc:
                db.rollback()
                failure = _StageFailure(PipelineStage.PERSIST_ANALYSIS, exc)

        return await self._finish(
            db,
            submission,
            client,
            workflow,
            summary=summary,
            analysis_id=analysis_id,
            failure=failure,
        )

    async def _finish(
        self,
        db: Session,
        submission: Submission,
        client: Client,
        workflow: Workflow,
        *,
        summary: str | None,
        analysis_id: str | None,
        failure: _StageFailure | None,
    ) -> PipelineResult:
        """Report, notification and workflow completion for a persisted submission."""
        client_type = client.client_type
        context = build_log_context(
            submission_id=submission.id, client_id=str(client.id), workflow_id=str(workflow.id)
        )
        report_url: str | None = None

        # Report
        if failure is None:
            existing_report = workflow_service.document_for_submission(workflow, submission.id)
            if existing_report is not None:
                report_url = existing_report.get("url")
            else:
                try:
                    report_url = await call_with_timeout(
                        lambda: self.artifacts.create_report(
                            ReportClient(
                                client_type=client_type,
                                name=client.name or client.email,
                                email=client.email,
                                phone=client.phone,
                                client_id=str(client.id),
                            ),
                            submission.answers,
                            summary or "",
                        ),
                        timeout=settings.ARTIFACT_TIMEOUT_SECONDS,
                    )
                    workflow = workflow_service.record_document(
                        db, workflow, report_url, submission_id=submission.id
                    )
                    workflow = workflow_service.complete_step(
                        db, workflow, WorkflowStepName.GENERATE_REPORT
                    )
                except Exception as exc:
                    db.rollback()
                    failure = _StageFailure(PipelineStage.ARTIFACT, exc)

        # Agent notification
        if failure is None and not workflow_service.email_sent_for_submission(
            workflow, submission.id, "agent_summary"
        ):
            try:
                data = AgentSummaryData(
                    client_type=client_type.title(),
                    client_name=client.name or client.email,
                    client_email=client.email,
                    summary=summary or "",
                    form_data=format_answers_for_analysis(submission.answers, client_type),
                    report_url=report_url or "",
                )
                sent = await call_with_timeout(
                    lambda: self.notifier.send(self.agent_email, "agent_summary", data),
                    timeout=settings.NOTIFIER_TIMEOUT_SECONDS,
                )
                workflow = workflow_service.record_email(
                    db, workflow, sent.to_dict(), submission_id=submission.id
                )
                workflow = workflow_service.complete_step(
                    db, workflow, WorkflowStepName.NOTIFY_AGENT
                )
            except Exception as exc:
                db.rollback()
                failure = _StageFailure(PipelineStage.NOTIFICATION, exc)

        if failure is None:
            try:
                workflow = workflow_service.mark_completed(db, workflow)
            except Exception as exc:
                db.rollback()
                failure = _StageFailure(PipelineStage.WORKFLOW, exc)

        if failure is None:
            alert_service.resolve_failed_submissions(db, submission.id)
            logger.info("Submission processed, workflow completed", extra=context)
            return PipelineResult(
                submission_id=submission.id,
                outcome=PipelineOutcome.COMPLETED,
                client_id=str(client.id),
                workflow_id=str(workflow.id),
                analysis_id=analysis_id,
                report_url=report_url,
            )

        logger.warning(
            "Submission stopped at %s: %s",
            failure.stage.value,
            _error_text(failure.error),
            extra={**context, "stage": failure.stage.value},
        )
        await self._dead_letter(db, submission, client_type, failure.stage, failure.error)
        return PipelineResult(
            submission_id=submission.id,
            outcome=PipelineOutcome.DEGRADED,
            client_id=str(client.id),
            workflow_id=str(workflow.id),
            analysis_id=analysis_id,
            report_url=report_url,
            failed_stage=failure.stage,
            error=_error_text(failure.error),
        )

    async def _dead_letter(
        self,
        db: Session,
        submission: Submission,
        client_type: str,
        stage: PipelineStage,
        error: BaseException,
    ) -> None:
        try:
            failed = alert_service.record_failed_submission(
                db,
                submission_id=submission.id,
                stage=stage,
                error=error,
                form_id=submission.form_id,
                client_type=client_type,
                payload=submission.to_payload(),
            )
        except Exception:
            db.rollback()
            logger.exception(
                "Could not record dead letter",
                extra=build_log_context(
                    form_id=submission.form_id, submission_id=submission.id, stage=stage.value
                ),
            )
            return
        if self.alert_hook is not None:
            try:
                await self.alert_hook(failed)
            except Exception:
                logger.exception("Alert hook failed for submission %s", submission.id)

    async def process_test_submission(
        self,
        email: str,
        name: str,
        form_type: str = "buyer",
    ) -> PipelineResult:
        """Run a synthetic submission through the full pipeline."""
        submission = build_test_submission(email, name, form_type)
        logger.info("Processing test submission %s", submission.id)
        return await self.process(submission, form_type)

    async def redrive_failed_submissions(self, limit: int = 50) -> list[PipelineResult]:
        """
        Feed open dead letters back through the pipeline.

        Identity failures are permanent and are not retried. The idempotency
        guard keeps redrive from producing a second analysis.
        """
        with self.session_factory() as db:
            rows = alert_service.list_failed_submissions(db, DeadLetterStatus.OPEN, limit=limit)
            pending: dict[str, tuple[dict[str, Any], str]] = {}
            for row in rows:
                if row.stage == PipelineStage.IDENTITY.value or not row.payload:
                    continue
                pending.setdefault(row.submission_id, (dict(row.payload), row.client_type or "buyer"))

        results = []
        for submission_id, (payload, client_type) in pending.items():
            try:
                submission = Submission.model_validate(payload)
            except ValueError as exc:
                logger.error("Dead letter %s has an unusable payload: %s", submission_id, exc)
                continue
            result = await self.process(submission, client_type, resume=True)
            if result.outcome in (PipelineOutcome.DUPLICATE, PipelineOutcome.RESUBMITTED):
                # The client's workflow has moved on to a later submission
                with self.session_factory() as db:
                    alert_service.resolve_failed_submissions(
                        db, submission_id, DeadLetterStatus.SUPERSEDED
                    )
            logger.info("Redrive of %s finished: %s", submission_id, result.outcome.value)
            results.append(result)
        return results


def build_test_submission(email: str, name: str, form_type: str = "buyer") -> Submission:
    """Synthetic submission shaped like a real form response."""
    now = datetime.now(timezone.utc)
    buyer = form_type != "seller"
    return Submission(
        id=f"test_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}",
        form_id=workflow_service.form_id_for(form_type),
        created_at=now,
        answers={
            "q1_email": {"answer": email},
            "q2_name": {"answer": name},
            "q3_phone": {"answer": "(555) 123-4567"},
            "q4_budget": {"answer": "$400,000 - $600,000" if buyer else "$500,000"},
            "q5_timeline": {"answer": "3-6 months"},
            "q6_preferences": {
                "answer": "Modern condo with parking" if buyer else "Quick sale needed"
            },
        },
    )
