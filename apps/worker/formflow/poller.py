"""
Fixed-interval poller for tracked forms.

Each cycle fetches every tracked form concurrently, runs new submissions
through the intake pipeline and then advances the form's cursor to the
newest submission of the batch. A form whose fetch fails keeps its cursor
and is retried on the next cycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy.orm import sessionmaker

from formflow.core.async_utils import call_with_timeout
from formflow.core.config import settings
from formflow.core.structured_logging import build_log_context
from formflow.schemas.intake import Submission, TrackedForm
from formflow.services import cursor_service
from formflow.services.intake_pipeline import IntakePipeline, PipelineResult

logger = logging.getLogger(__name__)


class FormSource(Protocol):
    async def list_submissions(
        self, form_id: str, since: datetime, *, limit: int | None = None
    ) -> list[Submission]: ...

    async def discover_tracked_forms(self) -> list[TrackedForm]: ...


@dataclass
class FormPollStatus:
    form_id: str
    client_type: str
    last_polled_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    last_batch_size: int = 0
    cursor: datetime | None = None


@dataclass
class PollerState:
    """Observable poller state. Pass one in to share it with a control surface."""

    running: bool = False
    cycles: int = 0
    last_cycle_started_at: datetime | None = None
    last_cycle_finished_at: datetime | None = None
    forms: dict[str, FormPollStatus] = field(default_factory=dict)
    outcomes: dict[str, int] = field(default_factory=dict)

    def record_outcome(self, result: PipelineResult) -> None:
        key = result.outcome.value
        self.outcomes[key] = self.outcomes.get(key, 0) + 1

    def snapshot(self) -> dict[str, Any]:
        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "running": self.running,
            "cycles": self.cycles,
            "last_cycle_started_at": _iso(self.last_cycle_started_at),
            "last_cycle_finished_at": _iso(self.last_cycle_finished_at),
            "outcomes": dict(self.outcomes),
            "forms": [
                {
                    "form_id": status.form_id,
                    "client_type": status.client_type,
                    "last_polled_at": _iso(status.last_polled_at),
                    "last_success_at": _iso(status.last_success_at),
                    "last_error": status.last_error,
                    "last_batch_size": status.last_batch_size,
                    "cursor": _iso(status.cursor),
                }
                for status in self.forms.values()
            ],
        }


class FormPoller:
    def __init__(
        self,
        session_factory: sessionmaker,
        form_source: FormSource,
        pipeline: IntakePipeline,
        *,
        state: PollerState | None = None,
        tracked_forms: list[TrackedForm] | None = None,
        interval_seconds: float | None = None,
        fetch_limit: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.form_source = form_source
        self.pipeline = pipeline
        self.state = state or PollerState()
        self.tracked_forms = tracked_forms
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.POLL_INTERVAL_SECONDS
        )
        self.fetch_limit = fetch_limit or settings.POLL_FETCH_LIMIT
        self._form_locks: dict[str, asyncio.Lock] = {}
        self._form_slots = asyncio.Semaphore(max(1, settings.MAX_CONCURRENT_FORMS))
        self._submission_slots = asyncio.Semaphore(max(1, settings.MAX_CONCURRENT_SUBMISSIONS))
        self._task: asyncio.Task | None = None
        self._wake = asyncio.Event()

    async def resolve_forms(self) -> list[TrackedForm]:
        if self.tracked_forms is None:
            self.tracked_forms = await self.form_source.discover_tracked_forms()
        return self.tracked_forms

    def _status(self, form: TrackedForm) -> FormPollStatus:
        return self.state.forms.setdefault(
            form.form_id, FormPollStatus(form_id=form.form_id, client_type=form.client_type)
        )

    async def _process(self, submission: Submission, client_type: str) -> PipelineResult:
        async with self._submission_slots:
            return await self.pipeline.process(submission, client_type)

    async def poll_form(self, form: TrackedForm) -> list[PipelineResult] | None:
        """
        Poll one form and process its new submissions.

        Returns None when the form was skipped (a cycle for it is still
        running) or its fetch failed.
        """
        lock = self._form_locks.setdefault(form.form_id, asyncio.Lock())
        if lock.locked():
            logger.info("Form %s still being polled, skipping this tick", form.form_id)
            return None

        async with lock:
            status = self._status(form)
            status.last_polled_at = datetime.now(timezone.utc)
            context = build_log_context(form_id=form.form_id)

            with self.session_factory() as db:
                since = cursor_service.get_cursor(db, form.form_id)
            status.cursor = since

            try:
                submissions = await call_with_timeout(
                    lambda: self.form_source.list_submissions(
                        form.form_id, since, limit=self.fetch_limit
                    ),
                    timeout=settings.FETCH_TIMEOUT_SECONDS,
                )
            except Exception as exc:
                status.last_error = f"{type(exc).__name__}: {exc}"
                logger.error("Fetch failed for form %s: %s", form.form_id, exc, extra=context)
                return None

            status.last_error = None
            status.last_batch_size = len(submissions)
            if not submissions:
                status.last_success_at = datetime.now(timezone.utc)
                return []

            logger.info(
                "Found %d new %s submissions", len(submissions), form.client_type, extra=context
            )
            # Oldest first so a client's submissions queue on its lock in time order
            submissions = sorted(submissions, key=lambda s: (s.created_at, s.id))
            outcomes = await asyncio.gather(
                *(self._process(s, form.client_type) for s in submissions),
                return_exceptions=True,
            )
            results: list[PipelineResult] = []
            for submission, outcome in zip(submissions, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Submission %s raised out of the pipeline: %r",
                        submission.id,
                        outcome,
                        extra=context,
                    )
                    continue
                self.state.record_outcome(outcome)
                results.append(outcome)

            newest = cursor_service.batch_max(submissions)
            if newest is not None:
                with self.session_factory() as db:
                    status.cursor = cursor_service.advance_cursor(db, form.form_id, newest)
            status.last_success_at = datetime.now(timezone.utc)
            return results

    async def _poll_form_bounded(self, form: TrackedForm) -> list[PipelineResult] | None:
        async with self._form_slots:
            return await self.poll_form(form)

    async def poll_cycle(self) -> list[PipelineResult]:
        """Poll every tracked form once. Failures stay inside their form."""
        self.state.last_cycle_started_at = datetime.now(timezone.utc)
        forms = await self.resolve_forms()
        for form in forms:
            self._status(form)

        outcomes = await asyncio.gather(
            *(self._poll_form_bounded(form) for form in forms),
            return_exceptions=True,
        )
        results: list[PipelineResult] = []
        for form, outcome in zip(forms, outcomes):
            if isinstance(outcome, BaseException):
                self._status(form).last_error = repr(outcome)
                logger.error("Polling form %s failed: %r", form.form_id, outcome)
            elif outcome:
                results.extend(outcome)

        self.state.cycles += 1
        self.state.last_cycle_finished_at = datetime.now(timezone.utc)
        return results

    async def poll_once(self) -> list[PipelineResult]:
        return await self.poll_cycle()

    async def run(self) -> None:
        """Poll on a fixed interval while state.running is set (see start_polling)."""
        logger.info("Polling started (interval: %ss)", self.interval_seconds)
        try:
            while self.state.running:
                try:
                    await self.poll_cycle()
                except Exception:
                    logger.exception("Error in polling cycle")
                self._wake.clear()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
        finally:
            self.state.running = False
            logger.info("Polling stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_polling(self) -> asyncio.Task:
        """Start the polling loop on the running event loop. Idempotent."""
        if self.is_running:
            logger.info("Polling already running")
            return self._task
        self.state.running = True
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop_polling(self) -> None:
        """Stop after the current cycle; cancel if it does not finish in time."""
        self.state.running = False
        self._wake.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.interval_seconds or 1)
        except asyncio.TimeoutError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
