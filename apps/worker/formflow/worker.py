"""
Background intake worker.

Usage:
    python -m formflow.worker

Polls the tracked forms on a fixed interval and processes new submissions.
For production, run this as a separate process or use formflow.worker_service.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from formflow.core.config import settings
from formflow.core.structured_logging import configure_logging
from formflow.db.session import SessionLocal, init_db
from formflow.poller import FormPoller, PollerState
from formflow.services.alert_service import AlertHook
from formflow.services.form_service_client import FormServiceClient
from formflow.services.intake_pipeline import IntakePipeline
from formflow.services.notification_service import Notifier, ResendNotifier
from formflow.services.qualification_service import build_analyzer
from formflow.services.report_service import build_report_generator

logger = logging.getLogger(__name__)


@dataclass
class IntakeWorker:
    """Everything the control surfaces need, wired from settings."""

    session_factory: sessionmaker
    form_client: FormServiceClient
    notifier: Notifier
    pipeline: IntakePipeline
    poller: FormPoller


def build_worker(
    session_factory: sessionmaker | None = None,
    *,
    state: PollerState | None = None,
) -> IntakeWorker:
    session_factory = session_factory or SessionLocal
    form_client = FormServiceClient()
    notifier = ResendNotifier()
    pipeline = IntakePipeline(
        session_factory,
        build_analyzer(),
        build_report_generator(),
        notifier,
        alert_hook=AlertHook(),
    )
    poller = FormPoller(session_factory, form_client, pipeline, state=state)
    return IntakeWorker(
        session_factory=session_factory,
        form_client=form_client,
        notifier=notifier,
        pipeline=pipeline,
        poller=poller,
    )


async def worker_loop() -> None:
    """Main worker loop - polls tracked forms until cancelled."""
    worker = build_worker()
    logger.info(
        "Worker starting (poll interval: %ss, fetch limit: %s)",
        settings.POLL_INTERVAL_SECONDS,
        settings.POLL_FETCH_LIMIT,
    )
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set - emails will be logged but not sent")
    if not settings.FORM_SERVICE_API_KEY:
        logger.warning("FORM_SERVICE_API_KEY not set - form fetches will fail")

    task = worker.poller.start_polling()
    try:
        await task
    finally:
        await worker.poller.stop_polling()


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    init_db()
    asyncio.run(worker_loop())


if __name__ == "__main__":
    main()
