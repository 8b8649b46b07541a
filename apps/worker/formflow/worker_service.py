"""HTTP control service for the intake worker."""

from __future__ import annotations

import asyncio
import contextlib
import os
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException

from formflow.core.config import settings
from formflow.core.errors import TemplateDataError
from formflow.core.structured_logging import configure_logging
from formflow.db.session import init_db
from formflow.schemas.intake import ManualSubmissionRequest, OnboardingRequest
from formflow.services import workflow_service
from formflow.services.intake_pipeline import PipelineResult
from formflow.worker import IntakeWorker, build_worker

app = FastAPI(title="formflow worker")
_worker: IntakeWorker | None = None


def get_worker() -> IntakeWorker:
    global _worker
    if _worker is None:
        _worker = build_worker()
    return _worker


def _result_payload(result: PipelineResult) -> dict:
    payload = asdict(result)
    payload["outcome"] = result.outcome.value
    payload["failed_stage"] = result.failed_stage.value if result.failed_stage else None
    return payload


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/polling/status")
def polling_status(worker: IntakeWorker = Depends(get_worker)) -> dict:
    snapshot = worker.poller.state.snapshot()
    snapshot["running"] = worker.poller.is_running
    return snapshot


@app.post("/polling/start")
async def start_polling(worker: IntakeWorker = Depends(get_worker)) -> dict:
    worker.poller.start_polling()
    return {"running": True}


@app.post("/polling/stop")
async def stop_polling(worker: IntakeWorker = Depends(get_worker)) -> dict:
    await worker.poller.stop_polling()
    return {"running": False}


@app.post("/polling/run-once")
async def run_once(worker: IntakeWorker = Depends(get_worker)) -> dict:
    results = await worker.poller.poll_once()
    return {"processed": len(results), "results": [_result_payload(r) for r in results]}


@app.post("/test-submissions")
async def create_test_submission(
    body: ManualSubmissionRequest,
    worker: IntakeWorker = Depends(get_worker),
) -> dict:
    result = await worker.pipeline.process_test_submission(body.email, body.name, body.form_type)
    return _result_payload(result)


@app.post("/workflows/onboarding", status_code=201)
async def start_onboarding(
    body: OnboardingRequest,
    worker: IntakeWorker = Depends(get_worker),
) -> dict:
    with worker.session_factory() as db:
        try:
            result = await workflow_service.start_client_workflow(db, worker.notifier, body)
        except TemplateDataError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {
            "client_id": str(result.client.id),
            "workflow_id": str(result.workflow.id),
            "form_url": result.form_url,
            "email_sent": result.email_sent,
        }


@app.post("/dead-letters/redrive")
async def redrive_dead_letters(
    limit: int = 50,
    worker: IntakeWorker = Depends(get_worker),
) -> dict:
    results = await worker.pipeline.redrive_failed_submissions(limit=limit)
    return {"redriven": len(results), "results": [_result_payload(r) for r in results]}


@app.on_event("startup")
async def _startup() -> None:
    configure_logging(settings.LOG_LEVEL)
    init_db()
    if settings.AUTO_START_POLLING:
        get_worker().poller.start_polling()


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _worker is not None:
        with contextlib.suppress(asyncio.CancelledError):
            await _worker.poller.stop_polling()


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    uvicorn.run("formflow.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()
