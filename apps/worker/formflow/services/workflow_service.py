"""Workflow engine: per-client ordered step state machine.

Status moves in-progress -> form_completed -> completed and never back.
Steps move pending -> completed and never back. JSON columns are rebuilt
and reassigned on every change so SQLAlchemy sees the update.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from formflow.core.async_utils import call_with_timeout
from formflow.core.config import DEFAULT_BUYER_FORM_ID, DEFAULT_SELLER_FORM_ID, settings
from formflow.core.errors import IntakeError, TemplateDataError, WorkflowTransitionError
from formflow.core.structured_logging import build_log_context, mask_email
from formflow.db import store
from formflow.db.enums import (
    WORKFLOW_STEP_ORDER,
    ClientType,
    StepStatus,
    WorkflowStatus,
    WorkflowStepName,
)
from formflow.db.models import Client, Workflow
from formflow.db.store import Collection
from formflow.schemas.email import BuyerFormRequestData, SellerFormRequestData
from formflow.schemas.intake import ClientIdentity, OnboardingRequest, Submission
from formflow.services import client_service
from formflow.services.notification_service import Notifier

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def initial_steps(now: datetime | None = None) -> list[dict[str, Any]]:
    """Fresh step list: the form has been sent, everything else is pending."""
    stamp = (now or _now()).isoformat()
    steps = []
    for name in WORKFLOW_STEP_ORDER:
        done = name == WorkflowStepName.SEND_FORM
        steps.append(
            {
                "name": name.value,
                "status": (StepStatus.COMPLETED if done else StepStatus.PENDING).value,
                "completed_at": stamp if done else None,
            }
        )
    return steps


def step_status(workflow: Workflow, name: WorkflowStepName) -> StepStatus | None:
    for step in workflow.steps or []:
        if step.get("name") == WorkflowStepName(name).value:
            return StepStatus(step["status"])
    return None


def _set_step(
    steps: list[dict[str, Any]],
    name: WorkflowStepName,
    status: StepStatus,
    now: datetime,
) -> list[dict[str, Any]]:
    name = WorkflowStepName(name)
    status = StepStatus(status)
    updated = [dict(step) for step in steps]
    for step in updated:
        if step.get("name") != name.value:
            continue
        current = StepStatus(step.get("status", StepStatus.PENDING.value))
        if current == StepStatus.COMPLETED and status == StepStatus.PENDING:
            raise WorkflowTransitionError(f"Step {name.value} is already completed")
        if current != status:
            step["status"] = status.value
            step["completed_at"] = now.isoformat() if status == StepStatus.COMPLETED else None
        return updated
    raise WorkflowTransitionError(f"Unknown workflow step: {name.value}")


def _check_status(workflow: Workflow, target: WorkflowStatus) -> None:
    current = WorkflowStatus(workflow.status)
    if target.rank < current.rank:
        raise WorkflowTransitionError(
            f"Workflow {workflow.id} cannot move from {current.value} to {target.value}"
        )


def get_workflow(db: Session, workflow_id: uuid.UUID) -> Workflow | None:
    return store.get(db, Collection.WORKFLOWS, workflow_id)


def get_active_workflow(db: Session, client_id: uuid.UUID) -> Workflow | None:
    """
    Most recent workflow for a client.

    A completed workflow is still returned so callers can tell a resubmission
    apart from a client that never had a workflow.
    """
    return db.scalars(
        select(Workflow)
        .where(Workflow.client_id == client_id)
        .order_by(Workflow.created_at.desc(), Workflow.id.desc())
        .limit(1)
    ).first()


def create_workflow(db: Session, client: Client, *, form_id: str | None = None) -> Workflow:
    workflow_id = store.create(
        db,
        Collection.WORKFLOWS,
        {
            "client_id": client.id,
            "client_type": client.client_type,
            "agent_id": client.agent_id,
            "status": WorkflowStatus.IN_PROGRESS.value,
            "steps": initial_steps(),
            "emails_sent": [],
            "documents_generated": [],
            "form_id": form_id,
            "created_at": _now(),
        },
    )
    logger.info(
        "Workflow created",
        extra=build_log_context(client_id=str(client.id), workflow_id=str(workflow_id)),
    )
    return store.get(db, Collection.WORKFLOWS, workflow_id)


def ensure_workflow(db: Session, client: Client, *, form_id: str | None = None) -> Workflow:
    """Return the client's latest workflow, creating one in-progress if none exists."""
    workflow = get_active_workflow(db, client.id)
    if workflow is not None:
        return workflow
    return create_workflow(db, client, form_id=form_id)


def update_step(
    db: Session,
    workflow: Workflow,
    name: WorkflowStepName,
    status: StepStatus,
) -> Workflow:
    """Set one step's status. Raises WorkflowTransitionError on a backward move."""
    steps = _set_step(workflow.steps or [], name, status, _now())
    return store.update(db, Collection.WORKFLOWS, workflow.id, {"steps": steps})


def complete_step(db: Session, workflow: Workflow, name: WorkflowStepName) -> Workflow:
    return update_step(db, workflow, name, StepStatus.COMPLETED)


def mark_form_completed(db: Session, workflow: Workflow, submission: Submission) -> Workflow:
    """Record the submission on the workflow and move it to form_completed."""
    _check_status(workflow, WorkflowStatus.FORM_COMPLETED)
    now = _now()
    steps = _set_step(workflow.steps or [], WorkflowStepName.SEND_FORM, StepStatus.COMPLETED, now)
    steps = _set_step(steps, WorkflowStepName.AWAIT_FORM_COMPLETION, StepStatus.COMPLETED, now)
    return store.update(
        db,
        Collection.WORKFLOWS,
        workflow.id,
        {
            "status": WorkflowStatus.FORM_COMPLETED.value,
            "steps": steps,
            "form_id": submission.form_id,
            "submission_id": submission.id,
            "form_response": submission.to_payload(),
        },
    )


def record_document(
    db: Session,
    workflow: Workflow,
    url: str,
    *,
    document_type: str = "client_report",
    submission_id: str | None = None,
) -> Workflow:
    documents = list(workflow.documents_generated or [])
    documents.append(
        {
            "type": document_type,
            "url": url,
            "submission_id": submission_id,
            "created_at": _now().isoformat(),
        }
    )
    return store.update(db, Collection.WORKFLOWS, workflow.id, {"documents_generated": documents})


def record_email(
    db: Session,
    workflow: Workflow,
    email: dict[str, Any],
    *,
    submission_id: str | None = None,
) -> Workflow:
    emails = list(workflow.emails_sent or [])
    emails.append({**email, "submission_id": submission_id})
    return store.update(db, Collection.WORKFLOWS, workflow.id, {"emails_sent": emails})


def document_for_submission(
    workflow: Workflow, submission_id: str, document_type: str = "client_report"
) -> dict[str, Any] | None:
    """Latest document of this type generated for this submission, if any."""
    for document in reversed(workflow.documents_generated or []):
        if document.get("type") == document_type and document.get("submission_id") == submission_id:
            return document
    return None


def email_sent_for_submission(workflow: Workflow, submission_id: str, template: str) -> bool:
    return any(
        email.get("template") == template and email.get("submission_id") == submission_id
        for email in workflow.emails_sent or []
    )


def mark_completed(db: Session, workflow: Workflow) -> Workflow:
    """Complete every remaining step and close the workflow."""
    _check_status(workflow, WorkflowStatus.COMPLETED)
    if workflow.status == WorkflowStatus.COMPLETED.value:
        return workflow
    now = _now()
    steps = workflow.steps or initial_steps(now)
    for name in WORKFLOW_STEP_ORDER:
        steps = _set_step(steps, name, StepStatus.COMPLETED, now)
    return store.update(
        db,
        Collection.WORKFLOWS,
        workflow.id,
        {"status": WorkflowStatus.COMPLETED.value, "steps": steps, "completed_at": now},
    )


@dataclass
class OnboardingResult:
    client: Client
    workflow: Workflow
    form_url: str
    email_sent: bool


def form_id_for(client_type: str) -> str:
    """Form a new client of this type is asked to complete."""
    fallback = DEFAULT_SELLER_FORM_ID if client_type == ClientType.SELLER.value else DEFAULT_BUYER_FORM_ID
    return settings.configured_form_ids.get(client_type, fallback)


async def start_client_workflow(
    db: Session,
    notifier: Notifier,
    request: OnboardingRequest,
    *,
    form_id: str | None = None,
) -> OnboardingResult:
    """
    Onboard a client: persist them as survey_sent, open a workflow and email
    the intake form link.

    A failed email is logged and recorded as not sent; onboarding still succeeds.
    """
    identity = ClientIdentity(email=request.email, name=request.name, phone=request.phone)
    client = client_service.upsert_onboarding_client(
        db, identity, request.client_type, agent_id=request.agent_id
    )
    form_id = form_id or form_id_for(request.client_type)
    workflow = create_workflow(db, client, form_id=form_id)
    form_url = settings.form_url(form_id)
    context = build_log_context(client_id=str(client.id), workflow_id=str(workflow.id))

    if request.client_type == ClientType.SELLER.value:
        template_name = "seller_form_request"
        data = SellerFormRequestData(
            seller_name=request.name, form_url=form_url, agent_name=settings.DEFAULT_AGENT_NAME
        )
    else:
        template_name = "buyer_form_request"
        data = BuyerFormRequestData(
            buyer_name=request.name, form_url=form_url, agent_name=settings.DEFAULT_AGENT_NAME
        )

    email_sent = False
    try:
        sent = await call_with_timeout(
            lambda: notifier.send(client.email, template_name, data),
            timeout=settings.NOTIFIER_TIMEOUT_SECONDS,
        )
    except TemplateDataError:
        raise
    except (IntakeError, TimeoutError) as exc:
        logger.error(
            "Form request email to %s failed: %s", mask_email(client.email), exc, extra=context
        )
    else:
        workflow = record_email(db, workflow, sent.to_dict())
        email_sent = True
        logger.info("Form request sent to %s", mask_email(client.email), extra=context)

    return OnboardingResult(client=client, workflow=workflow, form_url=form_url, email_sent=email_sent)
