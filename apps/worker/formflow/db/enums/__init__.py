"""Enum definitions for application constants."""

from formflow.db.enums.clients import ClientStatus, ClientType
from formflow.db.enums.intake import (
    DeadLetterStatus,
    PipelineOutcome,
    PipelineStage,
)
from formflow.db.enums.workflows import (
    WORKFLOW_STEP_ORDER,
    StepStatus,
    WorkflowStatus,
    WorkflowStepName,
)

__all__ = [
    "ClientStatus",
    "ClientType",
    "DeadLetterStatus",
    "PipelineOutcome",
    "PipelineStage",
    "StepStatus",
    "WORKFLOW_STEP_ORDER",
    "WorkflowStatus",
    "WorkflowStepName",
]
