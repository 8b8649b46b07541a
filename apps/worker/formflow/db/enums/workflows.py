"""Workflow-related enums."""

from enum import Enum


class WorkflowStatus(str, Enum):
    """Workflow states, in forward order."""

    IN_PROGRESS = "in-progress"
    FORM_COMPLETED = "form_completed"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    WorkflowStatus.IN_PROGRESS: 0,
    WorkflowStatus.FORM_COMPLETED: 1,
    WorkflowStatus.COMPLETED: 2,
}


class StepStatus(str, Enum):
    """Status of a single workflow step (pending -> completed only)."""

    PENDING = "pending"
    COMPLETED = "completed"


class WorkflowStepName(str, Enum):
    """Steps of the onboarding-to-completion journey."""

    SEND_FORM = "send_form"
    AWAIT_FORM_COMPLETION = "await_form_completion"
    ANALYZE_SUBMISSION = "analyze_submission"
    GENERATE_REPORT = "generate_report"
    NOTIFY_AGENT = "notify_agent"


WORKFLOW_STEP_ORDER: tuple[WorkflowStepName, ...] = (
    WorkflowStepName.SEND_FORM,
    WorkflowStepName.AWAIT_FORM_COMPLETION,
    WorkflowStepName.ANALYZE_SUBMISSION,
    WorkflowStepName.GENERATE_REPORT,
    WorkflowStepName.NOTIFY_AGENT,
)
