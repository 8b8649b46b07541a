"""Intake pipeline enums."""

from enum import Enum


class PipelineStage(str, Enum):
    """Stages of per-submission processing (used for logs and dead letters)."""

    IDENTITY = "identity"
    ANALYSIS = "analysis"
    PERSIST_CLIENT = "persist_client"
    PERSIST_ANALYSIS = "persist_analysis"
    ARTIFACT = "artifact"
    NOTIFICATION = "notification"
    WORKFLOW = "workflow"
    UNEXPECTED = "unexpected"


class PipelineOutcome(str, Enum):
    """Final outcome of processing one submission."""

    COMPLETED = "completed"  # Workflow reached its terminal state
    DEGRADED = "degraded"  # Client updated, a downstream stage stopped progress
    DUPLICATE = "duplicate"  # Idempotency guard hit, no-op
    SKIPPED_NO_EMAIL = "skipped_no_email"
    RESUBMITTED = "resubmitted"  # Workflow already completed, client updated only
    FAILED = "failed"  # Unexpected error before the client could be persisted


class DeadLetterStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    SUPERSEDED = "superseded"  # A later submission from the same client moved on
