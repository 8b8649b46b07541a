"""SQLAlchemy ORM models."""

from formflow.db.models.clients import Client
from formflow.db.models.intake import FailedSubmission, PollingCursor, QualificationAnalysis
from formflow.db.models.workflows import Workflow

__all__ = [
    "Client",
    "FailedSubmission",
    "PollingCursor",
    "QualificationAnalysis",
    "Workflow",
]
