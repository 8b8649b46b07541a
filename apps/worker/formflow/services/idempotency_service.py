"""At-most-once processing guard keyed on submission id."""

from __future__ import annotations

from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from formflow.core.errors import DuplicateSubmission
from formflow.db import store
from formflow.db.models import QualificationAnalysis
from formflow.db.store import Collection


def get_analysis_for_submission(db: Session, submission_id: str) -> QualificationAnalysis | None:
    rows = store.query_by_field(
        db, Collection.QUALIFICATION_ANALYSES, "submission_id", submission_id, limit=1
    )
    return rows[0] if rows else None


def is_already_processed(db: Session, submission_id: str) -> bool:
    """True when an analysis already exists for this submission id."""
    return get_analysis_for_submission(db, submission_id) is not None


def record_analysis(db: Session, data: dict[str, Any]) -> str:
    """
    Persist an analysis and return its id.

    The unique submission_id column is the guard of last resort: a concurrent
    writer that got there first turns into DuplicateSubmission.
    """
    try:
        return str(store.create(db, Collection.QUALIFICATION_ANALYSES, data))
    except IntegrityError as exc:
        raise DuplicateSubmission(data["submission_id"]) from exc
