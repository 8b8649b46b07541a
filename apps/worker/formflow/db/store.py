"""Document-store style persistence adapter over the ORM models.

Exposes the small contract the intake core relies on: create, update-by-id,
query-by-field and get-by-id, addressed by collection name. All writes are
single-entity; no cross-entity transaction is required.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session

from formflow.db.base import Base
from formflow.db.models import (
    Client,
    FailedSubmission,
    PollingCursor,
    QualificationAnalysis,
    Workflow,
)


class Collection(str, Enum):
    CLIENTS = "clients"
    WORKFLOWS = "workflows"
    QUALIFICATION_ANALYSES = "qualification_analyses"
    POLLING_CURSORS = "polling_cursors"
    FAILED_SUBMISSIONS = "failed_submissions"


_MODELS: dict[Collection, type[Base]] = {
    Collection.CLIENTS: Client,
    Collection.WORKFLOWS: Workflow,
    Collection.QUALIFICATION_ANALYSES: QualificationAnalysis,
    Collection.POLLING_CURSORS: PollingCursor,
    Collection.FAILED_SUBMISSIONS: FailedSubmission,
}


def model_for(collection: Collection) -> type[Base]:
    return _MODELS[Collection(collection)]


def _check_fields(model: type[Base], fields: dict[str, Any] | list[str]) -> None:
    columns = model.__table__.columns.keys()
    unknown = [name for name in fields if name not in columns]
    if unknown:
        raise ValueError(f"Unknown fields for {model.__tablename__}: {unknown}")


def create(db: Session, collection: Collection, doc: dict[str, Any]) -> Any:
    """
    Insert a document and return its primary key.

    Unique-constraint violations surface as sqlalchemy IntegrityError after
    the session is rolled back; callers decide what a conflict means.
    """
    model = model_for(collection)
    _check_fields(model, doc)
    row = model(**doc)
    db.add(row)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    return inspect(row).identity[0]


def get(db: Session, collection: Collection, doc_id: Any) -> Any | None:
    return db.get(model_for(collection), doc_id)


def update(db: Session, collection: Collection, doc_id: Any, patch: dict[str, Any]) -> Any:
    """Apply a partial update to one document and return the refreshed row."""
    model = model_for(collection)
    _check_fields(model, patch)
    row = db.get(model, doc_id)
    if row is None:
        raise LookupError(f"{model.__tablename__} {doc_id} not found")
    for key, value in patch.items():
        setattr(row, key, value)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    return row


def query_by_field(
    db: Session,
    collection: Collection,
    field: str,
    value: Any,
    *,
    limit: int | None = None,
) -> list[Any]:
    """Return documents whose field equals value (indexed columns only in hot paths)."""
    model = model_for(collection)
    _check_fields(model, [field])
    stmt = select(model).where(getattr(model, field) == value)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.scalars(stmt).all())
