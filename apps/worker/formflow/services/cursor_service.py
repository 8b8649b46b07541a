"""Per-form polling watermarks.

A cursor only ever moves forward, and only to the newest created_at of a
batch that was fully processed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy.orm import Session

from formflow.core.config import settings
from formflow.db import store
from formflow.db.store import Collection
from formflow.schemas.intake import Submission

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def default_cursor(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return _as_utc(now) - timedelta(hours=settings.INITIAL_LOOKBACK_HOURS)


def get_cursor(db: Session, form_id: str, *, now: datetime | None = None) -> datetime:
    """Stored watermark for a form, or now minus the initial lookback."""
    row = store.get(db, Collection.POLLING_CURSORS, form_id)
    if row is None:
        return default_cursor(now)
    return _as_utc(row.last_processed_time)


def batch_max(submissions: Iterable[Submission]) -> datetime | None:
    """Newest created_at of a batch, independent of the order it arrived in."""
    return max((s.created_at for s in submissions), default=None)


def advance_cursor(db: Session, form_id: str, candidate: datetime) -> datetime:
    """
    Move a form's watermark to candidate if it is newer.

    Returns the effective watermark. Never moves backwards.
    """
    candidate = _as_utc(candidate)
    row = store.get(db, Collection.POLLING_CURSORS, form_id)
    if row is None:
        store.create(
            db,
            Collection.POLLING_CURSORS,
            {"form_id": form_id, "last_processed_time": candidate},
        )
        logger.info("Cursor for form %s initialised at %s", form_id, candidate.isoformat())
        return candidate

    current = _as_utc(row.last_processed_time)
    if candidate <= current:
        return current
    store.update(db, Collection.POLLING_CURSORS, form_id, {"last_processed_time": candidate})
    logger.debug("Cursor for form %s advanced to %s", form_id, candidate.isoformat())
    return candidate
