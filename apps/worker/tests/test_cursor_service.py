"""Tests for per-form polling watermarks."""

from datetime import datetime, timedelta, timezone

from formflow.core.config import settings
from formflow.services import cursor_service

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_missing_cursor_defaults_to_lookback(db):
    now = datetime(2024, 6, 2, 8, 0, tzinfo=timezone.utc)

    cursor = cursor_service.get_cursor(db, "111", now=now)

    assert cursor == now - timedelta(hours=settings.INITIAL_LOOKBACK_HOURS)


def test_advance_creates_then_moves_forward(db):
    assert cursor_service.advance_cursor(db, "111", T0) == T0
    later = T0 + timedelta(minutes=5)

    assert cursor_service.advance_cursor(db, "111", later) == later
    assert cursor_service.get_cursor(db, "111") == later


def test_advance_never_moves_backwards(db):
    cursor_service.advance_cursor(db, "111", T0)

    effective = cursor_service.advance_cursor(db, "111", T0 - timedelta(hours=1))

    assert effective == T0
    assert cursor_service.get_cursor(db, "111") == T0


def test_cursors_are_per_form(db):
    cursor_service.advance_cursor(db, "111", T0)

    assert cursor_service.get_cursor(db, "222", now=T0) == cursor_service.default_cursor(T0)


def test_batch_max_ignores_order(make_submission):
    batch = [
        make_submission("3", created_at="2024-06-01 12:30:00"),
        make_submission("1", created_at="2024-06-01 12:45:00"),
        make_submission("2", created_at="2024-06-01 12:10:00"),
    ]

    assert cursor_service.batch_max(batch) == datetime(2024, 6, 1, 12, 45, tzinfo=timezone.utc)
    assert cursor_service.batch_max([]) is None
