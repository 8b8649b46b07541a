"""Tests for the form poller: cursor handling, isolation and concurrency."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from formflow.core.errors import FetchError
from formflow.db import store
from formflow.db.enums import PipelineOutcome
from formflow.db.models import Client, Workflow
from formflow.db.store import Collection
from formflow.poller import FormPoller, PollerState
from formflow.services import client_service, cursor_service


def _recent(minutes: int) -> datetime:
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes)).replace(microsecond=0)


@pytest.fixture
def poller(session_factory, form_source, pipeline, tracked_forms):
    return FormPoller(
        session_factory,
        form_source,
        pipeline,
        tracked_forms=tracked_forms,
        interval_seconds=0.01,
    )


def _stored_cursor(db, form_id):
    db.expire_all()
    row = store.get(db, Collection.POLLING_CURSORS, form_id)
    return None if row is None else cursor_service.get_cursor(db, form_id)


@pytest.mark.asyncio
async def test_cursor_advances_to_newest_of_unordered_batch(
    poller, form_source, make_submission, db, analyzer
):
    older, newer = _recent(10), _recent(5)
    form_source.submissions["buyer-form"] = [
        make_submission("5001", email="one@x.com", created_at=older),
        make_submission("5002", email="two@x.com", created_at=newer),
    ]

    results = await poller.poll_once()

    assert sorted(r.submission_id for r in results) == ["5001", "5002"]
    assert all(r.outcome == PipelineOutcome.COMPLETED for r in results)
    assert _stored_cursor(db, "buyer-form") == newer

    again = await poller.poll_once()

    assert again == []
    assert len(analyzer.calls) == 2
    buyer_since = [since for form_id, since in form_source.calls if form_id == "buyer-form"]
    assert buyer_since[-1] == newer


@pytest.mark.asyncio
async def test_empty_batch_leaves_cursor_unset(poller, db):
    results = await poller.poll_once()

    assert results == []
    assert _stored_cursor(db, "buyer-form") is None
    assert poller.state.cycles == 1


@pytest.mark.asyncio
async def test_fetch_failure_is_isolated_to_its_form(poller, form_source, make_submission, db):
    form_source.errors["buyer-form"] = FetchError("buyer-form", "HTTP 503")
    form_source.submissions["buyer-form"] = [
        make_submission("5001", email="b@x.com", created_at=_recent(10)),
    ]
    form_source.submissions["seller-form"] = [
        make_submission("6001", email="s@x.com", form_id="seller-form", created_at=_recent(8)),
    ]

    results = await poller.poll_once()

    assert [r.submission_id for r in results] == ["6001"]
    assert _stored_cursor(db, "buyer-form") is None
    assert _stored_cursor(db, "seller-form") is not None
    assert "HTTP 503" in poller.state.forms["buyer-form"].last_error
    assert poller.state.forms["seller-form"].last_error is None

    # Next tick re-reads from the unchanged cursor
    del form_source.errors["buyer-form"]
    retry = await poller.poll_once()

    assert [r.submission_id for r in retry] == ["5001"]
    assert poller.state.forms["buyer-form"].last_error is None


@pytest.mark.asyncio
async def test_same_client_in_one_batch_is_processed_in_order(
    poller, form_source, make_submission, db
):
    form_source.submissions["buyer-form"] = [
        make_submission(
            "5001", created_at=_recent(10), extra={"q5_budget": {"answer": "$300,000"}}
        ),
        make_submission(
            "5002", created_at=_recent(5), extra={"q5_budget": {"answer": "$450,000"}}
        ),
    ]

    results = await poller.poll_once()

    outcomes = {r.submission_id: r.outcome for r in results}
    assert outcomes == {
        "5001": PipelineOutcome.COMPLETED,
        "5002": PipelineOutcome.RESUBMITTED,
    }
    db.expire_all()
    assert db.query(Client).count() == 1
    client = client_service.get_client_by_email(db, "a@x.com", "buyer")
    assert client.form_data["q5_budget"]["answer"] == "$450,000"


@pytest.mark.asyncio
async def test_cursor_passes_newest_submission_without_email(
    poller, form_source, make_submission, db
):
    newest = _recent(2)
    form_source.submissions["buyer-form"] = [
        make_submission("5001", email="one@x.com", created_at=_recent(10)),
        make_submission("5002", email=None, created_at=newest),
    ]

    results = await poller.poll_once()

    outcomes = {r.submission_id: r.outcome for r in results}
    assert outcomes["5002"] == PipelineOutcome.SKIPPED_NO_EMAIL
    assert _stored_cursor(db, "buyer-form") == newest
    assert db.query(Client).count() == 1
    assert [w.submission_id for w in db.query(Workflow).all()] == ["5001"]

    again = await poller.poll_once()

    assert again == []
    buyer_since = [since for form_id, since in form_source.calls if form_id == "buyer-form"]
    assert buyer_since[-1] == newest


@pytest.mark.asyncio
async def test_busy_form_is_skipped(poller, form_source, tracked_forms):
    buyer = tracked_forms[0]
    lock = asyncio.Lock()
    poller._form_locks[buyer.form_id] = lock

    async with lock:
        result = await poller.poll_form(buyer)

    assert result is None
    assert form_source.calls == []


@pytest.mark.asyncio
async def test_forms_are_discovered_when_not_configured(
    session_factory, form_source, pipeline, make_submission
):
    form_source.submissions["seller-form"] = [
        make_submission("6001", form_id="seller-form", created_at=_recent(3)),
    ]
    poller = FormPoller(session_factory, form_source, pipeline)

    results = await poller.poll_once()

    assert [f.form_id for f in poller.tracked_forms] == ["buyer-form", "seller-form"]
    assert [r.submission_id for r in results] == ["6001"]


@pytest.mark.asyncio
async def test_outcomes_and_snapshot(poller, form_source, make_submission):
    form_source.submissions["buyer-form"] = [
        make_submission("5001", created_at=_recent(10)),
        make_submission("5002", email=None, created_at=_recent(9)),
    ]

    await poller.poll_once()
    snapshot = poller.state.snapshot()

    assert snapshot["cycles"] == 1
    assert snapshot["outcomes"] == {"completed": 1, "skipped_no_email": 1}
    buyer = next(f for f in snapshot["forms"] if f["form_id"] == "buyer-form")
    assert buyer["last_batch_size"] == 2
    assert buyer["cursor"] is not None


@pytest.mark.asyncio
async def test_start_and_stop_polling(poller):
    poller.start_polling()
    same = poller.start_polling()

    assert poller.is_running
    assert same is poller._task

    for _ in range(100):
        if poller.state.cycles:
            break
        await asyncio.sleep(0.01)
    await poller.stop_polling()

    assert poller.state.cycles >= 1
    assert not poller.is_running
    assert poller.state.running is False


@pytest.mark.asyncio
async def test_shared_state_is_used(session_factory, form_source, pipeline, tracked_forms):
    state = PollerState()
    poller = FormPoller(
        session_factory, form_source, pipeline, state=state, tracked_forms=tracked_forms
    )

    await poller.poll_once()

    assert state.cycles == 1
    assert set(state.forms) == {"buyer-form", "seller-form"}
