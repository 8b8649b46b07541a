"""Tests for the JotForm client (submission polling and form discovery)."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from formflow.core.config import DEFAULT_BUYER_FORM_ID, DEFAULT_SELLER_FORM_ID, settings
from formflow.core.errors import FetchError
from formflow.services.form_service_client import FormServiceClient

SINCE = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _client(handler) -> FormServiceClient:
    return FormServiceClient(
        api_key="test-key",
        base_url="https://api.jotform.test",
        transport=httpx.MockTransport(handler),
    )


def _ok(content) -> httpx.Response:
    return httpx.Response(200, json={"responseCode": 200, "message": "success", "content": content})


@pytest.mark.asyncio
async def test_list_submissions_requests_ascending_order_after_cursor():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return _ok([])

    result = await _client(handler).list_submissions("111", SINCE, limit=25)

    assert result == []
    assert seen["path"] == "/form/111/submissions"
    assert seen["params"]["apiKey"] == "test-key"
    assert seen["params"]["limit"] == "25"
    assert seen["params"]["orderby"] == "created_at"
    assert seen["params"]["direction"] == "ASC"
    assert json.loads(seen["params"]["filter"]) == {"created_at:gt": "2024-06-01 12:00:00"}


@pytest.mark.asyncio
async def test_list_submissions_filters_and_sorts_locally():
    rows = [
        {"id": "3", "created_at": "2024-06-01 12:30:00", "answers": {}},
        {"id": "1", "created_at": "2024-06-01 12:00:00", "answers": {}},
        {"id": "2", "created_at": "2024-06-01 12:10:00", "answers": []},
        {"id": "bad", "answers": {}},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return _ok(rows)

    result = await _client(handler).list_submissions("111", SINCE)

    assert [s.id for s in result] == ["2", "3"]
    assert all(s.form_id == "111" for s in result)
    assert result[0].answers == {}
    assert result[0].created_at == datetime(2024, 6, 1, 12, 10, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_list_submissions_raises_fetch_error_on_http_failure():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(503, text="unavailable")

    with pytest.raises(FetchError) as exc_info:
        await _client(handler).list_submissions("111", SINCE)

    assert exc_info.value.form_id == "111"
    assert "HTTP 503" in str(exc_info.value)
    assert calls["count"] == settings.RETRY_MAX_ATTEMPTS


@pytest.mark.asyncio
async def test_list_submissions_raises_fetch_error_on_api_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"responseCode": 401, "message": "Invalid API key"})

    with pytest.raises(FetchError, match="Invalid API key"):
        await _client(handler).list_submissions("111", SINCE)


@pytest.mark.asyncio
async def test_list_submissions_raises_fetch_error_on_connection_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(FetchError, match="connection failed"):
        await _client(handler).list_submissions("111", SINCE)


@pytest.mark.asyncio
async def test_list_submissions_raises_fetch_error_on_invalid_json():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(FetchError, match="invalid JSON"):
        await _client(handler).list_submissions("111", SINCE)


@pytest.mark.asyncio
async def test_discover_uses_configured_ids(monkeypatch):
    monkeypatch.setattr(settings, "BUYER_FORM_ID", "900")
    monkeypatch.setattr(settings, "SELLER_FORM_ID", "901")

    def handler(request: httpx.Request) -> httpx.Response:
        pytest.fail("configured forms must not trigger discovery")

    forms = await _client(handler).discover_tracked_forms()

    assert [(f.client_type, f.form_id) for f in forms] == [("buyer", "900"), ("seller", "901")]


@pytest.mark.asyncio
async def test_discover_matches_titles():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/user/forms"
        return _ok(
            [
                {"id": "10", "title": "Newsletter Signup"},
                {"id": "11", "title": "Home Seller Questionnaire"},
                {"id": "12", "title": "Buyer Intake Form"},
            ]
        )

    forms = await _client(handler).discover_tracked_forms()

    assert [(f.client_type, f.form_id) for f in forms] == [("buyer", "12"), ("seller", "11")]


@pytest.mark.asyncio
async def test_discover_falls_back_to_default_ids_on_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    forms = await _client(handler).discover_tracked_forms()

    assert [(f.client_type, f.form_id) for f in forms] == [
        ("buyer", DEFAULT_BUYER_FORM_ID),
        ("seller", DEFAULT_SELLER_FORM_ID),
    ]


@pytest.mark.asyncio
async def test_discover_without_api_key_skips_listing():
    def handler(request: httpx.Request) -> httpx.Response:
        pytest.fail("no API key: no listing call")

    client = FormServiceClient(api_key="", transport=httpx.MockTransport(handler))
    forms = await client.discover_tracked_forms()

    assert {f.form_id for f in forms} == {DEFAULT_BUYER_FORM_ID, DEFAULT_SELLER_FORM_ID}
