"""Tests for the Resend notifier."""

import json

import httpx
import pytest

from formflow.core.errors import NotificationFailure, TemplateDataError
from formflow.schemas.email import BuyerFormRequestData
from formflow.services.notification_service import RESEND_SEND_URL, ResendNotifier

DATA = BuyerFormRequestData(
    buyer_name="Jane", form_url="https://form.jotform.com/1", agent_name="Al"
)


@pytest.mark.asyncio
async def test_dry_run_without_api_key(caplog):
    caplog.set_level("INFO", logger="formflow.services.notification_service")

    def handler(request: httpx.Request) -> httpx.Response:
        pytest.fail("dry run must not call the provider")

    notifier = ResendNotifier(api_key="", transport=httpx.MockTransport(handler))
    sent = await notifier.send("jane@example.com", "buyer_form_request", DATA)

    assert notifier.dry_run
    assert sent.dry_run is True
    assert sent.message_id is None
    assert sent.subject == "Complete Your Buyer Information Form"
    assert any("Dry-run email" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_send_posts_rendered_email():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "msg_123"})

    notifier = ResendNotifier(
        api_key="re_test", from_email="agent@realty.example", transport=httpx.MockTransport(handler)
    )
    sent = await notifier.send("jane@example.com", "buyer_form_request", DATA)

    assert seen["url"] == RESEND_SEND_URL
    assert seen["auth"] == "Bearer re_test"
    assert seen["body"]["from"] == "agent@realty.example"
    assert seen["body"]["to"] == ["jane@example.com"]
    assert "https://form.jotform.com/1" in seen["body"]["html"]
    assert sent.message_id == "msg_123"
    assert sent.to_dict()["template"] == "buyer_form_request"


@pytest.mark.asyncio
async def test_send_retries_transient_errors():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"id": "msg_2"})

    notifier = ResendNotifier(api_key="re_test", transport=httpx.MockTransport(handler))
    sent = await notifier.send("jane@example.com", "buyer_form_request", DATA)

    assert calls["count"] == 2
    assert sent.message_id == "msg_2"


@pytest.mark.asyncio
async def test_provider_rejection_raises_notification_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "Invalid `to` field"})

    notifier = ResendNotifier(api_key="re_test", transport=httpx.MockTransport(handler))

    with pytest.raises(NotificationFailure, match="Invalid `to` field"):
        await notifier.send("jane@example.com", "buyer_form_request", DATA)


@pytest.mark.asyncio
async def test_connection_error_raises_notification_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    notifier = ResendNotifier(api_key="re_test", transport=httpx.MockTransport(handler))

    with pytest.raises(NotificationFailure):
        await notifier.send("jane@example.com", "buyer_form_request", DATA)


@pytest.mark.asyncio
async def test_bad_template_data_fails_before_sending():
    def handler(request: httpx.Request) -> httpx.Response:
        pytest.fail("invalid data must not be sent")

    notifier = ResendNotifier(api_key="re_test", transport=httpx.MockTransport(handler))

    with pytest.raises(TemplateDataError):
        await notifier.send("jane@example.com", "buyer_form_request", {"buyer_name": "Jane"})
