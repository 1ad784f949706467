import asyncio
import json
import logging

import httpx
import pytest

from keeper_watch.alerting import JobAlert, WebhookAlertDispatcher
from keeper_watch.errors import AlertDeliveryError
from keeper_watch.state import SYSTEM_ADDRESS

JOB_A = "0x" + "a" * 40
WEBHOOK = "https://discord.example/api/webhooks/1/token"


def _recording_transport(captured, status_code=204, body=""):
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(status_code, text=body)

    return httpx.MockTransport(handler)


def test_job_alert_content_mentions_job_block_and_reason():
    alert = JobAlert(JOB_A, 1000, 19_000_000, "No ilks ready")

    assert alert.content() == (
        f"🚨 Alert! Job {JOB_A} hasn't been worked for 1000 blocks "
        "(current block: 19000000). Reason: No ilks ready"
    )
    assert alert.is_system is False


def test_system_notice_content():
    alert = JobAlert(SYSTEM_ADDRESS, 0, 12, "Keeper watch started, tracking 3 jobs")

    assert alert.is_system is True
    assert alert.content() == "ℹ️ Keeper watch notice (block 12): Keeper watch started, tracking 3 jobs"


def test_webhook_receives_content_payload():
    captured = []
    dispatcher = WebhookAlertDispatcher(WEBHOOK, transport=_recording_transport(captured))

    asyncio.run(dispatcher.send(JOB_A, 1000, 100, "stuck"))

    (request,) = captured
    assert request.method == "POST"
    assert str(request.url) == WEBHOOK
    assert json.loads(request.content) == {"content": JobAlert(JOB_A, 1000, 100, "stuck").content()}


def test_error_status_raises_delivery_error():
    dispatcher = WebhookAlertDispatcher(WEBHOOK, transport=_recording_transport([], 500, "server exploded"))

    with pytest.raises(AlertDeliveryError) as excinfo:
        asyncio.run(dispatcher.send(JOB_A, 1000, 100, "stuck"))

    assert excinfo.value.status_code == 500
    assert "Status: 500" in str(excinfo.value)
    assert "server exploded" in str(excinfo.value)


def test_transport_error_raises_delivery_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    dispatcher = WebhookAlertDispatcher(WEBHOOK, transport=httpx.MockTransport(handler))

    with pytest.raises(AlertDeliveryError) as excinfo:
        asyncio.run(dispatcher.send(JOB_A, 1000, 100, "stuck"))

    assert excinfo.value.status_code is None


def test_local_mode_logs_instead_of_posting(caplog):
    captured = []
    dispatcher = WebhookAlertDispatcher("local", transport=_recording_transport(captured))

    with caplog.at_level(logging.WARNING, logger="keeper_watch.alerting"):
        asyncio.run(dispatcher.send(JOB_A, 5, 100, None))

    assert dispatcher.local is True
    assert captured == []
    assert "[Alert - LOCAL MODE]" in caplog.text
    assert JOB_A in caplog.text


def test_alerts_are_appended_to_the_alert_log(tmp_path):
    path = tmp_path / "alerts" / "history.jsonl"
    dispatcher = WebhookAlertDispatcher("LOCAL", alert_log_path=path)

    asyncio.run(dispatcher.send(JOB_A, 1000, 100, "stuck"))
    asyncio.run(dispatcher.notify_system("Keeper watch stopping", 101))

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [entry["address"] for entry in lines] == [JOB_A, SYSTEM_ADDRESS]
    assert lines[0]["unworked_blocks"] == 1000
    assert lines[1]["reason"] == "Keeper watch stopping"
    assert "timestamp" in lines[0]


def test_failed_delivery_is_not_logged_to_the_alert_log(tmp_path):
    path = tmp_path / "history.jsonl"
    dispatcher = WebhookAlertDispatcher(
        WEBHOOK,
        alert_log_path=path,
        transport=_recording_transport([], 429, "rate limited"),
    )

    with pytest.raises(AlertDeliveryError):
        asyncio.run(dispatcher.send(JOB_A, 1000, 100, "stuck"))

    assert not path.exists()
