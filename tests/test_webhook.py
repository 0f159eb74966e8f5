"""Tests for integrity alert webhooks"""
import hashlib
import hmac
import json
import threading

import pytest

from kafkachain.errors import CorruptRecordError, PublishError, TamperDetected
from kafkachain.utils import webhook


class _Response:
    status_code = 204


@pytest.fixture
def posted(monkeypatch):
    """Capture webhook posts instead of sending them"""
    calls = []
    done = threading.Event()

    def fake_post(url, data=None, headers=None, timeout=None):
        calls.append({"url": url, "data": data, "headers": headers})
        done.set()
        return _Response()

    monkeypatch.setattr(webhook.requests, "post", fake_post)
    return calls, done


def test_build_alert_for_tamper():
    error = TamperDetected("expected serial 4, got 6", topic="t", serial_nbr=6, partition=1, offset=9)
    alert = webhook.build_alert(error)

    assert alert["event"] == "chain.tamper_detected"
    assert alert["serial_nbr"] == 6
    assert alert["reason"] == "expected serial 4, got 6"
    assert (alert["partition"], alert["offset"]) == (1, 9)


def test_build_alert_for_corrupt_record():
    error = CorruptRecordError("record value is not JSON", topic="t", partition=0, offset=3)
    alert = webhook.build_alert(error)

    assert alert["event"] == "chain.corrupt_record"
    assert alert["offset"] == 3


def test_build_alert_ignores_other_errors():
    assert webhook.build_alert(PublishError("timeout", topic="t", serial_nbr=2)) is None


def test_send_webhook_without_url(monkeypatch):
    monkeypatch.setattr(webhook.settings, "WEBHOOK_URL", None)
    assert webhook.send_webhook({"event": "x"}) is False


def test_send_webhook_signs_body(posted):
    """Test that the signature header is an HMAC-SHA256 of the exact body"""
    calls, done = posted
    assert webhook.send_webhook({"event": "chain.tamper_detected"}, url="http://hooks.test/a", secret="s3cret")
    assert done.wait(5)

    call = calls[0]
    assert call["url"] == "http://hooks.test/a"
    assert json.loads(call["data"])["event"] == "chain.tamper_detected"
    expected = hmac.new(b"s3cret", call["data"], hashlib.sha256).hexdigest()
    assert call["headers"]["X-KafkaChain-Signature"] == f"sha256={expected}"


def test_alert_handler_posts_tamper(posted):
    calls, done = posted
    handler = webhook.WebhookAlertHandler(url="http://hooks.test/b", secret="")

    handler(TamperDetected("recomputed self hash does not match", topic="t", serial_nbr=2))
    assert done.wait(5)

    assert json.loads(calls[0]["data"])["topic"] == "t"
    assert "X-KafkaChain-Signature" not in calls[0]["headers"]
