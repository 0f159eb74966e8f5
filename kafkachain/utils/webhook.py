"""Fire-and-forget webhook alerts for chain integrity failures"""
import hashlib
import hmac
import json
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from kafkachain.config import settings
from kafkachain.errors import ChainError, CorruptRecordError, TamperDetected
from kafkachain.utils.logger import logger


def _deliver(url: str, body: bytes, headers: Dict[str, str]) -> None:
    """Deliver webhook payload in a daemon background thread (fire-and-forget)."""
    try:
        resp = requests.post(url, data=body, headers=headers, timeout=5)
        logger.debug(
            "Webhook delivered",
            extra={"url": url, "status_code": resp.status_code},
        )
    except requests.RequestException as exc:
        logger.warning(
            "Webhook delivery failed",
            extra={"url": url, "error": str(exc)},
        )


def build_alert(error: ChainError) -> Optional[Dict[str, Any]]:
    """Return the alert body for an error worth paging on, else None"""
    if isinstance(error, TamperDetected):
        return {
            "event": "chain.tamper_detected",
            "topic": error.topic,
            "serial_nbr": error.serial_nbr,
            "partition": error.partition,
            "offset": error.offset,
            "reason": error.reason,
        }
    if isinstance(error, CorruptRecordError):
        return {
            "event": "chain.corrupt_record",
            "topic": error.topic,
            "partition": error.partition,
            "offset": error.offset,
            "reason": str(error),
        }
    return None


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def send_webhook(payload: Dict[str, Any], url: Optional[str] = None, secret: Optional[str] = None) -> bool:
    """
    Send a webhook notification (non-blocking).

    Configuration (.env):
      - ``WEBHOOK_URL``: destination URL
      - ``WEBHOOK_SECRET``: if set, adds ``X-KafkaChain-Signature: sha256=<hex>`` header
                             so the receiver can verify authenticity.

    The call returns immediately; delivery happens in a daemon thread.
    Returns False when no URL is configured.
    """
    url = url or settings.WEBHOOK_URL
    if not url:
        return False
    secret = secret if secret is not None else settings.WEBHOOK_SECRET

    body_dict: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **payload,
    }
    body = json.dumps(body_dict, default=str).encode()
    headers = {"Content-Type": "application/json"}
    if secret:
        headers["X-KafkaChain-Signature"] = f"sha256={sign(body, secret)}"

    threading.Thread(target=_deliver, args=(url, body, headers), daemon=True).start()
    return True


class WebhookAlertHandler:
    """Consumer error handler that posts tamper and corruption alerts to a webhook"""

    def __init__(self, url: Optional[str] = None, secret: Optional[str] = None):
        self.url = url
        self.secret = secret

    def __call__(self, error: ChainError) -> None:
        alert = build_alert(error)
        if alert is not None:
            send_webhook(alert, url=self.url, secret=self.secret)
