"""Signature checks and event parsing for the payment provider webhook.

The provider signs ``"<unix ts>.<raw body>"`` with HMAC-SHA256 and sends
``X-Payment-Signature: t=<ts>,v1=<hex digest>``.
"""

import hashlib
import hmac
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from auditoryx.services.errors import MarketplaceValidationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Payment-Signature"
MAX_WEBHOOK_AGE_SECONDS = 300
PAYMENT_SUCCEEDED_EVENT = "checkout.session.completed"


class WebhookSignatureError(MarketplaceValidationError):
    pass


@dataclass(frozen=True)
class PaymentEvent:
    id: str
    type: str
    booking_id: str
    amount: Optional[float]
    payment_reference: str


def compute_signature(secret: str, timestamp: str, payload: bytes) -> str:
    signed = timestamp.encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def signature_header(secret: str, payload: bytes, timestamp: Optional[int] = None) -> str:
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return f"t={ts},v1={compute_signature(secret, ts, payload)}"


def _parse_header(header: str) -> Dict[str, str]:
    parts: Dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep and key and value:
            parts.setdefault(key, value)
    return parts


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    *,
    tolerance: int = MAX_WEBHOOK_AGE_SECONDS,
    now: Optional[float] = None,
) -> None:
    if not header:
        raise WebhookSignatureError("Missing payment signature header")
    parts = _parse_header(header)
    timestamp = parts.get("t")
    sent = parts.get("v1")
    if not timestamp or not sent:
        raise WebhookSignatureError("Malformed payment signature header")
    try:
        ts_value = int(timestamp)
    except ValueError as exc:
        raise WebhookSignatureError("Malformed payment signature timestamp") from exc

    current = time.time() if now is None else now
    if abs(current - ts_value) > tolerance:
        logger.warning("Payment webhook timestamp outside tolerance: %ss", int(current - ts_value))
        raise WebhookSignatureError("Payment signature timestamp outside tolerance")

    expected = compute_signature(secret, timestamp, payload)
    if not hmac.compare_digest(expected, sent):
        logger.warning("Payment webhook signature mismatch")
        raise WebhookSignatureError("Invalid payment signature")


def parse_event(payload: bytes) -> PaymentEvent:
    try:
        body: Any = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MarketplaceValidationError("Webhook body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise MarketplaceValidationError("Webhook body must be a JSON object")
    event_id = str(body.get("id") or "").strip()
    event_type = str(body.get("type") or "").strip()
    if not event_id or not event_type:
        raise MarketplaceValidationError("Webhook event requires id and type")
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    raw_amount = data.get("amount")
    try:
        amount = float(raw_amount) if raw_amount is not None else None
    except (TypeError, ValueError) as exc:
        raise MarketplaceValidationError("Webhook amount must be numeric") from exc
    if amount is not None and (not math.isfinite(amount) or amount < 0):
        raise MarketplaceValidationError("Webhook amount must be a finite, non-negative number")
    return PaymentEvent(
        id=event_id,
        type=event_type,
        booking_id=str(data.get("booking_id") or "").strip(),
        amount=amount,
        payment_reference=str(data.get("payment_reference") or ""),
    )
