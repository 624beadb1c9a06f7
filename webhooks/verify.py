"""DoorFlow webhook signature verification.

DoorFlow signs each delivery with ``HMAC-SHA256(secret, f"{timestamp}.{body}")``
and sends the hex digest in the ``Signature`` header next to a ``Timestamp``
header. The digest covers the exact body bytes, so verification should be
given the raw request body whenever the framework exposes it.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any

WEBHOOK_ACTIONS = ("CREATE", "UPDATE", "DESTROY")


class WebhookSignatureError(RuntimeError):
    status_code = 401


class WebhookSignatureMissingError(WebhookSignatureError):
    pass


class WebhookSignatureInvalidError(WebhookSignatureError):
    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message)


class WebhookPayloadError(WebhookSignatureError):
    status_code = 400


@dataclass(frozen=True)
class WebhookEvent:
    action: str
    resource: str
    resource_type: str
    resource_id: str
    account_id: str
    ack_token: str

    @property
    def pattern(self) -> str:
        return f"{self.resource_type}.{self.action}"

    @classmethod
    def from_raw(cls, raw: dict) -> "WebhookEvent":
        if not isinstance(raw, dict):
            raise WebhookPayloadError("Webhook payload records must be JSON objects.")
        return cls(
            action=raw.get("action"),
            resource=raw.get("resource"),
            resource_type=raw.get("resource_type"),
            resource_id=_as_str(raw.get("resource_id")),
            account_id=_as_str(raw.get("account_id")),
            ack_token=raw.get("ack_token"),
        )


def _as_str(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def serialize_payload(payload: str | bytes | Any) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    # Compact separators reproduce the bytes DoorFlow signed.
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _compute_signature(payload_bytes: bytes, timestamp: str, secret: str) -> str:
    signed = str(timestamp).encode("utf-8") + b"." + payload_bytes
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def generate_test_signature(payload: str | bytes | Any, timestamp: str, secret: str) -> str:
    """Sign ``payload`` the way DoorFlow does, for tests and local senders."""
    return _compute_signature(serialize_payload(payload), str(timestamp), secret)


def verify_webhook(
    payload: str | bytes | Any,
    signature: str | None,
    timestamp: str | None,
    secret: str | None,
) -> list[WebhookEvent]:
    """Verify a delivery and return its events.

    The HMAC is computed over the raw body bytes; the body is only decoded
    once the signature matches.

    Raises:
        WebhookSignatureMissingError: signature, timestamp or secret is empty.
        WebhookSignatureInvalidError: the signature does not match. The
            message is the same whatever the cause.
        WebhookPayloadError: the signed body is not UTF-8 JSON holding an
            event record or list of records.
    """
    if not signature:
        raise WebhookSignatureMissingError("Missing webhook signature")
    if not timestamp:
        raise WebhookSignatureMissingError("Missing webhook timestamp")
    if not secret:
        raise WebhookSignatureMissingError("Missing webhook secret")

    payload_bytes = serialize_payload(payload)
    expected = _compute_signature(payload_bytes, str(timestamp), secret).encode("utf-8")
    actual = signature.encode("utf-8")

    if len(actual) != len(expected):
        raise WebhookSignatureInvalidError()
    if not hmac.compare_digest(actual, expected):
        raise WebhookSignatureInvalidError()

    if isinstance(payload, (str, bytes, bytearray)):
        try:
            raw_events = json.loads(payload_bytes.decode("utf-8"))
        except UnicodeDecodeError as error:
            raise WebhookPayloadError("Webhook payload is not valid UTF-8.") from error
        except json.JSONDecodeError as error:
            raise WebhookPayloadError("Webhook payload is not valid JSON.") from error
    else:
        raw_events = payload

    if not isinstance(raw_events, list):
        raw_events = [raw_events]
    return [WebhookEvent.from_raw(raw) for raw in raw_events]
