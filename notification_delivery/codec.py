"""Wire codec for queued envelopes and the requests inside them.

Mental model refresher:
- This is an adapter/edge module.
- It translates transport-shaped bytes (Kafka record values) into the
  internal dataclasses and back.
- Every failure surfaces as `DecodeError`, which the consumer treats as
  "dead-letter immediately": malformed bytes never become valid on retry.

Envelope wire shape (JSON object):
    {"message_id": "...", "notification_type": "email",
     "payload": "<base64 of request JSON>", "created_at": "<ISO-8601 UTC>"}
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import UTC, datetime
from typing import Any, Mapping

from .domain.models import NotificationKind, NotificationRequest, QueuedEnvelope
from .errors import DecodeError, UnsupportedKind


def encode_request(request: NotificationRequest) -> bytes:
    return _serialize_json_object(
        {
            "recipient": request.recipient,
            "kind": request.kind.value,
            "template": request.template,
            "data": dict(request.data),
            "subject": request.subject,
            "body": request.body,
            "allow_fallback": request.allow_fallback,
        }
    )


def decode_request(payload: bytes) -> NotificationRequest:
    """Rebuild a request from envelope payload bytes."""
    fields = _deserialize_json_object(payload)
    data = fields.get("data") or {}
    if not isinstance(data, Mapping):
        raise DecodeError("request.data must be a JSON object")
    try:
        kind = NotificationKind.parse(_as_required_str(fields.get("kind"), "kind"))
    except UnsupportedKind as exc:
        raise DecodeError(str(exc)) from exc
    return NotificationRequest(
        recipient=_as_required_str(fields.get("recipient"), "recipient"),
        kind=kind,
        template=_as_optional_str(fields.get("template")),
        data={str(key): str(value) for key, value in data.items()},
        subject=_as_optional_str(fields.get("subject")),
        body=_as_optional_str(fields.get("body")),
        allow_fallback=bool(fields.get("allow_fallback", False)),
    )


def build_envelope(
    request: NotificationRequest,
    *,
    message_id: str,
    created_at: datetime,
) -> QueuedEnvelope:
    return QueuedEnvelope(
        message_id=message_id,
        created_at=created_at,
        notification_type=request.kind.value,
        payload=encode_request(request),
    )


def envelope_to_dict(envelope: QueuedEnvelope) -> dict[str, Any]:
    return {
        "message_id": envelope.message_id,
        "notification_type": envelope.notification_type,
        "payload": base64.b64encode(envelope.payload).decode("ascii"),
        "created_at": envelope.created_at.astimezone(UTC).isoformat(),
    }


def envelope_from_dict(fields: Mapping[str, Any]) -> QueuedEnvelope:
    """Map a decoded JSON object onto an envelope.

    `notification_type` is kept as the raw string; unknown kinds are the
    dispatcher's call, not the codec's.
    """
    raw_payload = fields.get("payload")
    if not isinstance(raw_payload, str):
        raise DecodeError("envelope.payload must be a base64 string")
    try:
        payload = base64.b64decode(raw_payload.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise DecodeError(f"envelope.payload is not valid base64: {exc}") from exc

    return QueuedEnvelope(
        message_id=_as_required_str(fields.get("message_id"), "message_id"),
        created_at=_parse_timestamp(fields.get("created_at")),
        notification_type=_as_required_str(fields.get("notification_type"), "notification_type"),
        payload=payload,
    )


def encode_envelope(envelope: QueuedEnvelope) -> bytes:
    return _serialize_json_object(envelope_to_dict(envelope))


def decode_envelope(raw: bytes | str | Mapping[str, Any] | None) -> QueuedEnvelope:
    return envelope_from_dict(_deserialize_json_object(raw))


def build_dead_letter_payload(
    *,
    source_topic: str,
    source_partition: int,
    source_offset: int,
    source_payload: Any,
    failure_reason: str,
    attempts: int,
    envelope: QueuedEnvelope | None = None,
) -> dict[str, Any]:
    payload = {
        "event_type": f"{source_topic}.dlq",
        "failed_at": datetime.now(tz=UTC).isoformat(),
        "failure_reason": failure_reason,
        "attempts": attempts,
        "source": {
            "topic": source_topic,
            "partition": source_partition,
            "offset": source_offset,
        },
        "payload": _to_json_compatible(source_payload),
    }
    if envelope is not None:
        payload["source_message_id"] = envelope.message_id
        payload["notification_type"] = envelope.notification_type
    return payload


def _to_json_compatible(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_json_compatible(item) for item in value]
    return repr(value)


def _serialize_json_object(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def _deserialize_json_object(raw: bytes | str | Mapping[str, Any] | None) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)

    try:
        if isinstance(raw, bytes):
            text = raw.decode("utf-8")
        elif isinstance(raw, str):
            text = raw
        else:
            raise DecodeError(f"Unsupported payload type: {type(raw).__name__}")
        parsed = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"payload is not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise DecodeError("payload must decode to a JSON object")
    return parsed


def _parse_timestamp(value: Any) -> datetime:
    text = _as_required_str(value, "created_at")
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise DecodeError(f"created_at is not an ISO-8601 timestamp: {text!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _as_required_str(value: Any, field_name: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise DecodeError(f"Missing required field: {field_name}")
    return text


def _as_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
