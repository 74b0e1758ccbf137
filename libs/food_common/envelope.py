from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import PoisonMessage
from .schemas import EventData

TRACE_HEADER = "traceId"
PLACEHOLDER_TRACE_PREFIX = "untraced-"


class EventEnvelope(BaseModel):
    """
    The only cross-service contract. Wire shape:

        {"eventId", "eventType", "eventVersion", "occurredAt",
         "producer", "traceId", "data"}

    `event_id` is stable across redeliveries of the same logical event; consumers
    still derive their own dedupe keys from `data`.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_id: str = Field(min_length=1)
    event_type: str = Field(min_length=1)        # e.g. "order.cancelled"
    event_version: int = Field(default=1, gt=0)
    occurred_at: datetime
    producer: str                                # e.g. "order-service"
    trace_id: str
    data: Dict[str, Any] = Field(default_factory=dict)


def new_trace_id() -> str:
    return str(uuid.uuid4())


def new_envelope(
    event_type: str,
    data: Union[EventData, Dict[str, Any]],
    *,
    producer: str,
    trace_id: Optional[str] = None,
    event_id: Optional[str] = None,
    event_version: int = 1,
) -> EventEnvelope:
    payload = data.to_wire() if isinstance(data, EventData) else dict(data)
    return EventEnvelope(
        event_id=event_id or str(uuid.uuid4()),
        event_type=event_type,
        event_version=event_version,
        occurred_at=datetime.now(timezone.utc),
        producer=producer,
        trace_id=trace_id or new_trace_id(),
        data=payload,
    )


def encode_envelope(envelope: EventEnvelope) -> bytes:
    return orjson.dumps(envelope.model_dump(by_alias=True, mode="json"))


def _header_str(headers: Optional[Mapping[str, Any]], key: str) -> Optional[str]:
    if not headers:
        return None
    v = headers.get(key)
    if isinstance(v, bytes):
        v = v.decode("utf-8", errors="replace")
    return v if isinstance(v, str) and v else None


def decode_envelope(body: bytes, headers: Optional[Mapping[str, Any]] = None) -> EventEnvelope:
    """
    Parse a broker message body into an envelope.

    A missing body `traceId` falls back to the transport header, then to a generated
    placeholder. Anything else that is malformed raises PoisonMessage.
    """
    try:
        raw = orjson.loads(body)
    except orjson.JSONDecodeError as e:
        raise PoisonMessage(f"body is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise PoisonMessage(f"envelope must be a JSON object, got {type(raw).__name__}")

    if not raw.get("traceId"):
        raw["traceId"] = _header_str(headers, TRACE_HEADER) or f"{PLACEHOLDER_TRACE_PREFIX}{uuid.uuid4()}"

    try:
        return EventEnvelope.model_validate(raw)
    except PydanticValidationError as e:
        raise PoisonMessage(f"invalid envelope: {e.errors(include_url=False)}") from e


def peek_trace_id(body: bytes, headers: Optional[Mapping[str, Any]] = None) -> Optional[str]:
    """Best-effort trace id of a message that may not decode: body `traceId`, then the header."""
    try:
        raw = orjson.loads(body)
    except orjson.JSONDecodeError:
        raw = None
    if isinstance(raw, dict) and isinstance(raw.get("traceId"), str) and raw["traceId"]:
        return raw["traceId"]
    return _header_str(headers, TRACE_HEADER)


__all__ = [
    "EventEnvelope",
    "TRACE_HEADER",
    "PLACEHOLDER_TRACE_PREFIX",
    "new_trace_id",
    "new_envelope",
    "encode_envelope",
    "decode_envelope",
    "peek_trace_id",
]
