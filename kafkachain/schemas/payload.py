"""Versioned payload envelope schemas"""
import json
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from kafkachain.errors import LegacyFormatError, SerializationError

PAYLOAD_VERSION = 1

M = TypeVar("M", bound=BaseModel)


class PayloadEnvelope(BaseModel):
    """Version-tagged wrapper around application payload data"""

    payload_version: int = Field(PAYLOAD_VERSION, description="Payload encoding version")
    payload_type: Optional[str] = Field(None, description="Class name of a model payload")
    data: Any = Field(..., description="JSON-compatible payload data")


class DemoPayload(BaseModel):
    """Demonstration payload carried on a chained topic"""

    string: str
    integer: int

    def __str__(self) -> str:
        return f"[DemoPayload, string={self.string}, integer={self.integer}]"


def serialize_payload(payload: Any) -> bytes:
    """Encode a payload into canonical, version-tagged JSON bytes.

    Args:
        payload: A pydantic model or any JSON-compatible value.

    Returns:
        UTF-8 bytes with sorted keys and no insignificant whitespace, so equal
        payloads always produce equal bytes.

    Raises:
        SerializationError: If the payload is not JSON-encodable.
    """
    if payload is None:
        raise SerializationError("payload must not be None")

    if isinstance(payload, BaseModel):
        envelope = PayloadEnvelope(
            payload_type=type(payload).__name__,
            data=payload.model_dump(mode="json"),
        )
    else:
        envelope = PayloadEnvelope(data=payload)

    try:
        raw = json.dumps(
            envelope.model_dump(mode="json"),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"payload cannot be encoded: {exc}") from exc
    return raw.encode("utf-8")


def deserialize_payload(raw: bytes, model: Optional[Type[M]] = None) -> Any:
    """Decode bytes produced by :func:`serialize_payload`.

    Args:
        raw:   Encoded payload bytes.
        model: Optional pydantic model to validate the data into.

    Returns:
        The model instance when ``model`` is given, otherwise the plain data.

    Raises:
        LegacyFormatError: If the envelope carries a different payload version.
        SerializationError: If the bytes are not a valid envelope.
    """
    try:
        decoded = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise SerializationError(f"payload bytes are not valid JSON: {exc}") from exc

    if not isinstance(decoded, dict) or "payload_version" not in decoded:
        raise SerializationError("payload bytes are not a version-tagged envelope")

    version = decoded["payload_version"]
    if version != PAYLOAD_VERSION:
        raise LegacyFormatError(f"unsupported payload version {version!r}", version=version)

    try:
        envelope = PayloadEnvelope.model_validate(decoded)
        if model is None:
            return envelope.data
        return model.model_validate(envelope.data)
    except ValidationError as exc:
        raise SerializationError(f"payload does not match schema: {exc}") from exc


def check_round_trip(payload: Any) -> bytes:
    """Encode a payload and confirm it decodes back to the same bytes.

    Returns the encoded bytes. Raises ``SerializationError`` on mismatch.
    """
    raw = serialize_payload(payload)
    if isinstance(payload, BaseModel):
        restored = deserialize_payload(raw, type(payload))
    else:
        restored = deserialize_payload(raw)
    if serialize_payload(restored) != raw:
        raise SerializationError("payload does not survive an encode/decode round trip")
    return raw
