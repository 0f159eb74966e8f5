"""Hash-chain linking utilities.

Each tamper-evident object stores a SHA-256 hash covering its payload bytes,
the previous object's hash and its own serial number:

    self_hash = SHA-256(payload_bytes || previous_hash || serial_nbr)

``previous_hash`` is the raw 32-byte digest and ``serial_nbr`` is encoded as an
8-byte big-endian unsigned integer, so the three components are unambiguous.
The first object of a chain links to ``genesis_hash()``, the SHA-256 of empty
input. Altering, removing or reordering any object breaks the link of its
successor.
"""
import base64
import binascii
import hashlib
import json
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from kafkachain.errors import CorruptRecordError, LegacyFormatError
from kafkachain.schemas.payload import serialize_payload
from kafkachain.schemas.record import RECORD_FORMAT_VERSION, TamperEvidentRecord

HASH_SIZE = 32
_SERIAL_BYTES = 8


@dataclass(frozen=True)
class TamperEvidentObject:
    """A payload wrapped with its cryptographic link to the predecessor"""

    payload_bytes: bytes
    previous_hash: bytes
    serial_nbr: int
    self_hash: bytes

    def __str__(self) -> str:
        return (
            f"[TamperEvidentObject, serial_nbr={self.serial_nbr}, "
            f"previous_hash={self.previous_hash.hex()[:12]}, self_hash={self.self_hash.hex()[:12]}]"
        )


def genesis_hash() -> bytes:
    """Return the fixed anchor hash that the object with serial 1 links to.

    Any implementation can recompute SHA-256 of empty input.
    """
    return hashlib.sha256(b"").digest()


def compute_hash(payload_bytes: bytes, previous_hash: bytes, serial_nbr: int) -> bytes:
    """Return the SHA-256 digest linking a payload to its predecessor.

    Args:
        payload_bytes: Serialized payload.
        previous_hash: 32-byte digest of the preceding object (or genesis).
        serial_nbr:    Position of the object in its chain, starting at 1.

    Returns:
        32-byte digest.
    """
    if len(previous_hash) != HASH_SIZE:
        raise ValueError(f"previous_hash must be {HASH_SIZE} bytes")
    if serial_nbr < 1:
        raise ValueError("serial_nbr must be >= 1")
    digest = hashlib.sha256()
    digest.update(payload_bytes)
    digest.update(previous_hash)
    digest.update(serial_nbr.to_bytes(_SERIAL_BYTES, "big"))
    return digest.digest()


def wrap(payload: Any, previous_hash: bytes, serial_nbr: int) -> TamperEvidentObject:
    """Serialize a payload and link it to ``previous_hash`` at ``serial_nbr``.

    Raises:
        SerializationError: If the payload cannot be encoded.
    """
    payload_bytes = serialize_payload(payload)
    return wrap_bytes(payload_bytes, previous_hash, serial_nbr)


def wrap_bytes(payload_bytes: bytes, previous_hash: bytes, serial_nbr: int) -> TamperEvidentObject:
    """Link already-serialized payload bytes."""
    return TamperEvidentObject(
        payload_bytes=payload_bytes,
        previous_hash=previous_hash,
        serial_nbr=serial_nbr,
        self_hash=compute_hash(payload_bytes, previous_hash, serial_nbr),
    )


def verify(teo: TamperEvidentObject) -> bool:
    """Recompute the object's hash and compare it to the stored one.

    A False result means one of the hashed fields was altered after wrapping.
    """
    try:
        expected = compute_hash(teo.payload_bytes, teo.previous_hash, teo.serial_nbr)
    except (ValueError, OverflowError):
        return False
    return expected == teo.self_hash


def encode_record(teo: TamperEvidentObject) -> bytes:
    """Encode a tamper-evident object as a versioned JSON record value"""
    record = TamperEvidentRecord(
        payload=base64.b64encode(teo.payload_bytes).decode("ascii"),
        previous_hash=teo.previous_hash.hex(),
        serial_nbr=teo.serial_nbr,
        self_hash=teo.self_hash.hex(),
    )
    return record.model_dump_json().encode("utf-8")


def decode_record(raw: bytes) -> TamperEvidentObject:
    """Decode a record value into a tamper-evident object.

    The hashes are not checked here; call :func:`verify` on the result.

    Raises:
        LegacyFormatError:  The record declares a format version other than the current one.
        CorruptRecordError: The record is not a well-formed current-version record.
    """
    if raw is None:
        raise CorruptRecordError("record has no value")
    try:
        decoded = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise CorruptRecordError(f"record value is not JSON: {exc}") from exc

    if not isinstance(decoded, dict) or "format_version" not in decoded:
        raise CorruptRecordError("record value carries no format_version")

    version = decoded["format_version"]
    if version != RECORD_FORMAT_VERSION:
        raise LegacyFormatError(f"record format version {version!r} is not supported", version=version)

    try:
        record = TamperEvidentRecord.model_validate(decoded)
        payload_bytes = base64.b64decode(record.payload, validate=True)
    except (ValidationError, binascii.Error) as exc:
        raise CorruptRecordError(f"record fields are malformed: {exc}") from exc

    return TamperEvidentObject(
        payload_bytes=payload_bytes,
        previous_hash=bytes.fromhex(record.previous_hash),
        serial_nbr=record.serial_nbr,
        self_hash=bytes.fromhex(record.self_hash),
    )
