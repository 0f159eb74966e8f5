"""Tamper-evident record schemas"""
from typing import Optional

from pydantic import BaseModel, Field, field_validator

RECORD_FORMAT_VERSION = 2
HASH_HEX_LENGTH = 64


class TamperEvidentRecord(BaseModel):
    """Wire shape of a tamper-evident object stored as a record value"""

    format_version: int = Field(RECORD_FORMAT_VERSION, description="Record wire format version")
    payload: str = Field(..., description="Base64 encoded payload bytes")
    previous_hash: str = Field(..., description="Hex SHA-256 of the predecessor record")
    serial_nbr: int = Field(..., ge=1, description="Position of the record in its chain")
    self_hash: str = Field(..., description="Hex SHA-256 over payload, previous hash and serial")

    @field_validator("previous_hash", "self_hash")
    @classmethod
    def check_hash_hex(cls, value: str) -> str:
        """Hashes are fixed-width lowercase hex"""
        if len(value) != HASH_HEX_LENGTH:
            raise ValueError(f"hash must be {HASH_HEX_LENGTH} hex characters")
        try:
            bytes.fromhex(value)
        except ValueError as exc:
            raise ValueError("hash must be hexadecimal") from exc
        return value.lower()


class ChainTipResponse(BaseModel):
    """Response from GET /chains/{topic}/tip"""

    topic: str
    last_hash: str = Field(..., description="Hex self hash of the newest record, genesis when empty")
    last_serial_nbr: int = Field(..., description="Serial number of the newest record, 0 when empty")
    source: str = Field(..., description="cache or recovery")


class ChainVerifyResponse(BaseModel):
    """Response from GET /chains/{topic}/verify, reporting the integrity of a topic's chain"""

    topic: str
    valid: bool = Field(..., description="True if the entire chain is intact")
    total_entries: int = Field(..., description="Number of chained records checked")
    duplicates: int = Field(0, description="Records repeating an already accepted link")
    skipped: int = Field(0, description="Legacy or corrupt records that were not checked")
    broken_at: Optional[int] = Field(
        None,
        description="serial_nbr of the first record that breaks the chain; null when valid=true",
    )
    reason: Optional[str] = None
