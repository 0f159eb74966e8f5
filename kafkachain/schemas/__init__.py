"""Pydantic schemas for wire records, payloads and API responses"""
from kafkachain.schemas.payload import DemoPayload, PayloadEnvelope
from kafkachain.schemas.record import ChainTipResponse, ChainVerifyResponse, TamperEvidentRecord

__all__ = [
    "ChainTipResponse",
    "ChainVerifyResponse",
    "DemoPayload",
    "PayloadEnvelope",
    "TamperEvidentRecord",
]
