"""Tamper-evident hash chains on top of a partitioned publish/subscribe log"""
from kafkachain.consumer import ChainConsumerLoop, LoopState
from kafkachain.errors import (
    ChainError,
    CorruptRecordError,
    DecodeError,
    LegacyFormatError,
    PublishError,
    SerializationError,
    TamperDetected,
    TransientBrokerError,
)
from kafkachain.log import open_log
from kafkachain.producer import ChainProducer
from kafkachain.recovery import ChainTipRecovery
from kafkachain.tip_cache import ChainTip, ChainTipCache
from kafkachain.verifier import ChainVerifier

__version__ = "0.1.0"

__all__ = [
    "ChainConsumerLoop",
    "ChainError",
    "ChainProducer",
    "ChainTip",
    "ChainTipCache",
    "ChainTipRecovery",
    "ChainVerifier",
    "CorruptRecordError",
    "DecodeError",
    "LegacyFormatError",
    "LoopState",
    "PublishError",
    "SerializationError",
    "TamperDetected",
    "TransientBrokerError",
    "open_log",
]
