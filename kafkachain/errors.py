"""Exception types raised by the hash-chain producer and consumer"""
from typing import Optional


class ChainError(Exception):
    """Base class for all kafkachain errors"""


class SerializationError(ChainError):
    """A payload could not be encoded to, or decoded from, bytes"""


class PublishError(ChainError):
    """The log rejected or timed out a publish.

    The chain tip cache is left untouched, so retrying the same produce call
    links against the same ``previous_hash`` and ``serial_nbr``.
    """

    def __init__(self, message: str, topic: str, serial_nbr: int):
        super().__init__(message)
        self.topic = topic
        self.serial_nbr = serial_nbr


class DecodeError(ChainError):
    """A consumed record value could not be turned into a tamper-evident object"""

    def __init__(
        self,
        message: str,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        super().__init__(message)
        self.topic = topic
        self.partition = partition
        self.offset = offset


class LegacyFormatError(DecodeError):
    """The record uses an older or unknown wire version and is skipped"""

    def __init__(self, message: str, version: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.version = version


class CorruptRecordError(DecodeError):
    """The record claims the current wire version but is malformed"""


class TamperDetected(ChainError):
    """A record's recomputed hash or its link to the predecessor does not match"""

    def __init__(
        self,
        reason: str,
        topic: str,
        serial_nbr: int,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        super().__init__(f"tamper detected on {topic} at serial {serial_nbr}: {reason}")
        self.reason = reason
        self.topic = topic
        self.serial_nbr = serial_nbr
        self.partition = partition
        self.offset = offset


class TransientBrokerError(ChainError):
    """A poll or connect against the log failed and may be retried"""
