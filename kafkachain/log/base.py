"""Contract of the external append-only log.

The log itself (partitioning, replication, delivery, offset tracking) is owned
by the broker. This module only describes the operations the hash-chain
producer and consumer need from it; ``kafka.py`` and ``memory.py`` provide the
implementations.
"""
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from kafkachain.errors import TransientBrokerError
from kafkachain.utils.logger import logger


@dataclass(frozen=True)
class LogRecord:
    """One record returned by a poll"""

    topic: str
    key: Optional[str]
    value: Optional[bytes]
    partition: int
    offset: int


class LogReader(ABC):
    """A connection that reads records, either by group subscription or by explicit assignment.

    Every method may raise ``TransientBrokerError`` when the broker cannot be reached.
    Readers are context managers; leaving the ``with`` block closes the connection.
    """

    @abstractmethod
    def subscribe(self, topics: List[str]) -> None:
        """Join the reader's consumer group for ``topics``."""

    @abstractmethod
    def poll(self, timeout: float, max_records: int = 500) -> List[LogRecord]:
        """Block up to ``timeout`` seconds and return the next batch (possibly empty)."""

    @abstractmethod
    def wakeup(self) -> None:
        """Make an in-flight or the next ``poll`` return promptly. Safe from any thread."""

    @abstractmethod
    def partitions_for(self, topic: str) -> List[int]:
        """Partition ids of ``topic``; empty when the topic does not exist."""

    @abstractmethod
    def watermarks(self, topic: str, partition: int) -> Tuple[int, int]:
        """Return ``(low, high)`` offsets; ``high`` is the offset of the next record to be written."""

    @abstractmethod
    def assign(self, topic: str, offsets: Dict[int, int]) -> None:
        """Read the given partitions starting at the given offsets, bypassing group management."""

    @abstractmethod
    def close(self) -> None:
        """Release the connection. Idempotent."""

    def scan(
        self,
        topic: str,
        starts: Dict[int, int],
        ends: Dict[int, int],
        timeout: float,
        poll_timeout: float = 0.1,
    ) -> List[LogRecord]:
        """Read every record in ``[starts[p], ends[p])`` for each partition ``p``.

        Raises:
            TransientBrokerError: If any partition has not been read to its end
                within ``timeout`` seconds. A partial read is never returned.
        """
        pending = {p: end for p, end in ends.items() if end > starts.get(p, 0)}
        if not pending:
            return []

        self.assign(topic, {p: starts.get(p, 0) for p in pending})
        deadline = time.monotonic() + timeout
        records: List[LogRecord] = []

        while pending and time.monotonic() < deadline:
            for record in self.poll(poll_timeout):
                end = pending.get(record.partition)
                if end is None or record.offset >= end:
                    continue
                records.append(record)
                if record.offset >= end - 1:
                    del pending[record.partition]

        if pending:
            logger.warning(
                f"Scan of {topic} timed out before reaching the end of partitions {sorted(pending)}",
                extra={"topic": topic},
            )
            raise TransientBrokerError(
                f"scan of {topic} incomplete after {timeout}s, partitions {sorted(pending)} not read to the end"
            )
        return records

    def __enter__(self) -> "LogReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChainLog(ABC):
    """Factory for publishes and readers against one log cluster"""

    @abstractmethod
    def create_topic(self, name: str, partitions: int, replication_factor: int) -> None:
        """Create ``name`` if it does not already exist."""

    @abstractmethod
    def publish(self, topic: str, key: str, value: bytes, timeout: float) -> Tuple[int, int]:
        """Append ``value`` and block until it is acknowledged.

        Returns:
            ``(partition, offset)`` of the stored record.

        Raises:
            TransientBrokerError: If the log rejects the record or does not
                acknowledge it within ``timeout`` seconds. The record may still
                have been stored.
        """

    @abstractmethod
    def open_reader(self, group_id: str, commit: bool = True) -> LogReader:
        """Open a new reader connection for ``group_id``."""

    def close(self) -> None:
        """Release producer-side resources."""
