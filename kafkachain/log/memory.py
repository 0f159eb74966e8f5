"""In-process log backend (``memory://``).

Keeps partitioned topics, consumer-group offsets and blocking polls inside the
current process. Used by the test suite and for running without a broker.
Failures can be injected with :meth:`InMemoryLog.fail_next_publishes`,
:meth:`InMemoryLog.lose_next_acks` and :meth:`InMemoryLog.fail_next_polls`.
"""
import itertools
import threading
import time
import zlib
from typing import Dict, List, Optional, Tuple

from kafkachain.errors import TransientBrokerError
from kafkachain.log.base import ChainLog, LogReader, LogRecord


class InMemoryLog(ChainLog):
    """Partitioned append-only topics held in memory"""

    def __init__(self, default_partitions: int = 3):
        self.default_partitions = default_partitions
        self._cond = threading.Condition()
        self._topics: Dict[str, List[List[LogRecord]]] = {}
        self._group_offsets: Dict[Tuple[str, str, int], int] = {}
        self._round_robin = itertools.count()
        self._fail_publishes = 0
        self._lose_acks = 0
        self._fail_polls = 0
        self.publish_count = 0

    # ===== Failure injection =====

    def fail_next_publishes(self, count: int = 1) -> None:
        """Reject the next ``count`` publishes without storing them"""
        with self._cond:
            self._fail_publishes += count

    def lose_next_acks(self, count: int = 1) -> None:
        """Store the next ``count`` publishes but report them as failed"""
        with self._cond:
            self._lose_acks += count

    def fail_next_polls(self, count: int = 1) -> None:
        """Raise ``TransientBrokerError`` from the next ``count`` polls"""
        with self._cond:
            self._fail_polls += count

    # ===== ChainLog =====

    def create_topic(self, name: str, partitions: Optional[int] = None, replication_factor: int = 1) -> None:
        with self._cond:
            if name not in self._topics:
                self._topics[name] = [[] for _ in range(partitions or self.default_partitions)]

    def publish(self, topic: str, key: str, value: bytes, timeout: float = 10.0) -> Tuple[int, int]:
        with self._cond:
            if self._fail_publishes:
                self._fail_publishes -= 1
                raise TransientBrokerError(f"publish to {topic} rejected by broker")

            partition, offset = self._append(topic, key, value, None)

            if self._lose_acks:
                self._lose_acks -= 1
                raise TransientBrokerError(f"publish to {topic} not acknowledged within {timeout}s")
            return partition, offset

    def append_raw(
        self,
        topic: str,
        value: Optional[bytes],
        key: Optional[str] = None,
        partition: Optional[int] = None,
    ) -> Tuple[int, int]:
        """Store a record bypassing failure injection (for seeding foreign records)"""
        with self._cond:
            return self._append(topic, key, value, partition)

    def replace_value(self, topic: str, partition: int, offset: int, value: bytes) -> None:
        """Overwrite a stored record in place, as an attacker with broker access could"""
        with self._cond:
            old = self._topics[topic][partition][offset]
            self._topics[topic][partition][offset] = LogRecord(
                topic=old.topic, key=old.key, value=value, partition=old.partition, offset=old.offset
            )

    def records(self, topic: str) -> List[LogRecord]:
        """All records of ``topic`` in (partition, offset) order"""
        with self._cond:
            return [r for part in self._topics.get(topic, []) for r in part]

    def open_reader(self, group_id: str, commit: bool = True) -> "InMemoryReader":
        return InMemoryReader(self, group_id, commit)

    # ===== Internal Methods =====

    def _append(self, topic: str, key: Optional[str], value: Optional[bytes], partition: Optional[int]) -> Tuple[int, int]:
        if topic not in self._topics:
            self._topics[topic] = [[] for _ in range(self.default_partitions)]
        partitions = self._topics[topic]
        if partition is None:
            if key is not None:
                partition = zlib.crc32(key.encode("utf-8")) % len(partitions)
            else:
                partition = next(self._round_robin) % len(partitions)
        offset = len(partitions[partition])
        partitions[partition].append(
            LogRecord(topic=topic, key=key, value=value, partition=partition, offset=offset)
        )
        self.publish_count += 1
        self._cond.notify_all()
        return partition, offset

    def _take(self, positions: Dict[Tuple[str, int], int], max_records: int) -> List[LogRecord]:
        batch: List[LogRecord] = []
        for (topic, partition), position in positions.items():
            stored = self._topics.get(topic, [])
            if partition >= len(stored):
                continue
            available = stored[partition][position:position + max_records - len(batch)]
            batch.extend(available)
            positions[(topic, partition)] = position + len(available)
            if len(batch) >= max_records:
                break
        return batch


class InMemoryReader(LogReader):
    """Reader connection against an :class:`InMemoryLog`"""

    def __init__(self, log: InMemoryLog, group_id: str, commit: bool = True):
        self._log = log
        self.group_id = group_id
        self._commit = commit
        self._subscribed: List[str] = []
        self._positions: Dict[Tuple[str, int], int] = {}
        self._assigned = False
        self._woken = False
        self.closed = False

    def subscribe(self, topics: List[str]) -> None:
        self._subscribed = list(topics)
        self._assigned = False
        self._positions = {}

    def assign(self, topic: str, offsets: Dict[int, int]) -> None:
        self._subscribed = []
        self._assigned = True
        self._positions = {(topic, p): offset for p, offset in offsets.items()}

    def poll(self, timeout: float, max_records: int = 500) -> List[LogRecord]:
        if self.closed:
            raise TransientBrokerError("reader is closed")

        deadline = time.monotonic() + timeout
        cond = self._log._cond
        with cond:
            if self._log._fail_polls:
                self._log._fail_polls -= 1
                raise TransientBrokerError("broker unreachable")

            while True:
                if self._woken:
                    self._woken = False
                    return []
                self._refresh_positions()
                batch = self._log._take(self._positions, max_records)
                if batch:
                    self._commit_positions()
                    return batch
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return []
                cond.wait(remaining)

    def wakeup(self) -> None:
        with self._log._cond:
            self._woken = True
            self._log._cond.notify_all()

    def partitions_for(self, topic: str) -> List[int]:
        with self._log._cond:
            return list(range(len(self._log._topics.get(topic, []))))

    def watermarks(self, topic: str, partition: int) -> Tuple[int, int]:
        with self._log._cond:
            partitions = self._log._topics.get(topic, [])
            if partition >= len(partitions):
                return 0, 0
            return 0, len(partitions[partition])

    def close(self) -> None:
        self.closed = True

    # ===== Internal Methods =====

    def _refresh_positions(self) -> None:
        # Partitions of subscribed topics start at the group's committed offset
        if self._assigned:
            return
        for topic in self._subscribed:
            for partition in range(len(self._log._topics.get(topic, []))):
                if (topic, partition) not in self._positions:
                    self._positions[(topic, partition)] = self._log._group_offsets.get(
                        (self.group_id, topic, partition), 0
                    )

    def _commit_positions(self) -> None:
        if not self._commit or self._assigned:
            return
        for (topic, partition), position in self._positions.items():
            self._log._group_offsets[(self.group_id, topic, partition)] = position
