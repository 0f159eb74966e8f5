"""Consumer loop that verifies hash-chained messages.

One loop instance consumes one topic on its own thread:

  - Legacy records (older wire version) are logged and skipped.
  - Corrupt records are skipped and reported to the error handler.
  - A record whose recomputed hash or link does not match raises a
    ``TamperDetected`` report and flags the topic as compromised; the loop keeps
    running so one bad topic cannot take the consuming service down.
  - Poll and connect failures are logged and retried after a backoff.

``stop()`` sets the cancellation token and wakes any in-flight poll. The reader
connection is closed on every exit path.
"""
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel

from kafkachain.config import settings
from kafkachain.errors import (
    ChainError,
    CorruptRecordError,
    LegacyFormatError,
    SerializationError,
    TamperDetected,
    TransientBrokerError,
)
from kafkachain.log.base import ChainLog, LogReader, LogRecord
from kafkachain.schemas.payload import deserialize_payload
from kafkachain.tip_cache import ChainTip
from kafkachain.utils import metrics
from kafkachain.utils.chain import TamperEvidentObject, decode_record, genesis_hash, verify
from kafkachain.utils.logger import logger

PayloadHandler = Callable[[Any], None]
ErrorHandler = Callable[[ChainError], None]


class LoopState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ChainConsumerLoop:
    """Polls a chained topic, verifies each record and delivers its payload.

    Args:
        log:           The log to read from.
        topic:         The chained topic.
        handler:       Receives each verified, unwrapped payload.
        group_id:      Consumer group (default ``settings.KAFKA_GROUP_ID``).
        on_error:      Receives ``TamperDetected``, ``CorruptRecordError`` and
                       payload ``SerializationError`` reports.
        payload_model: Optional pydantic model the payload data is validated into.
        poll_timeout:  Seconds a poll may block (default ``CONSUMER_POLL_TIMEOUT_MS``).
    """

    def __init__(
        self,
        log: ChainLog,
        topic: str,
        handler: PayloadHandler,
        group_id: Optional[str] = None,
        on_error: Optional[ErrorHandler] = None,
        payload_model: Optional[Type[BaseModel]] = None,
        poll_timeout: Optional[float] = None,
        max_batch: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        if not topic:
            raise ValueError("topic must be a non-empty string")
        self.log = log
        self.topic = topic
        self.handler = handler
        self.group_id = group_id or settings.KAFKA_GROUP_ID
        self.on_error = on_error
        self.payload_model = payload_model
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.poll_timeout_seconds
        self.max_batch = max_batch or settings.CONSUMER_MAX_BATCH
        self.retry_backoff = (
            retry_backoff if retry_backoff is not None else settings.CONSUMER_RETRY_BACKOFF_MS / 1000.0
        )

        self._state = LoopState.CREATED
        self._state_lock = threading.Lock()
        self._cancel = threading.Event()
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._reader: Optional[LogReader] = None

        # Last accepted link; None until the first verified record
        self._last: Optional[ChainTip] = None
        self.compromised = False
        self._stats: Dict[str, int] = {
            "delivered": 0,
            "legacy_skipped": 0,
            "corrupt": 0,
            "duplicates": 0,
            "tamper": 0,
            "transient_errors": 0,
        }

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def last_tip(self) -> Optional[ChainTip]:
        return self._last

    def start(self) -> "ChainConsumerLoop":
        """Start polling on a background thread"""
        with self._state_lock:
            if self._state is not LoopState.CREATED:
                raise RuntimeError(f"consumer loop for {self.topic} cannot start from state {self._state.value}")
            self._state = LoopState.RUNNING

        self._thread = threading.Thread(
            target=self._run,
            name=f"kafkachain-consumer-{self.topic}",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            f"now consuming messages from topic {self.topic}",
            extra={"topic": self.topic, "group_id": self.group_id},
        )
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel the loop and wait for it to release its connection.

        Idempotent and safe to call from any thread; calls after the first return at once.
        """
        with self._state_lock:
            if self._state in (LoopState.STOPPING, LoopState.STOPPED):
                return
            never_started = self._state is LoopState.CREATED
            self._state = LoopState.STOPPING if not never_started else LoopState.STOPPED

        self._cancel.set()
        if never_started:
            self._stopped.set()
            return

        reader = self._reader
        if reader is not None:
            reader.wakeup()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the loop to reach STOPPED; returns False on timeout"""
        return self._stopped.wait(timeout)

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "state": self._state.value,
            "compromised": self.compromised,
            "last_serial_nbr": self._last.last_serial_nbr if self._last else None,
        }

    def __enter__(self) -> "ChainConsumerLoop":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ===== Loop =====

    def _run(self) -> None:
        try:
            while not self._cancel.is_set():
                try:
                    with self.log.open_reader(self.group_id) as reader:
                        self._reader = reader
                        if self._cancel.is_set():
                            break
                        reader.subscribe([self.topic])
                        self._poll_until_cancelled(reader)
                except TransientBrokerError as exc:
                    self._transient(exc)
                finally:
                    self._reader = None
        finally:
            with self._state_lock:
                self._state = LoopState.STOPPED
            self._stopped.set()
            logger.info(
                "quitting the consumer loop thread",
                extra={"topic": self.topic, "group_id": self.group_id},
            )

    def _poll_until_cancelled(self, reader: LogReader) -> None:
        while not self._cancel.is_set():
            try:
                records = reader.poll(self.poll_timeout, self.max_batch)
            except TransientBrokerError as exc:
                self._transient(exc)
                continue
            self.process_batch(records)

    def _transient(self, exc: TransientBrokerError) -> None:
        self._stats["transient_errors"] += 1
        metrics.record_transient_error(self.topic)
        logger.warning(
            f"Kafka broker exception {exc}",
            extra={"topic": self.topic, "group_id": self.group_id, "error": str(exc)},
        )
        self._cancel.wait(self.retry_backoff)

    # ===== Record processing =====

    def process_batch(self, records) -> None:
        """Verify and deliver one poll batch, in order.

        The batch is finished even when a stop arrives; its offsets are already committed.
        """
        for record in records:
            self._process_record(record)

    def _process_record(self, record: LogRecord) -> None:
        location = {"topic": self.topic, "partition": record.partition, "offset": record.offset}

        try:
            teo = decode_record(record.value)
        except LegacyFormatError as exc:
            self._stats["legacy_skipped"] += 1
            metrics.record_legacy_skip(self.topic)
            logger.warning(f"dropping old version of tamper-evident object: {exc}", extra=location)
            return
        except CorruptRecordError as exc:
            exc.topic, exc.partition, exc.offset = self.topic, record.partition, record.offset
            self._stats["corrupt"] += 1
            metrics.record_corrupt(self.topic)
            logger.error(f"Skipping corrupt record: {exc}", extra=location)
            self._report(exc)
            return

        last = self._last
        if not verify(teo):
            reason: Optional[str] = "recomputed self hash does not match"
        elif last is not None and teo.self_hash == last.last_hash:
            self._stats["duplicates"] += 1
            metrics.record_duplicate(self.topic)
            logger.warning(
                "Skipping duplicate of the last accepted link",
                extra={**location, "serial_nbr": teo.serial_nbr},
            )
            return
        else:
            reason = self._link_violation(teo, last)

        # A rejected record still becomes the anchor, so one break yields one report
        self._last = ChainTip(topic=self.topic, last_hash=teo.self_hash, last_serial_nbr=teo.serial_nbr)
        if reason is not None:
            self._tamper(reason, teo, record)
            return

        metrics.record_verified(self.topic)
        self._deliver(teo, location)

    def _link_violation(self, teo: TamperEvidentObject, last: Optional[ChainTip]) -> Optional[str]:
        if last is None:
            if teo.serial_nbr == 1 and teo.previous_hash != genesis_hash():
                return "first record does not link to genesis"
            if teo.serial_nbr > 1:
                logger.info(
                    f"Anchoring chain verification at serial {teo.serial_nbr}",
                    extra={"topic": self.topic, "serial_nbr": teo.serial_nbr},
                )
            return None
        if teo.serial_nbr != last.last_serial_nbr + 1:
            return f"expected serial {last.last_serial_nbr + 1}, got {teo.serial_nbr}"
        if teo.previous_hash != last.last_hash:
            return "previous hash does not match predecessor"
        return None

    def _tamper(self, reason: str, teo: TamperEvidentObject, record: LogRecord) -> None:
        self.compromised = True
        self._stats["tamper"] += 1
        metrics.record_tamper(self.topic)
        error = TamperDetected(
            reason,
            topic=self.topic,
            serial_nbr=teo.serial_nbr,
            partition=record.partition,
            offset=record.offset,
        )
        logger.critical(
            str(error),
            extra={
                "topic": self.topic,
                "serial_nbr": teo.serial_nbr,
                "partition": record.partition,
                "offset": record.offset,
            },
        )
        self._report(error)

    def _deliver(self, teo: TamperEvidentObject, location: Dict[str, Any]) -> None:
        try:
            payload = deserialize_payload(teo.payload_bytes, self.payload_model)
        except LegacyFormatError as exc:
            self._stats["legacy_skipped"] += 1
            metrics.record_legacy_skip(self.topic)
            logger.warning(f"dropping payload of an old version: {exc}", extra=location)
            return
        except SerializationError as exc:
            self._stats["corrupt"] += 1
            metrics.record_corrupt(self.topic)
            logger.error(f"Verified record carries an undecodable payload: {exc}", extra=location)
            self._report(exc)
            return

        logger.debug(f"deserialized message {payload}", extra={**location, "serial_nbr": teo.serial_nbr})
        try:
            self.handler(payload)
        except Exception as exc:
            logger.error(
                f"Payload handler error: {exc}",
                extra={**location, "serial_nbr": teo.serial_nbr, "error": str(exc)},
                exc_info=True,
            )
            return
        self._stats["delivered"] += 1

    def _report(self, error: ChainError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as exc:
            logger.error(
                f"Error handler failed: {exc}",
                extra={"topic": self.topic, "error": str(exc)},
                exc_info=True,
            )
