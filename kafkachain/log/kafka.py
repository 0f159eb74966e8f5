"""Kafka log adapter built on confluent-kafka"""
import threading
from typing import Dict, List, Optional, Tuple

from confluent_kafka import Consumer, KafkaError, KafkaException, Message, Producer, TopicPartition
from confluent_kafka.admin import AdminClient, NewTopic

from kafkachain.errors import TransientBrokerError
from kafkachain.log.base import ChainLog, LogReader, LogRecord
from kafkachain.utils.logger import logger

# Broker metadata calls
_METADATA_TIMEOUT = 5.0


class KafkaReader(LogReader):
    """Kafka consumer connection.

    librdkafka offers no wakeup call, so ``wakeup`` short-circuits the next
    poll while an in-flight poll returns at the end of its bounded timeout.
    """

    def __init__(self, bootstrap_servers: str, group_id: str, client_id: str, commit: bool = True):
        try:
            self._consumer = Consumer({
                "bootstrap.servers": bootstrap_servers,
                "group.id": group_id,
                "client.id": client_id,
                "auto.offset.reset": "earliest",
                "enable.auto.commit": commit,
            })
        except KafkaException as exc:
            raise TransientBrokerError(f"consumer for group {group_id} could not be created: {exc}") from exc
        self._woken = threading.Event()
        self._closed = False
        self._close_lock = threading.Lock()

    def subscribe(self, topics: List[str]) -> None:
        try:
            self._consumer.subscribe(topics)
        except KafkaException as exc:
            raise TransientBrokerError(f"subscribe to {topics} failed: {exc}") from exc

    def poll(self, timeout: float, max_records: int = 500) -> List[LogRecord]:
        if self._woken.is_set():
            self._woken.clear()
            return []

        try:
            messages = self._consumer.consume(num_messages=max_records, timeout=timeout)
        except (KafkaException, RuntimeError) as exc:
            raise TransientBrokerError(f"poll failed: {exc}") from exc

        records: List[LogRecord] = []
        errors: List[str] = []
        for msg in messages:
            err = msg.error()
            if err is not None:
                if err.code() != KafkaError._PARTITION_EOF:
                    errors.append(err.str())
                continue
            records.append(_to_record(msg))

        if errors and not records:
            raise TransientBrokerError(f"poll returned broker errors: {'; '.join(errors)}")
        for error in errors:
            logger.warning(f"Broker error in poll batch: {error}", extra={"error": error})
        return records

    def wakeup(self) -> None:
        self._woken.set()

    def partitions_for(self, topic: str) -> List[int]:
        try:
            metadata = self._consumer.list_topics(topic, timeout=_METADATA_TIMEOUT)
        except KafkaException as exc:
            raise TransientBrokerError(f"metadata request for {topic} failed: {exc}") from exc
        topic_metadata = metadata.topics.get(topic)
        if topic_metadata is None or topic_metadata.error is not None:
            return []
        return sorted(topic_metadata.partitions)

    def watermarks(self, topic: str, partition: int) -> Tuple[int, int]:
        try:
            low, high = self._consumer.get_watermark_offsets(
                TopicPartition(topic, partition), timeout=_METADATA_TIMEOUT
            )
        except KafkaException as exc:
            raise TransientBrokerError(f"watermark request for {topic}/{partition} failed: {exc}") from exc
        return low, high

    def assign(self, topic: str, offsets: Dict[int, int]) -> None:
        try:
            self._consumer.assign([TopicPartition(topic, p, offset) for p, offset in offsets.items()])
        except (KafkaException, RuntimeError) as exc:
            raise TransientBrokerError(f"assign of {topic} partitions {sorted(offsets)} failed: {exc}") from exc

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._consumer.close()


class KafkaLog(ChainLog):
    """Publishes to and reads from a Kafka cluster"""

    def __init__(self, bootstrap_servers: str, client_id: str = "TEKafkaProducer"):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self._producer: Optional[Producer] = None
        self._producer_lock = threading.Lock()

    def _get_producer(self) -> Producer:
        with self._producer_lock:
            if self._producer is None:
                self._producer = Producer({
                    "bootstrap.servers": self.bootstrap_servers,
                    "client.id": self.client_id,
                    "acks": "all",
                })
            return self._producer

    def create_topic(self, name: str, partitions: int, replication_factor: int) -> None:
        admin = AdminClient({"bootstrap.servers": self.bootstrap_servers})
        futures = admin.create_topics([
            NewTopic(name, num_partitions=partitions, replication_factor=replication_factor)
        ])
        try:
            futures[name].result()
        except KafkaException as exc:
            if exc.args and exc.args[0].code() == KafkaError.TOPIC_ALREADY_EXISTS:
                logger.debug(f"Topic {name} already exists", extra={"topic": name})
                return
            raise TransientBrokerError(f"create topic {name} failed: {exc}") from exc
        logger.info(
            f"Created topic {name} ({partitions} partitions, replication {replication_factor})",
            extra={"topic": name},
        )

    def publish(self, topic: str, key: str, value: bytes, timeout: float) -> Tuple[int, int]:
        producer = self._get_producer()
        outcome: Dict[str, object] = {}

        def on_delivery(err: Optional[KafkaError], msg: Message) -> None:
            outcome["err"] = err
            outcome["msg"] = msg

        try:
            producer.produce(topic, key=key.encode("utf-8"), value=value, on_delivery=on_delivery)
        except (BufferError, KafkaException) as exc:
            raise TransientBrokerError(f"publish to {topic} rejected: {exc}") from exc

        producer.flush(timeout)
        if "msg" not in outcome:
            raise TransientBrokerError(f"publish to {topic} not acknowledged within {timeout}s")
        if outcome["err"] is not None:
            raise TransientBrokerError(f"publish to {topic} failed: {outcome['err']}")

        msg: Message = outcome["msg"]  # type: ignore[assignment]
        return msg.partition(), msg.offset()

    def open_reader(self, group_id: str, commit: bool = True) -> KafkaReader:
        return KafkaReader(self.bootstrap_servers, group_id, self.client_id, commit=commit)

    def close(self) -> None:
        with self._producer_lock:
            if self._producer is not None:
                self._producer.flush(_METADATA_TIMEOUT)
                self._producer = None


def _to_record(msg: Message) -> LogRecord:
    key = msg.key()
    return LogRecord(
        topic=msg.topic(),
        key=key.decode("utf-8", errors="replace") if key is not None else None,
        value=msg.value(),
        partition=msg.partition(),
        offset=msg.offset(),
    )
