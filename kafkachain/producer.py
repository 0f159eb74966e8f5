"""Producer of hash-chained messages"""
from typing import Any, Optional, Tuple

from kafkachain.config import settings
from kafkachain.errors import PublishError, TransientBrokerError
from kafkachain.log.base import ChainLog
from kafkachain.recovery import ChainTipRecovery
from kafkachain.schemas.payload import check_round_trip, serialize_payload
from kafkachain.tip_cache import ChainTip, ChainTipCache
from kafkachain.utils.chain import TamperEvidentObject, encode_record, wrap_bytes
from kafkachain.utils.logger import logger
from kafkachain.utils.metrics import record_produced, record_publish_failure


class ChainProducer:
    """Wraps payloads as tamper-evident objects and appends them to their topic's chain.

    One producer owns one :class:`ChainTipCache`. For a given topic, the tip
    lookup, linking, publish and cache update run inside that topic's lock, so
    concurrent callers on the same topic are serialized and can never link two
    objects to the same parent. Callers on different topics do not block each other.

    Delivery is at-least-once: if a publish is stored but its acknowledgment is
    lost, ``produce`` raises ``PublishError`` and a retry appends a second record
    repeating the same link. Readers detect and skip such duplicates.
    """

    def __init__(
        self,
        log: ChainLog,
        cache: Optional[ChainTipCache] = None,
        recovery: Optional[ChainTipRecovery] = None,
        publish_timeout: Optional[float] = None,
        check_serialization: bool = True,
    ):
        self.log = log
        self.cache = cache if cache is not None else ChainTipCache()
        self.recovery = recovery if recovery is not None else ChainTipRecovery(log)
        self.publish_timeout = publish_timeout or settings.PUBLISH_TIMEOUT_SECONDS
        self.check_serialization = check_serialization

    def produce(self, payload: Any, topic: str) -> TamperEvidentObject:
        """Link ``payload`` to the tip of ``topic`` and publish it.

        Blocks until the log acknowledges the record.

        Returns:
            The published tamper-evident object.

        Raises:
            SerializationError: The payload cannot be encoded; nothing is published.
            PublishError: The tip could not be resolved or the log did not
                acknowledge the record. The cached tip is unchanged.
        """
        if not topic:
            raise ValueError("topic must be a non-empty string")

        with self.cache.exclusive(topic):
            tip = self._resolve_tip(topic)

            if self.check_serialization:
                payload_bytes = check_round_trip(payload)
            else:
                payload_bytes = serialize_payload(payload)
            teo = wrap_bytes(payload_bytes, tip.last_hash, tip.last_serial_nbr + 1)

            try:
                partition, offset = self.log.publish(topic, topic, encode_record(teo), self.publish_timeout)
            except TransientBrokerError as exc:
                record_publish_failure(topic)
                logger.error(
                    f"Publish failed: {exc}",
                    extra={"topic": topic, "serial_nbr": teo.serial_nbr, "error": str(exc)},
                )
                raise PublishError(str(exc), topic=topic, serial_nbr=teo.serial_nbr) from exc

            self.cache.put(topic, ChainTip(topic=topic, last_hash=teo.self_hash, last_serial_nbr=teo.serial_nbr))

        record_produced(topic)
        logger.debug(
            f"Published {teo}",
            extra={"topic": topic, "serial_nbr": teo.serial_nbr, "partition": partition, "offset": offset},
        )
        return teo

    def current_tip(self, topic: str) -> Tuple[ChainTip, str]:
        """Return the topic's tip and where it came from (``cache`` or ``recovery``).

        Raises:
            TransientBrokerError: If recovery cannot read the log.
        """
        with self.cache.exclusive(topic):
            tip = self.cache.get(topic)
            if tip is not None:
                return tip, "cache"
            return self.recovery.find_latest_tip(topic), "recovery"

    def create_topic(
        self,
        topic: str,
        partitions: Optional[int] = None,
        replication_factor: Optional[int] = None,
    ) -> None:
        """Create the topic backing a chain if it does not exist"""
        self.log.create_topic(
            topic,
            partitions or settings.TOPIC_PARTITIONS,
            replication_factor or settings.TOPIC_REPLICATION_FACTOR,
        )

    def close(self) -> None:
        """Drop cached tips and release the log's producer resources"""
        self.cache.clear()
        self.log.close()

    def __enter__(self) -> "ChainProducer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ===== Internal Methods =====

    def _resolve_tip(self, topic: str) -> ChainTip:
        tip = self.cache.get(topic)
        if tip is not None:
            logger.debug(f"cached chain tip: {tip}", extra={"topic": topic})
            return tip
        try:
            return self.recovery.find_latest_tip(topic)
        except TransientBrokerError as exc:
            record_publish_failure(topic)
            logger.error(
                f"Chain tip recovery failed: {exc}",
                extra={"topic": topic, "error": str(exc)},
            )
            raise PublishError(f"cannot recover chain tip: {exc}", topic=topic, serial_nbr=0) from exc
