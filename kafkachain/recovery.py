"""Cold-path recovery of a chain tip from the log.

Used when the in-process cache has no entry for a topic (first produce in this
process, or after a restart). A throwaway reader reads back the last few
records of every partition and the verified record with the highest
``serial_nbr`` becomes the tip. The serial number is the total order: partition
ids and offsets carry no ordering meaning across partitions.
"""
from typing import Dict, List, Optional, Tuple

from kafkachain.config import settings
from kafkachain.errors import DecodeError
from kafkachain.log.base import ChainLog, LogRecord
from kafkachain.tip_cache import ChainTip
from kafkachain.utils.chain import TamperEvidentObject, decode_record, verify
from kafkachain.utils.logger import logger
from kafkachain.utils.metrics import record_recovery


class ChainTipRecovery:
    """Reconstructs a topic's chain tip by scanning the log"""

    def __init__(
        self,
        log: ChainLog,
        group_id: Optional[str] = None,
        lookback: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.log = log
        self.group_id = group_id or settings.RECOVERY_GROUP_ID
        self.lookback = lookback or settings.RECOVERY_LOOKBACK
        self.timeout = timeout if timeout is not None else settings.RECOVERY_TIMEOUT_SECONDS

    def find_latest_tip(self, topic: str) -> ChainTip:
        """Return the tip matching the newest chained record of ``topic``.

        Returns the genesis tip when the topic is empty, unknown, or holds no
        verifiable chained record. The read-back window doubles until a chained
        record is found or whole partitions have been read.

        Raises:
            TransientBrokerError: If the log cannot be read, or a partition is
                not read to its end within ``timeout``.
        """
        lookback = self.lookback
        with self.log.open_reader(self.group_id, commit=False) as reader:
            partitions = reader.partitions_for(topic)
            if not partitions:
                return self._genesis(topic, "topic does not exist")

            bounds: Dict[int, Tuple[int, int]] = {
                p: reader.watermarks(topic, p) for p in partitions
            }

            while True:
                starts = {p: max(low, high - lookback) for p, (low, high) in bounds.items()}
                ends = {p: high for p, (_, high) in bounds.items()}
                records = reader.scan(topic, starts, ends, self.timeout)

                tip = select_tip(topic, records)
                if tip is not None:
                    record_recovery(topic, "recovered")
                    logger.info(
                        f"retrieved chain tip: {tip}",
                        extra={"topic": topic, "serial_nbr": tip.last_serial_nbr},
                    )
                    return tip

                if all(starts[p] == bounds[p][0] for p in partitions):
                    return self._genesis(topic, "no chained records found")
                lookback *= 2

    def _genesis(self, topic: str, why: str) -> ChainTip:
        record_recovery(topic, "genesis")
        tip = ChainTip.genesis(topic)
        logger.info(f"initial chain tip for {topic} ({why}): {tip}", extra={"topic": topic})
        return tip


def select_tip(topic: str, records: List[LogRecord]) -> Optional[ChainTip]:
    """Pick the verified record with the highest serial number.

    Equal serials with different hashes indicate a fork; the record at the
    lowest (partition, offset) wins and a warning is logged.
    """
    best: Optional[TamperEvidentObject] = None
    for record in sorted(records, key=lambda r: (r.partition, r.offset)):
        try:
            teo = decode_record(record.value)
        except DecodeError as exc:
            logger.debug(
                f"Recovery skipping undecodable record: {exc}",
                extra={"topic": topic, "partition": record.partition, "offset": record.offset},
            )
            continue

        if not verify(teo):
            logger.warning(
                "Recovery ignoring record that fails its hash check",
                extra={
                    "topic": topic,
                    "serial_nbr": teo.serial_nbr,
                    "partition": record.partition,
                    "offset": record.offset,
                },
            )
            continue

        if best is None or teo.serial_nbr > best.serial_nbr:
            best = teo
        elif teo.serial_nbr == best.serial_nbr and teo.self_hash != best.self_hash:
            logger.warning(
                f"Chain fork at serial {teo.serial_nbr}; keeping the earliest record",
                extra={"topic": topic, "serial_nbr": teo.serial_nbr, "partition": record.partition},
            )

    if best is None:
        return None
    return ChainTip(topic=topic, last_hash=best.self_hash, last_serial_nbr=best.serial_nbr)
