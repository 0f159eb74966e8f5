"""Offline verification of a topic's whole chain"""
from typing import List, Optional

from kafkachain.config import settings
from kafkachain.errors import DecodeError
from kafkachain.log.base import ChainLog, LogRecord
from kafkachain.schemas.record import ChainVerifyResponse
from kafkachain.utils.chain import TamperEvidentObject, decode_record, genesis_hash, verify
from kafkachain.utils.logger import logger


class ChainVerifier:
    """Reads a topic from the beginning and checks every hash and every link"""

    def __init__(self, log: ChainLog, group_id: Optional[str] = None, timeout: Optional[float] = None):
        self.log = log
        self.group_id = group_id or f"{settings.RECOVERY_GROUP_ID}-verify"
        self.timeout = timeout if timeout is not None else settings.VERIFY_TIMEOUT_SECONDS

    def verify_topic(self, topic: str) -> ChainVerifyResponse:
        """
        Verify the chain stored on ``topic``.

        Raises:
            TransientBrokerError: If the log cannot be read, or the scan does not
                reach the end of every partition within ``timeout``.
        """
        with self.log.open_reader(self.group_id, commit=False) as reader:
            starts, ends = {}, {}
            for partition in reader.partitions_for(topic):
                starts[partition], ends[partition] = reader.watermarks(topic, partition)
            records = reader.scan(topic, starts, ends, self.timeout)

        result = verify_records(topic, records)
        logger.info(
            f"Chain verification of {topic}: valid={result.valid} entries={result.total_entries}",
            extra={"topic": topic, "serial_nbr": result.broken_at},
        )
        return result


def verify_records(topic: str, records: List[LogRecord]) -> ChainVerifyResponse:
    """Check that ``records`` form one unbroken chain starting at genesis.

    Records are ordered by serial number, not by delivery order. Legacy and
    corrupt records are counted as skipped; exact repeats of the previous link
    (retries after a lost acknowledgment) are counted as duplicates.
    """
    teos: List[TamperEvidentObject] = []
    skipped = 0
    for record in sorted(records, key=lambda r: (r.partition, r.offset)):
        try:
            teos.append(decode_record(record.value))
        except DecodeError:
            skipped += 1

    # Stable sort keeps (partition, offset) order among equal serials
    teos.sort(key=lambda t: t.serial_nbr)

    expected_previous = genesis_hash()
    expected_serial = 1
    duplicates = 0

    def broken(teo: TamperEvidentObject, reason: str) -> ChainVerifyResponse:
        return ChainVerifyResponse(
            topic=topic,
            valid=False,
            total_entries=len(teos),
            duplicates=duplicates,
            skipped=skipped,
            broken_at=teo.serial_nbr,
            reason=reason,
        )

    for teo in teos:
        if not verify(teo):
            return broken(teo, "recomputed self hash does not match")
        if expected_serial > 1 and teo.serial_nbr == expected_serial - 1 and teo.self_hash == expected_previous:
            duplicates += 1
            continue
        if teo.serial_nbr != expected_serial:
            return broken(teo, f"expected serial {expected_serial}, got {teo.serial_nbr}")
        if teo.previous_hash != expected_previous:
            return broken(teo, "previous hash does not match predecessor")
        expected_previous = teo.self_hash
        expected_serial += 1

    return ChainVerifyResponse(
        topic=topic,
        valid=True,
        total_entries=len(teos),
        duplicates=duplicates,
        skipped=skipped,
        broken_at=None,
    )
