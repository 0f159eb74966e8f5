"""Tests for offline chain verification"""
import pytest

from kafkachain.config import settings
from kafkachain.errors import PublishError, TransientBrokerError
from kafkachain.producer import ChainProducer
from kafkachain.schemas.payload import serialize_payload
from kafkachain.utils.chain import TamperEvidentObject, decode_record, encode_record, genesis_hash, wrap
from kafkachain.verifier import ChainVerifier

from tests.conftest import legacy_record


@pytest.fixture
def verifier(memory_log) -> ChainVerifier:
    return ChainVerifier(memory_log, timeout=2.0)


def test_verify_intact_chain(producer: ChainProducer, verifier: ChainVerifier, topic: str):
    for n in range(8):
        producer.produce({"n": n}, topic)

    result = verifier.verify_topic(topic)
    assert result.valid is True
    assert result.total_entries == 8
    assert result.broken_at is None
    assert result.reason is None


def test_verify_empty_topic(verifier: ChainVerifier):
    result = verifier.verify_topic("never-written")
    assert result.valid is True
    assert result.total_entries == 0


def test_verify_detects_rewritten_record(producer: ChainProducer, memory_log, verifier: ChainVerifier, topic: str):
    """Test that the first altered record is reported as the break"""
    for n in range(5):
        producer.produce({"n": n}, topic)

    stored = memory_log.records(topic)[2]
    original = decode_record(stored.value)
    forged = TamperEvidentObject(
        payload_bytes=serialize_payload({"n": "forged"}),
        previous_hash=original.previous_hash,
        serial_nbr=original.serial_nbr,
        self_hash=original.self_hash,
    )
    memory_log.replace_value(topic, stored.partition, stored.offset, encode_record(forged))

    result = verifier.verify_topic(topic)
    assert result.valid is False
    assert result.broken_at == 3
    assert result.reason == "recomputed self hash does not match"


def test_verify_detects_gap(memory_log, verifier: ChainVerifier, topic: str):
    first = wrap({"n": 1}, genesis_hash(), 1)
    third = wrap({"n": 3}, first.self_hash, 3)
    memory_log.append_raw(topic, encode_record(first), key=topic)
    memory_log.append_raw(topic, encode_record(third), key=topic)

    result = verifier.verify_topic(topic)
    assert result.valid is False
    assert result.broken_at == 3
    assert result.reason == "expected serial 2, got 3"


def test_verify_detects_broken_link(memory_log, verifier: ChainVerifier, topic: str):
    first = wrap({"n": 1}, genesis_hash(), 1)
    stranger = wrap({"n": 2}, b"\x11" * 32, 2)
    memory_log.append_raw(topic, encode_record(first), key=topic)
    memory_log.append_raw(topic, encode_record(stranger), key=topic)

    result = verifier.verify_topic(topic)
    assert result.valid is False
    assert result.broken_at == 2
    assert result.reason == "previous hash does not match predecessor"


def test_verify_orders_by_serial(memory_log, verifier: ChainVerifier, topic: str):
    """Test that records spread over partitions verify in serial order"""
    first = wrap({"n": 1}, genesis_hash(), 1)
    second = wrap({"n": 2}, first.self_hash, 2)
    memory_log.append_raw(topic, encode_record(second), partition=0)
    memory_log.append_raw(topic, encode_record(first), partition=1)

    assert verifier.verify_topic(topic).valid is True


def test_verify_counts_duplicates_and_skips(producer: ChainProducer, memory_log, verifier: ChainVerifier, topic: str):
    memory_log.append_raw(topic, legacy_record(), key=topic)
    producer.produce({"n": 1}, topic)
    memory_log.lose_next_acks(1)
    with pytest.raises(PublishError):
        producer.produce({"n": 2}, topic)
    producer.produce({"n": 2}, topic)
    memory_log.append_raw(topic, b"\x00garbage", key=topic)

    result = verifier.verify_topic(topic)
    assert result.valid is True
    assert result.total_entries == 3
    assert result.duplicates == 1
    assert result.skipped == 2


def test_verify_incomplete_scan_raises(producer: ChainProducer, memory_log, topic: str):
    """Test that a chain which was not read to the end is never reported valid"""
    for n in range(3):
        producer.produce({"n": n}, topic)

    with pytest.raises(TransientBrokerError):
        ChainVerifier(memory_log, timeout=0.0).verify_topic(topic)


def test_verify_timeout_defaults_to_settings(memory_log, monkeypatch):
    monkeypatch.setattr(settings, "VERIFY_TIMEOUT_SECONDS", 4.0)
    assert ChainVerifier(memory_log).timeout == 4.0
