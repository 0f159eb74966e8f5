"""Tests for the chained-message producer"""
import threading
from typing import List

import pytest

from kafkachain.errors import PublishError, SerializationError
from kafkachain.producer import ChainProducer
from kafkachain.schemas.payload import DemoPayload
from kafkachain.utils.chain import TamperEvidentObject, decode_record, genesis_hash, verify
from kafkachain.verifier import verify_records


def _chain(memory_log, topic) -> List[TamperEvidentObject]:
    return [decode_record(r.value) for r in memory_log.records(topic)]


def test_produce_demo_chain(producer: ChainProducer, topic: str):
    """Test the concrete abc/def scenario on an empty topic"""
    first = producer.produce(DemoPayload(string="abc", integer=1), topic)
    second = producer.produce(DemoPayload(string="def", integer=2), topic)

    assert first.serial_nbr == 1
    assert first.previous_hash == genesis_hash()
    assert second.serial_nbr == 2
    assert second.previous_hash == first.self_hash
    assert verify(first) and verify(second)


def test_produce_sequence_is_contiguous(producer: ChainProducer, memory_log, topic: str):
    """Test that N produces yield serials 1..N, each linked to its predecessor"""
    produced = [producer.produce({"n": i}, topic) for i in range(10)]

    assert [t.serial_nbr for t in produced] == list(range(1, 11))
    assert produced[0].previous_hash == genesis_hash()
    for previous, current in zip(produced, produced[1:]):
        assert current.previous_hash == previous.self_hash

    # What reached the log is exactly what produce returned
    assert _chain(memory_log, topic) == produced


def test_produce_keys_records_by_topic(producer: ChainProducer, memory_log, topic: str):
    """Test that a chain lives in a single partition"""
    for i in range(6):
        producer.produce({"n": i}, topic)

    records = memory_log.records(topic)
    assert {r.key for r in records} == {topic}
    assert len({r.partition for r in records}) == 1


def test_produce_updates_cache(producer: ChainProducer, topic: str):
    teo = producer.produce(DemoPayload(string="abc", integer=1), topic)

    tip = producer.cache.get(topic)
    assert tip.last_hash == teo.self_hash
    assert tip.last_serial_nbr == 1


def test_topics_are_independent(producer: ChainProducer):
    """Test that each topic starts its own chain at genesis"""
    a1 = producer.produce({"n": 1}, "chain-a")
    b1 = producer.produce({"n": 1}, "chain-b")
    a2 = producer.produce({"n": 2}, "chain-a")

    assert a1.serial_nbr == b1.serial_nbr == 1
    assert a1.previous_hash == b1.previous_hash == genesis_hash()
    assert a2.serial_nbr == 2
    assert a2.previous_hash == a1.self_hash


def test_publish_failure_leaves_cache_unchanged(producer: ChainProducer, memory_log, topic: str):
    """Test that a rejected publish can be retried with the same link"""
    first = producer.produce({"n": 1}, topic)
    memory_log.fail_next_publishes(1)

    with pytest.raises(PublishError) as exc_info:
        producer.produce({"n": 2}, topic)
    assert exc_info.value.topic == topic
    assert exc_info.value.serial_nbr == 2

    tip = producer.cache.get(topic)
    assert tip.last_serial_nbr == 1
    assert tip.last_hash == first.self_hash
    assert len(memory_log.records(topic)) == 1

    retried = producer.produce({"n": 2}, topic)
    assert retried.serial_nbr == 2
    assert retried.previous_hash == first.self_hash


def test_lost_ack_retry_duplicates_link(producer: ChainProducer, memory_log, topic: str):
    """Test the documented at-least-once caveat: a lost ack plus retry stores the link twice"""
    producer.produce({"n": 1}, topic)
    memory_log.lose_next_acks(1)

    with pytest.raises(PublishError):
        producer.produce({"n": 2}, topic)
    retried = producer.produce({"n": 2}, topic)

    chain = _chain(memory_log, topic)
    assert len(chain) == 3
    assert chain[1] == chain[2] == retried

    result = verify_records(topic, memory_log.records(topic))
    assert result.valid is True
    assert result.duplicates == 1


def test_unserializable_payload_publishes_nothing(producer: ChainProducer, memory_log, topic: str):
    with pytest.raises(SerializationError):
        producer.produce({"bad": object()}, topic)

    assert memory_log.records(topic) == []
    assert producer.cache.get(topic) is None


def test_produce_requires_topic(producer: ChainProducer):
    with pytest.raises(ValueError):
        producer.produce({"n": 1}, "")


def test_recovery_failure_is_publish_error(memory_log, topic: str):
    """Test that an unreadable log never silently restarts the chain at genesis"""
    ChainProducer(memory_log).produce({"n": 1}, topic)

    restarted = ChainProducer(memory_log)
    memory_log.fail_next_polls(1)
    with pytest.raises(PublishError):
        restarted.produce({"n": 2}, topic)

    assert len(memory_log.records(topic)) == 1
    assert restarted.produce({"n": 2}, topic).serial_nbr == 2


def test_concurrent_produce_keeps_single_chain(producer: ChainProducer, memory_log, topic: str):
    """Test that concurrent producers on one topic never fork the chain"""
    threads_count, per_thread = 8, 25
    produced: List[TamperEvidentObject] = []
    produced_lock = threading.Lock()
    failures: List[BaseException] = []
    start = threading.Barrier(threads_count)

    def worker(worker_id: int):
        start.wait()
        try:
            for i in range(per_thread):
                teo = producer.produce({"worker": worker_id, "i": i}, topic)
                with produced_lock:
                    produced.append(teo)
        except BaseException as exc:  # surfaced by the assertion below
            failures.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert failures == []
    total = threads_count * per_thread
    assert sorted(t.serial_nbr for t in produced) == list(range(1, total + 1))
    assert len({t.previous_hash for t in produced}) == total

    stored = _chain(memory_log, topic)
    assert [t.serial_nbr for t in stored] == list(range(1, total + 1))
    assert verify_records(topic, memory_log.records(topic)).valid is True


def test_current_tip_sources(producer: ChainProducer, topic: str):
    tip, source = producer.current_tip(topic)
    assert source == "recovery"
    assert tip.is_genesis

    producer.produce({"n": 1}, topic)
    tip, source = producer.current_tip(topic)
    assert source == "cache"
    assert tip.last_serial_nbr == 1


def test_create_topic(producer: ChainProducer, memory_log):
    producer.create_topic("fresh-chain", partitions=5, replication_factor=1)
    with memory_log.open_reader("probe") as reader:
        assert reader.partitions_for("fresh-chain") == [0, 1, 2, 3, 4]
