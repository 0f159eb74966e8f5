"""Tests for broker error translation in the Kafka adapter"""
import time

import pytest
from confluent_kafka import KafkaException

from kafkachain.consumer import ChainConsumerLoop, LoopState
from kafkachain.errors import TransientBrokerError
from kafkachain.log import kafka as kafka_log
from kafkachain.log.kafka import KafkaLog, KafkaReader

from tests.conftest import Collector, wait_for


class FakeConsumer:
    """Stands in for confluent_kafka.Consumer; fails the configured calls"""

    fail_constructions = 0
    fail_assign = False

    def __init__(self, config):
        if FakeConsumer.fail_constructions:
            FakeConsumer.fail_constructions -= 1
            raise KafkaException("broker transport failure")
        self.config = config

    def subscribe(self, topics):
        self.topics = topics

    def assign(self, partitions):
        if FakeConsumer.fail_assign:
            raise KafkaException("assignment rejected")

    def consume(self, num_messages=1, timeout=-1):
        time.sleep(min(timeout, 0.01))
        return []

    def close(self):
        pass


@pytest.fixture
def fake_consumer(monkeypatch):
    FakeConsumer.fail_constructions = 0
    FakeConsumer.fail_assign = False
    monkeypatch.setattr(kafka_log, "Consumer", FakeConsumer)
    return FakeConsumer


def test_consumer_creation_failure_is_transient(fake_consumer):
    fake_consumer.fail_constructions = 1
    with pytest.raises(TransientBrokerError):
        KafkaReader("localhost:9092", "g", "client")


def test_assign_failure_is_transient(fake_consumer):
    fake_consumer.fail_assign = True
    reader = KafkaReader("localhost:9092", "g", "client")
    with pytest.raises(TransientBrokerError):
        reader.assign("t", {0: 0})


def test_loop_survives_connect_failure(fake_consumer):
    """Test that a failed reader connection is retried instead of ending the loop"""
    fake_consumer.fail_constructions = 2
    loop = ChainConsumerLoop(
        KafkaLog("localhost:9092"),
        "t",
        Collector(),
        poll_timeout=0.01,
        retry_backoff=0.01,
    ).start()
    try:
        assert wait_for(lambda: loop.stats()["transient_errors"] == 2)
        time.sleep(0.05)
        assert loop.state is LoopState.RUNNING
    finally:
        loop.stop(timeout=5)
    assert loop.state is LoopState.STOPPED
