"""Pytest configuration and fixtures"""
import json
import threading
import time
from typing import Any, Callable, Generator, List

import pytest
from fastapi.testclient import TestClient

from kafkachain.api.deps import get_log, get_producer, get_verifier
from kafkachain.log.memory import InMemoryLog, InMemoryReader
from kafkachain.main import app
from kafkachain.producer import ChainProducer
from kafkachain.verifier import ChainVerifier

TOPIC = "kafka-demo-blockchain"


class RecordingLog(InMemoryLog):
    """In-memory log that remembers every reader it opened"""

    def __init__(self, default_partitions: int = 3):
        super().__init__(default_partitions=default_partitions)
        self.readers: List[InMemoryReader] = []

    def open_reader(self, group_id: str, commit: bool = True) -> InMemoryReader:
        reader = super().open_reader(group_id, commit)
        self.readers.append(reader)
        return reader


class Collector:
    """Thread-safe payload handler"""

    def __init__(self):
        self.items: List[Any] = []
        self._lock = threading.Lock()

    def __call__(self, item: Any) -> None:
        with self._lock:
            self.items.append(item)

    def __len__(self) -> int:
        with self._lock:
            return len(self.items)


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def legacy_record(version: int = 1) -> bytes:
    """A record value written by an older producer"""
    return json.dumps({"format_version": version, "object": "rO0ABXNyAA=="}).encode()


@pytest.fixture
def topic() -> str:
    return TOPIC


@pytest.fixture
def memory_log() -> RecordingLog:
    """Fresh in-memory log for each test"""
    return RecordingLog(default_partitions=3)


@pytest.fixture
def producer(memory_log: RecordingLog) -> Generator[ChainProducer, None, None]:
    """Producer with an empty tip cache"""
    chain_producer = ChainProducer(memory_log, publish_timeout=1.0)
    yield chain_producer
    chain_producer.cache.clear()


@pytest.fixture
def payloads() -> Collector:
    return Collector()


@pytest.fixture
def errors() -> Collector:
    return Collector()


@pytest.fixture
def client(memory_log: RecordingLog, producer: ChainProducer) -> Generator[TestClient, None, None]:
    """Create test client backed by the in-memory log"""
    app.dependency_overrides[get_log] = lambda: memory_log
    app.dependency_overrides[get_producer] = lambda: producer
    app.dependency_overrides[get_verifier] = lambda: ChainVerifier(memory_log, timeout=2.0)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
