"""External log backends"""
import threading
from typing import Dict, Optional

from kafkachain.config import settings
from kafkachain.log.base import ChainLog, LogReader, LogRecord
from kafkachain.log.memory import InMemoryLog

# memory://<name> resolves to the same instance within a process
_memory_logs: Dict[str, InMemoryLog] = {}
_memory_lock = threading.Lock()


def open_log(url: Optional[str] = None) -> ChainLog:
    """Return the log backend selected by ``url`` (default ``settings.LOG_BACKEND_URL``).

    Supported schemes:
      - ``kafka://host1:port1,host2:port2``: confluent-kafka adapter
      - ``memory://[name]``: shared in-process log
    """
    url = url or settings.LOG_BACKEND_URL
    scheme, _, location = url.partition("://")
    scheme = scheme.lower()

    if scheme == "memory":
        with _memory_lock:
            if location not in _memory_logs:
                _memory_logs[location] = InMemoryLog(default_partitions=settings.TOPIC_PARTITIONS)
            return _memory_logs[location]

    if scheme == "kafka":
        # Imported lazily so memory:// works without librdkafka loaded
        from kafkachain.log.kafka import KafkaLog
        return KafkaLog(location, client_id=settings.KAFKA_CLIENT_ID)

    raise ValueError(f"Unsupported log backend scheme '{scheme}'. Supported: kafka, memory")


__all__ = ["ChainLog", "InMemoryLog", "LogReader", "LogRecord", "open_log"]
