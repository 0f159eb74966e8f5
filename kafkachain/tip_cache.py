"""Chain tip cache with one exclusive lock per topic"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from kafkachain.utils.chain import genesis_hash


@dataclass(frozen=True)
class ChainTip:
    """Head of a topic's chain: the newest (hash, serial number) pair"""

    topic: str
    last_hash: bytes
    last_serial_nbr: int

    @classmethod
    def genesis(cls, topic: str) -> "ChainTip":
        """Tip of an empty chain; the next object gets serial 1 and links to genesis"""
        return cls(topic=topic, last_hash=genesis_hash(), last_serial_nbr=0)

    @property
    def is_genesis(self) -> bool:
        return self.last_serial_nbr == 0

    def __str__(self) -> str:
        return f"[ChainTip, topic={self.topic}, serial_nbr={self.last_serial_nbr}, hash={self.last_hash.hex()[:12]}]"


class ChainTipCache:
    """Topic -> ChainTip map owned by a producer.

    ``exclusive(topic)`` yields the topic's lock. Callers hold it across the whole
    read-link-publish-write sequence; topics never share a lock, so producers on
    different topics do not contend.
    """

    def __init__(self):
        self._tips: Dict[str, ChainTip] = {}
        self._locks: Dict[str, threading.Lock] = {}
        # Guards the two dicts only, never held while publishing
        self._registry_lock = threading.Lock()

    def lock_for(self, topic: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(topic)
            if lock is None:
                lock = self._locks[topic] = threading.Lock()
            return lock

    @contextmanager
    def exclusive(self, topic: str) -> Iterator[None]:
        """Hold the topic's critical section for the duration of the block"""
        with self.lock_for(topic):
            yield

    def get(self, topic: str) -> Optional[ChainTip]:
        with self._registry_lock:
            return self._tips.get(topic)

    def put(self, topic: str, tip: ChainTip) -> None:
        if tip.topic != topic:
            raise ValueError(f"tip for {tip.topic} cannot be cached under {topic}")
        with self._registry_lock:
            self._tips[topic] = tip

    def invalidate(self, topic: str) -> None:
        """Forget a topic's tip so the next produce recovers it from the log"""
        with self._registry_lock:
            self._tips.pop(topic, None)

    def topics(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._tips)

    def clear(self) -> None:
        with self._registry_lock:
            self._tips.clear()
