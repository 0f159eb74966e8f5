"""API dependencies"""
import threading
from typing import Optional

from fastapi import Depends

from kafkachain.log import ChainLog, open_log
from kafkachain.producer import ChainProducer
from kafkachain.verifier import ChainVerifier

_producer: Optional[ChainProducer] = None
_producer_lock = threading.Lock()


def get_log() -> ChainLog:
    """Log backend selected by LOG_BACKEND_URL"""
    return open_log()


def get_producer(log: ChainLog = Depends(get_log)) -> ChainProducer:
    """Process-wide producer whose tip cache backs GET /chains/{topic}/tip"""
    global _producer
    with _producer_lock:
        if _producer is None:
            _producer = ChainProducer(log)
        return _producer


def get_verifier(log: ChainLog = Depends(get_log)) -> ChainVerifier:
    return ChainVerifier(log)
