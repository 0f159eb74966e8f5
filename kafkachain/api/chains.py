"""Chain inspection endpoints"""
from fastapi import APIRouter, Depends, HTTPException, status

from kafkachain.api.deps import get_producer, get_verifier
from kafkachain.errors import TransientBrokerError
from kafkachain.producer import ChainProducer
from kafkachain.schemas.record import ChainTipResponse, ChainVerifyResponse
from kafkachain.utils.logger import logger
from kafkachain.verifier import ChainVerifier

router = APIRouter(prefix="/chains", tags=["chains"])


@router.get("/{topic}/tip", response_model=ChainTipResponse)
def get_tip(topic: str, producer: ChainProducer = Depends(get_producer)):
    """
    Return the current tip of a topic's chain.

    Served from the producer's cache when present, otherwise recovered by
    scanning the end of the topic. An empty or unknown topic reports the
    genesis tip (serial 0).
    """
    try:
        tip, source = producer.current_tip(topic)
    except TransientBrokerError as exc:
        logger.warning(f"Tip lookup failed: {exc}", extra={"topic": topic, "error": str(exc)})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))

    return ChainTipResponse(
        topic=topic,
        last_hash=tip.last_hash.hex(),
        last_serial_nbr=tip.last_serial_nbr,
        source=source,
    )


@router.get("/{topic}/verify", response_model=ChainVerifyResponse)
def verify_chain(topic: str, verifier: ChainVerifier = Depends(get_verifier)):
    """
    Verify the hash chain stored on a topic.

    Reads every record, orders them by serial number and recomputes each
    SHA-256 link from genesis. Returns whether the chain is intact and, if
    not, the serial number of the first broken link.
    """
    try:
        return verifier.verify_topic(topic)
    except TransientBrokerError as exc:
        logger.warning(f"Chain verification failed: {exc}", extra={"topic": topic, "error": str(exc)})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
