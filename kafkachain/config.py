"""Application configuration"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Log backend: kafka://host1:port1,host2:port2 or memory://
    LOG_BACKEND_URL: str = "kafka://localhost:9092"

    # Kafka clients
    KAFKA_CLIENT_ID: str = "TEKafkaProducer"
    KAFKA_GROUP_ID: str = "demo-blockchain-consumers"
    RECOVERY_GROUP_ID: str = "kafkachain-tip-recovery"

    # Topic creation
    TOPIC_PARTITIONS: int = 3
    TOPIC_REPLICATION_FACTOR: int = 3

    # Consumer loop
    CONSUMER_POLL_TIMEOUT_MS: int = 100
    CONSUMER_MAX_BATCH: int = 500
    CONSUMER_RETRY_BACKOFF_MS: int = 500

    # Producer
    PUBLISH_TIMEOUT_SECONDS: float = 10.0

    # Cold recovery: records read back from the end of each partition
    RECOVERY_LOOKBACK: int = 10
    RECOVERY_TIMEOUT_SECONDS: float = 10.0

    # Full-chain audit scan
    VERIFY_TIMEOUT_SECONDS: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    # Tamper alerts (fire-and-forget webhook)
    WEBHOOK_URL: Optional[str] = None
    WEBHOOK_SECRET: Optional[str] = None       # If set, signs body with HMAC-SHA256

    # Inspection API
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    METRICS_ENABLED: bool = True
    METRICS_PATH: str = "/metrics"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def backend_scheme(self) -> str:
        """Scheme part of LOG_BACKEND_URL (``kafka`` or ``memory``)"""
        return self.LOG_BACKEND_URL.split("://", 1)[0].lower()

    @property
    def bootstrap_servers(self) -> str:
        """Broker seed addresses formed as ``host1:port1,host2:port2``"""
        return self.LOG_BACKEND_URL.split("://", 1)[-1]

    @property
    def poll_timeout_seconds(self) -> float:
        return self.CONSUMER_POLL_TIMEOUT_MS / 1000.0


settings = Settings()
