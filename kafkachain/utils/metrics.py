"""Prometheus metrics for chain producers and consumers"""
from prometheus_client import Counter


# ===== Prometheus Metrics =====

# Producer metrics
messages_produced_total = Counter(
    "kafkachain_messages_produced_total",
    "Total chained messages acknowledged by the log",
    ["topic"]
)

publish_failures_total = Counter(
    "kafkachain_publish_failures_total",
    "Total publishes rejected or not acknowledged",
    ["topic"]
)

tip_recoveries_total = Counter(
    "kafkachain_tip_recoveries_total",
    "Total cold-path chain tip recoveries",
    ["topic", "outcome"]  # recovered, genesis
)

# Consumer metrics
records_verified_total = Counter(
    "kafkachain_records_verified_total",
    "Total records whose hash and link verified",
    ["topic"]
)

tamper_detected_total = Counter(
    "kafkachain_tamper_detected_total",
    "Total chain integrity violations",
    ["topic"]
)

legacy_records_skipped_total = Counter(
    "kafkachain_legacy_records_skipped_total",
    "Total records skipped for an old wire version",
    ["topic"]
)

corrupt_records_total = Counter(
    "kafkachain_corrupt_records_total",
    "Total malformed records skipped",
    ["topic"]
)

duplicate_links_total = Counter(
    "kafkachain_duplicate_links_total",
    "Total records repeating an already accepted link",
    ["topic"]
)

transient_broker_errors_total = Counter(
    "kafkachain_transient_broker_errors_total",
    "Total poll or connect failures retried by the consumer loop",
    ["topic"]
)


def record_produced(topic: str):
    """Record an acknowledged chained publish"""
    messages_produced_total.labels(topic=topic).inc()


def record_publish_failure(topic: str):
    publish_failures_total.labels(topic=topic).inc()


def record_recovery(topic: str, outcome: str):
    """Record a cold recovery outcome (recovered or genesis)"""
    tip_recoveries_total.labels(topic=topic, outcome=outcome).inc()


def record_verified(topic: str):
    records_verified_total.labels(topic=topic).inc()


def record_tamper(topic: str):
    tamper_detected_total.labels(topic=topic).inc()


def record_legacy_skip(topic: str):
    legacy_records_skipped_total.labels(topic=topic).inc()


def record_corrupt(topic: str):
    corrupt_records_total.labels(topic=topic).inc()


def record_duplicate(topic: str):
    duplicate_links_total.labels(topic=topic).inc()


def record_transient_error(topic: str):
    transient_broker_errors_total.labels(topic=topic).inc()
