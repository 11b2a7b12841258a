"""
topic_initializer.py - Kafka topic bootstrap for the storefront services

Creates whichever of the storefront topics (shared.events.ALL_TOPICS) the
cluster does not have yet. Brokers may come up after the services in
docker-compose, so the metadata request is retried with a fixed delay.

USAGE:
    create_topics("kafka:9092", replication_factor=1)
"""

import logging
import time
from typing import Iterable, List, Optional

from confluent_kafka import KafkaException
from confluent_kafka.admin import AdminClient, NewTopic

from shared.events import ALL_TOPICS

logger = logging.getLogger(__name__)


def missing_topics(admin_client: AdminClient, wanted: Iterable[str], timeout: float = 10) -> List[str]:
    existing = set(admin_client.list_topics(timeout=timeout).topics)
    return [topic for topic in wanted if topic not in existing]


def create_topics(
    bootstrap_servers: str,
    num_partitions: int = 3,
    replication_factor: int = 1,
    max_retries: int = 10,
    retry_delay: float = 3,
    topics: Optional[List[str]] = None,
) -> List[str]:
    """Create the missing storefront topics. Returns the names that were created."""
    admin_client = AdminClient({"bootstrap.servers": bootstrap_servers})
    wanted = topics or ALL_TOPICS

    for attempt in range(1, max_retries + 1):
        try:
            missing = missing_topics(admin_client, wanted)
            break
        except KafkaException as e:
            if attempt == max_retries:
                logger.error(f"Kafka unreachable after {max_retries} attempts: {e}")
                raise
            logger.warning(f"Kafka not ready (attempt {attempt}/{max_retries}): {e}. Retrying in {retry_delay}s...")
            time.sleep(retry_delay)

    if not missing:
        logger.info("All Kafka topics already exist")
        return []

    futures = admin_client.create_topics(
        [NewTopic(topic, num_partitions=num_partitions, replication_factor=replication_factor) for topic in missing]
    )
    created = []
    for topic, future in futures.items():
        try:
            future.result(timeout=10)
            created.append(topic)
            logger.info(f"Topic '{topic}' created")
        except KafkaException as e:
            # another service may have created it between the check and now
            if "TOPIC_ALREADY_EXISTS" in str(e) or "already exists" in str(e):
                logger.info(f"Topic '{topic}' already exists")
            else:
                logger.error(f"Error creating topic '{topic}': {e}")
                raise
    return created
