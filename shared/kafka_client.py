"""
kafka_client.py - Kafka Producer Wrapper

PURPOSE:
    Reusable Kafka producer with JSON serialization and delivery reports,
    plus a best-effort publish helper for side-channel events.

PRODUCER FEATURES:
    - JSON serialization of pydantic events (or plain dicts)
    - Delivery callbacks for tracking
    - All replicas acknowledgment (acks=all), 3 client retries
    - Snappy compression

USAGE:
    producer = BaseKafkaProducer("localhost:9092", client_id="cart-producer")
    producer.publish("cart.item_added", event)
    producer.close()

ERROR HANDLING:
    - publish() logs and re-raises
    - publish_quietly() logs and returns False; used after the state change
      has already been committed, where the event is informational
"""

import json
import logging
from typing import Any, Dict, Optional, Union

from confluent_kafka import Producer
from confluent_kafka.error import KafkaError

from shared.events import BaseEvent

logger = logging.getLogger(__name__)


class BaseKafkaProducer:
    """
    Base Kafka producer with JSON serialization and delivery callbacks.

    Features:
        - Automatic JSON serialization of events
        - Delivery acknowledgment from all replicas (acks=all)
        - 3 retry attempts inside the client library
        - Snappy compression
    """

    def __init__(self, bootstrap_servers: str, client_id: str = "producer"):
        """
        Initialize Kafka producer.

        Args:
            bootstrap_servers: Comma-separated Kafka broker addresses
            client_id: Unique identifier for this producer instance
        """
        self.config = {
            "bootstrap.servers": bootstrap_servers,
            "client.id": client_id,
            "acks": "all",
            "retries": 3,
            "compression.type": "snappy",
        }
        self.producer = Producer(self.config)

    def _delivery_report(self, err: Optional[KafkaError], msg) -> None:
        """Delivery report handler called by producer on message delivery."""
        if err is not None:
            logger.error(f"Message delivery failed: {err}")
        else:
            logger.info(
                f"Message delivered to topic={msg.topic()}, "
                f"partition={msg.partition()}, offset={msg.offset()}"
            )

    def publish(self, topic: str, event: Union[BaseEvent, Dict[str, Any]], key: Optional[str] = None) -> None:
        """Publish event to Kafka topic. Events sharing a key land on one partition, in order."""
        try:
            if isinstance(event, dict):
                message = json.dumps(event, default=str)
                event_type = event.get("event_type", "unknown")
                correlation_id = event.get("correlation_id", "unknown")
            else:
                message = event.model_dump_json()
                event_type = event.event_type
                correlation_id = event.correlation_id

            self.producer.produce(
                topic=topic,
                key=key.encode("utf-8") if key else None,
                value=message.encode("utf-8"),
                callback=self._delivery_report,
            )
            self.producer.flush()
            logger.info(
                f"Published event to {topic}",
                extra={"event_type": event_type, "correlation_id": correlation_id},
            )
        except Exception as e:
            logger.error(f"Error publishing event to {topic}: {e}")
            raise

    def close(self) -> None:
        """Flush before shutdown; confluent-kafka producers have no close()."""
        self.producer.flush()


def event_key(event: BaseEvent) -> Optional[str]:
    """Partition key: the cart owner or paying user, so one shopper's events stay ordered."""
    for field in ("owner", "user_id", "product_id", "discount_id"):
        value = getattr(event, field, None)
        if value:
            return str(value)
    return None


def publish_quietly(producer, event: BaseEvent) -> bool:
    """Publish `event` to the topic named by its type; log instead of raising."""
    if producer is None:
        logger.warning(f"No producer configured, dropping {event.event_type} event")
        return False
    try:
        producer.publish(event.event_type, event, key=event_key(event))
        return True
    except Exception:
        logger.exception(
            f"Failed to publish {event.event_type} event",
            extra={"event_type": event.event_type, "correlation_id": event.correlation_id},
        )
        return False
