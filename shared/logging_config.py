"""
logging_config.py - Centralized JSON Logging Configuration

PURPOSE:
    Structured JSON logging for the storefront services (cart-service,
    payment-service) with timezone-aware timestamps and service context.

JSON LOG FIELDS:
    - timestamp: ISO 8601 in the configured timezone
    - level: Log level (INFO, ERROR, WARNING, DEBUG, CRITICAL)
    - logger: Module name where the log originated
    - message: The log message
    - service_name: Name of the service (injected by ServiceFilter)
    - correlation_id, event_type, owner: Optional context passed via `extra=`
    - exception: Stack trace when exc_info is set

USAGE:
    from shared.logging_config import setup_logging
    setup_logging("cart-service", level="INFO")

    logger = logging.getLogger(__name__)
    logger.info("Merged guest cart", extra={"event_type": "cart.merged"})

EXAMPLE JSON OUTPUT:
    {
        "timestamp": "2026-10-18T09:12:03.120045+00:00",
        "level": "INFO",
        "logger": "services.cart_service.cart_repository",
        "message": "Merged guest cart session_1760778723_k3j2h1g0f into user 5b1e...",
        "service_name": "cart-service"
    }
"""

import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict
from zoneinfo import ZoneInfo

CONTEXT_FIELDS = ("service_name", "correlation_id", "event_type", "owner")


class JsonFormatter(logging.Formatter):
    """Custom formatter that outputs JSON logs with correlation context."""

    def __init__(self, tz: str = "UTC"):
        super().__init__()
        self.tz = ZoneInfo(tz)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, self.tz).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ServiceFilter(logging.Filter):
    """Stamps every record with the owning service name."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        return True


def setup_logging(service_name: str, level: str = "INFO", tz: str = "UTC") -> None:
    """Setup JSON logging for a service."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(tz))
    handler.addFilter(ServiceFilter(service_name))

    logger = logging.getLogger()
    logger.setLevel(level)
    # replace handlers installed by an earlier call (uvicorn reload, tests)
    for existing in list(logger.handlers):
        if isinstance(existing.formatter, JsonFormatter):
            logger.removeHandler(existing)
    logger.addHandler(handler)
