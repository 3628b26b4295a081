import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Operator alerting collaborator. Calls are best-effort."""

    async def notify_no_available_ports(self, subscription_id: str, customer_id: str) -> None:
        ...


class LoggingNotifier:
    """Default notifier: a WARNING record picked up by log-based alerting."""

    async def notify_no_available_ports(self, subscription_id: str, customer_id: str) -> None:
        logger.warning(
            "ADMIN NOTIFICATION: no available ports",
            extra={
                'subscription_id': subscription_id,
                'customer_id': customer_id,
                'alert': 'no_available_ports',
            }
        )
