import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    type: str
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


class NotificationSink(ABC):
    @abstractmethod
    def notify(self, user_id: str, notification: Notification) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Delivers notifications to the log; stands in until a real channel is wired."""

    def notify(self, user_id: str, notification: Notification) -> None:
        logger.info(
            "Notify user %s [%s] %s: %s %s",
            user_id, notification.type, notification.title, notification.message, notification.data,
        )


def safe_notify(sink: NotificationSink, user_id: str, notification: Notification) -> bool:
    """Best-effort delivery: failures are logged, never raised."""
    try:
        sink.notify(user_id, notification)
        return True
    except Exception as e:
        logger.error("Failed to send %s notification to %s: %s", notification.type, user_id, e)
        return False
