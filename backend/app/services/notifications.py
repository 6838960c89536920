"""
Notifiche all'operatore
Progetto: Officina Budget Engine

Gli orchestratori segnalano gli esiti tramite un NotificationSink. Il sink
di default scrive sul log; gli errori HTTP vengono resi nella stessa forma
dagli exception handler di main.py.
"""

import logging
from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel

from app.core.exceptions import AppException

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS: dict[Severity, int] = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class Notification(BaseModel):
    """Messaggio per l'operatore: titolo, descrizione, gravità."""
    title: str
    description: str
    severity: Severity = Severity.INFO


class NotificationSink(Protocol):
    def notify(self, notification: Notification) -> None:
        ...


class LoggingNotificationSink:
    """Sink di default: scrive la notifica sul logger applicativo."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    def notify(self, notification: Notification) -> None:
        self._log.log(
            _LOG_LEVELS[notification.severity],
            "[%s] %s: %s",
            notification.severity.value,
            notification.title,
            notification.description,
        )


class CollectingNotificationSink:
    """Conserva le notifiche in memoria (test e chiamate batch)."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)


def notification_from_exception(exc: AppException) -> Notification:
    """Traduce un'eccezione applicativa nella notifica da mostrare."""
    try:
        severity = Severity(exc.severity)
    except ValueError:
        severity = Severity.ERROR
    return Notification(title=exc.title, description=exc.detail, severity=severity)
