"""
Notification sink contract.

Delivery (email, push, chat) lives outside the round engine. The engine
only reports what happened; a failing sink never blocks a transition.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from mixwarz.kernel.events import serialize_payload
from mixwarz.logging_config import get_logger

logger = get_logger(__name__)


class NotificationSink(ABC):
    """Receives lifecycle notifications and operator alerts."""

    @abstractmethod
    async def notify(
        self,
        event_type: str,
        competition_id: uuid.UUID,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """A competition changed state or produced results."""

    @abstractmethod
    async def alert(
        self,
        competition_id: uuid.UUID,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Something needs an operator's attention."""


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the application log."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    async def notify(
        self,
        event_type: str,
        competition_id: uuid.UUID,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.log.info(
            "Competition notification %s",
            event_type,
            extra={
                "event_type": event_type,
                "competition_id": str(competition_id),
                "payload": serialize_payload(payload or {}),
            },
        )

    async def alert(
        self,
        competition_id: uuid.UUID,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.log.error(
            "Competition alert: %s",
            message,
            extra={
                "competition_id": str(competition_id),
                "payload": serialize_payload(payload or {}),
            },
        )


async def notify_safely(
    sink: NotificationSink,
    event_type: str,
    competition_id: uuid.UUID,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """Deliver a notification, logging instead of raising on sink failure."""
    try:
        await sink.notify(event_type, competition_id, payload)
    except Exception:
        logger.exception(
            "Notification sink failed for %s",
            event_type,
            extra={"competition_id": str(competition_id)},
        )


async def alert_safely(
    sink: NotificationSink,
    competition_id: uuid.UUID,
    message: str,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """Deliver an alert, logging instead of raising on sink failure."""
    try:
        await sink.alert(competition_id, message, payload)
    except Exception:
        logger.exception(
            "Alert sink failed: %s",
            message,
            extra={"competition_id": str(competition_id)},
        )
