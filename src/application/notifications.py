import json
import logging
import os
from typing import Protocol

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.domain.exceptions import NotificationDeliveryError
from src.domain.pricing import utc_now
from src.infrastructure.db.models import OutboxEvent, User
from src.infrastructure.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)


class SmsSender(Protocol):
    def send(self, phone: str, message: str) -> None:
        ...


class LoggingSmsSender:
    """Development backend: writes the message to the log instead of sending it."""

    def send(self, phone: str, message: str) -> None:
        logger.info("Mock SMS to %s: %s", phone, message)


class WebhookSmsSender:
    """Posts each message as JSON to an SMS gateway webhook."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def send(self, phone: str, message: str) -> None:
        try:
            response = requests.post(
                self.url,
                json={"to": phone, "body": message},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise NotificationDeliveryError(f"SMS gateway rejected message: {exc}") from exc


def build_sms_sender() -> SmsSender:
    backend = os.getenv("SMS_BACKEND", "log").lower()
    if backend == "webhook":
        url = os.getenv("SMS_WEBHOOK_URL")
        if not url:
            raise RuntimeError("SMS_BACKEND=webhook requires SMS_WEBHOOK_URL to be set.")
        return WebhookSmsSender(
            url=url,
            timeout=float(os.getenv("SMS_WEBHOOK_TIMEOUT", "5")),
        )
    return LoggingSmsSender()


class NotificationDispatcher:
    """
    Delivers outbox notifications after the business transaction has
    committed. Delivery failures are recorded on the outbox row and
    logged; they never reach the caller of the original operation.
    """

    def __init__(self, db: Session, sender: SmsSender, max_attempts: int | None = None):
        self.db = db
        self.sender = sender
        self.outbox = OutboxRepository(db)
        self.max_attempts = (
            max_attempts
            if max_attempts is not None
            else int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "5"))
        )

    def dispatch(self, event_ids: list[str]) -> int:
        if not event_ids:
            return 0
        return self._deliver_all(self.outbox.get_by_ids(event_ids))

    def dispatch_pending(self, limit: int = 50) -> int:
        return self._deliver_all(self.outbox.list_by_status(["PENDING", "FAILED"], limit))

    def _deliver_all(self, events: list[OutboxEvent]) -> int:
        delivered = 0
        for event in events:
            if event.status in ("PUBLISHED", "ABANDONED"):
                continue
            if self._deliver(event):
                delivered += 1

        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not record notification delivery results.")
        return delivered

    def _deliver(self, event: OutboxEvent) -> bool:
        payload = json.loads(event.payload)
        event.attempts += 1

        recipient = self.db.get(User, payload["recipient_user_id"])
        if recipient is None:
            event.status = "ABANDONED"
            event.last_error = "Recipient not found"
            logger.warning("Notification %s has no recipient, abandoning.", event.id)
            return False

        try:
            self.sender.send(recipient.phone, payload["message"])
        except NotificationDeliveryError as exc:
            self._record_failure(event, str(exc))
            logger.warning(
                "Notification %s (%s) failed: %s",
                event.id,
                event.event_type,
                exc,
            )
            return False
        except Exception as exc:
            # The business change is already committed.
            self._record_failure(event, f"{type(exc).__name__}: {exc}")
            logger.exception("Notification %s (%s) raised unexpectedly.", event.id, event.event_type)
            return False

        event.status = "PUBLISHED"
        event.published_at = utc_now()
        event.last_error = None
        return True

    def _record_failure(self, event: OutboxEvent, error: str) -> None:
        event.last_error = error
        if event.attempts >= self.max_attempts:
            event.status = "ABANDONED"
            logger.error("Notification %s abandoned after %s attempts.", event.id, event.attempts)
        else:
            event.status = "FAILED"
