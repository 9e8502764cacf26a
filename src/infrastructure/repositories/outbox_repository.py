# src/infrastructure/repositories/outbox_repository.py

import json

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.infrastructure.db.models import OutboxEvent


class OutboxRepository:

    def __init__(self, db: Session):
        self.db = db

    def add_notification(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        recipient_user_id: str,
        message: str,
        dedupe_key: str,
    ) -> OutboxEvent | None:
        """
        Queues a notification in the caller's transaction. A second event
        with the same dedupe key is ignored.
        """
        existing = self.db.execute(
            select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key)
        ).scalar_one_or_none()
        if existing:
            return None

        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=json.dumps(
                {"recipient_user_id": recipient_user_id, "message": message},
                sort_keys=True,
            ),
            dedupe_key=dedupe_key,
            status="PENDING",
            attempts=0,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def get_by_ids(self, event_ids: list[str]) -> list[OutboxEvent]:
        if not event_ids:
            return []
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.id.in_(event_ids))
            .order_by(OutboxEvent.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_by_status(self, statuses: list[str], limit: int) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status.in_(statuses))
            .order_by(OutboxEvent.created_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())
