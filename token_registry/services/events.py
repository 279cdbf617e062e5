"""Event bus: published events are logged and appended to the audit table."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from token_registry.models.audit import AuditEvent
from token_registry.services.clock import Clock, SystemClock
from token_registry.services.storage import to_datetime

logger = logging.getLogger(__name__)


class EventBus:
    """
    Fire-and-forget publisher.

    Events ride the caller's transaction, so an operation that rolls back
    publishes nothing. Subsequent reads never depend on them.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    def publish(
        self,
        topic: str,
        entity_id: str,
        actor: Optional[str],
        payload: Optional[dict] = None,
        entity_type: str = "Token"
    ) -> AuditEvent:
        event = AuditEvent(
            event_type=topic,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=actor,
            created_at=to_datetime(self.clock.now()),
            payload_json=payload or {}
        )
        self.db.add(event)
        logger.debug("Published %s for %s %s by %s", topic, entity_type, entity_id, actor)
        return event
