"""
Audit event model - the durable sink behind the event bus.

Every lifecycle and metadata event published by the registry is written
here. Rows are append-only: once written they are never edited or deleted.
"""
from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, JSON

from token_registry.database import Base


class AuditEvent(Base):
    """
    Immutable record of one published event.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_type = Column(String, nullable=False, index=True)  # e.g., "token_issued"
    entity_type = Column(String, nullable=False)  # "Token" or "Registry"
    entity_id = Column(String, nullable=False, index=True)  # token id, or "admin"
    user_id = Column(String, nullable=True)  # acting principal
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)  # set from the registry clock
    payload_json = Column(JSON, nullable=True)


class AuditEventType:
    """Enumeration of audit event types."""
    # Token lifecycle
    TOKEN_ISSUED = "token_issued"
    TOKEN_TRANSFERRED = "token_transferred"

    # Registry administration
    ADMIN_SET = "admin_set"

    # Metadata lifecycle
    METADATA_SET = "metadata_set"
    METADATA_UPDATED = "metadata_updated"
    METADATA_REMOVED = "metadata_removed"
