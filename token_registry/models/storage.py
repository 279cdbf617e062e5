"""Key-value storage model backing every registry structure."""
from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON

from token_registry.database import Base


class KeyValueEntry(Base):
    """
    One slot of the registry key space.

    Keys are structured strings (see services.storage.DataKey); values are
    the JSON form of the stored record, metadata, history list or index
    bucket.
    """
    __tablename__ = "kv_entries"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)  # set from the registry clock
