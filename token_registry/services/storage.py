"""
Key-value access to the registry's durable state.

All registry structures (tokens, metadata, history, index buckets and the
admin slot) live in one table addressed by structured keys. Writes are
flushed into the caller's session but never committed here: the service
commits or rolls back once per public operation.
"""
import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from token_registry.models.domain import AttributeValue, encode_attribute_value
from token_registry.models.storage import KeyValueEntry
from token_registry.services.clock import Clock, SystemClock


def to_datetime(timestamp: int) -> datetime:
    """Logical timestamp -> naive UTC datetime, as stored in DateTime columns."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


class DataKey:
    """Builders for the structured key space."""

    ADMIN = "admin"

    @staticmethod
    def token(token_id: str) -> str:
        return f"token:{token_id}"

    @staticmethod
    def metadata(token_id: str) -> str:
        return f"metadata:{token_id}"

    @staticmethod
    def history(token_id: str) -> str:
        return f"history:{token_id}"

    @staticmethod
    def index(attribute_key: str, attribute_value: AttributeValue) -> str:
        """
        Address of the (attribute_key, attribute_value) bucket.

        Format: index:["<key>","<kind>",<value>] (compact JSON), so keys
        containing separators and values of different kinds never collide.
        """
        coordinate = [attribute_key] + encode_attribute_value(attribute_value)
        return "index:" + json.dumps(coordinate, separators=(",", ":"), ensure_ascii=False)


class KeyValueStore:
    """get/set/has/remove over the kv_entries table."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    def _entry(self, key: str) -> Optional[KeyValueEntry]:
        return self.db.get(KeyValueEntry, key)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entry(key)
        if entry is None:
            return default
        return entry.value

    def get_for_update(self, key: str, default: Any = None) -> Any:
        """
        Read a value for read-modify-write.

        The row stays locked (SELECT ... FOR UPDATE) until the session
        commits or rolls back. Dialects without row locks, such as SQLite,
        ignore the clause.
        """
        entry = self.db.execute(
            select(KeyValueEntry)
            .where(KeyValueEntry.key == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            return default
        return entry.value

    def has(self, key: str) -> bool:
        return self._entry(key) is not None

    def set(self, key: str, value: Any) -> None:
        updated_at = to_datetime(self.clock.now())
        entry = self._entry(key)
        if entry is None:
            self.db.add(KeyValueEntry(key=key, value=value, updated_at=updated_at))
        else:
            # Reassign (never mutate in place) so the JSON column is marked dirty
            entry.value = value
            entry.updated_at = updated_at
        self.db.flush()

    def remove(self, key: str) -> None:
        entry = self._entry(key)
        if entry is not None:
            self.db.delete(entry)
            self.db.flush()
