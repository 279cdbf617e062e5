"""
Token registry: token lifecycle, versioned metadata and its secondary index.

This is the core enforcement mechanism - every token and metadata change
MUST go through here. Each public mutator runs as one transaction:
authorization and existence checks come first, then validation, and only
then the writes (token/metadata, index, history, event). Any refusal rolls
the session back, so no partial write survives.
"""
import logging
import re
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from token_registry.models.audit import AuditEventType
from token_registry.models.domain import (
    AttributeValue,
    MetadataUpdateRecord,
    Token,
    TokenMetadata,
    TOKEN_ID_PATTERN,
)
from token_registry.models.enums import TokenStatus, HistoryAction
from token_registry.services.authorization import Authorizer
from token_registry.services.clock import Clock, SystemClock
from token_registry.services.errors import (
    AlreadyExists,
    Expired,
    InvalidExpiry,
    MetadataNotFound,
    NotFound,
    TokenRegistryError,
    ValidationFailed,
)
from token_registry.services.events import EventBus
from token_registry.services.index import MetadataIndex
from token_registry.services.storage import DataKey, KeyValueStore
from token_registry.services.validation import validate_attribute, validate_metadata

logger = logging.getLogger(__name__)

# One mutator at a time per process; bucket rows are also locked for
# databases that support SELECT ... FOR UPDATE across processes.
_MUTATION_LOCK = threading.Lock()


class TokenRegistry:
    """Enforces token lifecycle rules and keeps metadata, index and history in lockstep."""

    def __init__(self, db: Session, authorizer: Authorizer, clock: Optional[Clock] = None):
        self.db = db
        self.authorizer = authorizer
        self.clock = clock or SystemClock()
        self.store = KeyValueStore(db, self.clock)
        self.index = MetadataIndex(self.store)
        self.events = EventBus(db, self.clock)

    @contextmanager
    def _transaction(self, operation: str):
        with _MUTATION_LOCK:
            try:
                yield
                self.db.commit()
            except TokenRegistryError as e:
                self.db.rollback()
                logger.warning(
                    "Refused %s for caller %s: %s", operation, self.authorizer.caller, e.message
                )
                raise
            except Exception:
                self.db.rollback()
                raise

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    def _admin(self) -> Optional[str]:
        return self.store.get(DataKey.ADMIN)

    def _read(self, key: str, for_update: bool, default=None):
        if for_update:
            return self.store.get_for_update(key, default)
        return self.store.get(key, default)

    @staticmethod
    def _build(model, **fields):
        """Construct a domain model, reporting bad input as ValidationFailed."""
        try:
            return model(**fields)
        except ValidationError as e:
            raise ValidationFailed(f"Invalid {model.__name__}: {e.errors()[0]['msg']}")

    def _load_token(self, token_id: str, for_update: bool = False) -> Token:
        raw = self._read(DataKey.token(token_id), for_update)
        if raw is None:
            raise NotFound(f"Token {token_id} not found")
        return Token.model_validate(raw)

    def _save_token(self, token: Token) -> None:
        self.store.set(DataKey.token(token.id), token.model_dump(mode="json"))

    def _load_metadata(self, token_id: str, for_update: bool = False) -> Optional[TokenMetadata]:
        raw = self._read(DataKey.metadata(token_id), for_update)
        if raw is None:
            return None
        return TokenMetadata.model_validate(raw)

    def _require_metadata(self, token_id: str, for_update: bool = False) -> TokenMetadata:
        metadata = self._load_metadata(token_id, for_update)
        if metadata is None:
            raise MetadataNotFound(
                f"Token {token_id} has no metadata. Set metadata before updating it."
            )
        return metadata

    def _save_metadata(self, token_id: str, metadata: TokenMetadata) -> None:
        self.store.set(DataKey.metadata(token_id), metadata.model_dump(mode="json"))

    def _append_history(self, token_id: str, record: MetadataUpdateRecord) -> None:
        history_key = DataKey.history(token_id)
        history = self.store.get_for_update(history_key, [])
        self.store.set(history_key, history + [record.model_dump(mode="json")])

    def _commit_metadata(
        self,
        token_id: str,
        previous: Mapping[str, AttributeValue],
        metadata: TokenMetadata,
        record: MetadataUpdateRecord
    ) -> None:
        """Write path shared by every metadata mutator: index, document, history."""
        self.index.reindex(token_id, previous, metadata.attributes)
        self._save_metadata(token_id, metadata)
        self._append_history(token_id, record)

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def set_admin(self, admin: str) -> None:
        """
        Set (or replace) the registry admin.

        The new admin must authorize the call themselves.
        """
        with self._transaction("set_admin"):
            self.authorizer.require_authorization(admin)
            previous_admin = self._admin()

            self.store.set(DataKey.ADMIN, admin)
            self.events.publish(
                AuditEventType.ADMIN_SET,
                entity_id=DataKey.ADMIN,
                actor=admin,
                payload={"previous_admin": previous_admin, "timestamp": self.clock.now()},
                entity_type="Registry"
            )
        logger.info("Registry admin set to %s", admin)

    def issue(self, token_id: str, owner: str, expiry_date: int) -> Token:
        """
        Issue a new Active token to `owner`.

        Refused when:
        - no admin is set, or the caller is not the admin
        - a token with this id already exists
        - expiry_date is not strictly in the future
        """
        with self._transaction("issue"):
            admin = self._admin()
            self.authorizer.require_admin(admin)

            if not re.fullmatch(TOKEN_ID_PATTERN, token_id or ""):
                raise ValidationFailed(
                    "Token id must be 32 bytes encoded as 64 lowercase hex characters",
                    field="id"
                )
            if self.store.has(DataKey.token(token_id)):
                raise AlreadyExists(f"Token {token_id} has already been issued")

            now = self.clock.now()
            if expiry_date <= now:
                raise InvalidExpiry(
                    f"Expiry date {expiry_date} must be after the current time {now}"
                )

            token = self._build(
                Token,
                id=token_id,
                owner=owner,
                status=TokenStatus.ACTIVE,
                issue_date=now,
                expiry_date=expiry_date
            )
            self._save_token(token)
            self.events.publish(
                AuditEventType.TOKEN_ISSUED,
                entity_id=token_id,
                actor=admin,
                payload={
                    "owner": owner,
                    "issue_date": now,
                    "expiry_date": expiry_date,
                    "status": token.status.value,
                }
            )
        logger.info("Issued token %s to %s (expires %d)", token_id, owner, expiry_date)
        return token

    def transfer(self, token_id: str, new_owner: str) -> Token:
        """
        Hand an Active token to `new_owner`. Only the current owner may transfer.

        Expiry is evaluated here too, so a token past its expiry_date cannot
        be transferred even though its stored status still reads Active.
        """
        with self._transaction("transfer"):
            token = self._load_token(token_id, for_update=True)

            if token.effective_status(self.clock.now()) != TokenStatus.ACTIVE:
                raise Expired(f"Token {token_id} is not active and cannot be transferred")

            self.authorizer.require_owner(token.owner)

            previous_owner = token.owner
            token.owner = new_owner
            self._save_token(token)
            self.events.publish(
                AuditEventType.TOKEN_TRANSFERRED,
                entity_id=token_id,
                actor=previous_owner,
                payload={
                    "previous_owner": previous_owner,
                    "new_owner": new_owner,
                    "timestamp": self.clock.now(),
                }
            )
        logger.info("Transferred token %s from %s to %s", token_id, previous_owner, new_owner)
        return token

    def get(self, token_id: str) -> Token:
        """
        Read a token.

        An Active token past its expiry_date is reported as Expired instead
        of being returned. The stored status is not rewritten.
        """
        token = self._load_token(token_id)
        if token.effective_status(self.clock.now()) == TokenStatus.EXPIRED:
            raise Expired(f"Token {token_id} expired at {token.expiry_date}")
        return token

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def set_metadata(
        self,
        token_id: str,
        description: str,
        attributes: Mapping[str, AttributeValue]
    ) -> TokenMetadata:
        """
        Create or fully replace a token's metadata. Admin or owner only.

        Version is 1 for the first write and previous + 1 afterwards.
        """
        with self._transaction("set_metadata"):
            token = self._load_token(token_id)
            self.authorizer.require_admin_or_owner(self._admin(), token.owner)

            existing = self._load_metadata(token_id, for_update=True)
            previous = existing.attributes if existing else {}
            now = self.clock.now()

            metadata = self._build(
                TokenMetadata,
                description=description,
                attributes=dict(attributes),
                version=existing.version + 1 if existing else 1,
                last_updated=now,
                updated_by=self.authorizer.caller
            )
            validate_metadata(metadata)

            record = self._build(
                MetadataUpdateRecord,
                version=metadata.version,
                timestamp=now,
                updated_by=metadata.updated_by,
                description=description,
                action=HistoryAction.SET,
                changes={
                    key: value for key, value in metadata.attributes.items()
                    if previous.get(key) != value
                },
                removed=[key for key in previous if key not in metadata.attributes]
            )
            self._commit_metadata(token_id, previous, metadata, record)
            self.events.publish(
                AuditEventType.METADATA_SET,
                entity_id=token_id,
                actor=metadata.updated_by,
                payload={"version": metadata.version, "timestamp": now}
            )
        logger.info("Set metadata of token %s (version %d)", token_id, metadata.version)
        return metadata

    def get_metadata(self, token_id: str) -> TokenMetadata:
        self._load_token(token_id)
        return self._require_metadata(token_id)

    def update_metadata(self, token_id: str, updates: Mapping[str, AttributeValue]) -> TokenMetadata:
        """
        Merge `updates` into existing metadata. Owner only.

        Keys already present are overwritten (their old index entry is
        dropped), new keys are inserted. The history entry records exactly
        the update payload.
        """
        with self._transaction("update_metadata"):
            token = self._load_token(token_id)
            existing = self._require_metadata(token_id, for_update=True)
            self.authorizer.require_owner(token.owner)

            for key, value in updates.items():
                validate_attribute(key, value)

            now = self.clock.now()
            metadata = self._build(
                TokenMetadata,
                description=existing.description,
                attributes={**existing.attributes, **updates},
                version=existing.version + 1,
                last_updated=now,
                updated_by=self.authorizer.caller
            )
            validate_metadata(metadata)

            record = self._build(
                MetadataUpdateRecord,
                version=metadata.version,
                timestamp=now,
                updated_by=metadata.updated_by,
                description=metadata.description,
                action=HistoryAction.UPDATE,
                changes=dict(updates)
            )
            self._commit_metadata(token_id, existing.attributes, metadata, record)
            self.events.publish(
                AuditEventType.METADATA_UPDATED,
                entity_id=token_id,
                actor=metadata.updated_by,
                payload={"version": metadata.version, "timestamp": now, "keys": sorted(updates)}
            )
        logger.info("Updated metadata of token %s (version %d)", token_id, metadata.version)
        return metadata

    def remove_attributes(self, token_id: str, keys: Iterable[str]) -> TokenMetadata:
        """
        Delete attributes by name. Owner only.

        Names that are not present are skipped; the version still advances.
        """
        with self._transaction("remove_attributes"):
            token = self._load_token(token_id)
            existing = self._require_metadata(token_id, for_update=True)
            self.authorizer.require_owner(token.owner)

            removed = [key for key in dict.fromkeys(keys) if key in existing.attributes]
            now = self.clock.now()

            metadata = self._build(
                TokenMetadata,
                description=existing.description,
                attributes={
                    key: value for key, value in existing.attributes.items()
                    if key not in removed
                },
                version=existing.version + 1,
                last_updated=now,
                updated_by=self.authorizer.caller
            )
            record = self._build(
                MetadataUpdateRecord,
                version=metadata.version,
                timestamp=now,
                updated_by=metadata.updated_by,
                description=metadata.description,
                action=HistoryAction.REMOVE,
                removed=removed
            )
            self._commit_metadata(token_id, existing.attributes, metadata, record)
            self.events.publish(
                AuditEventType.METADATA_REMOVED,
                entity_id=token_id,
                actor=metadata.updated_by,
                payload={"version": metadata.version, "timestamp": now, "removed": removed}
            )
        logger.info(
            "Removed %d attribute(s) from token %s (version %d)",
            len(removed), token_id, metadata.version
        )
        return metadata

    def get_history(self, token_id: str) -> List[MetadataUpdateRecord]:
        """Metadata history in append order; empty for unknown tokens."""
        return [
            MetadataUpdateRecord.model_validate(raw)
            for raw in self.store.get(DataKey.history(token_id), [])
        ]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_by_attribute(self, attribute_key: str, attribute_value: AttributeValue) -> List[str]:
        return self.index.query(attribute_key, attribute_value)

    def query_by_attributes(self, filters: Dict[str, AttributeValue]) -> List[str]:
        return self.index.query_all(filters)
