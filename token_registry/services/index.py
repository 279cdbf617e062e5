"""
Secondary index over token metadata attributes.

Maps (attribute key, attribute value) -> token ids holding that exact pair.

Index invariants:
- bucket (k, v) contains token T iff T's current attributes hold k == v
- a token id appears at most once per bucket
- empty buckets are deleted, never stored
"""
import logging
from typing import Dict, List, Mapping

from token_registry.models.domain import AttributeValue
from token_registry.services.storage import DataKey, KeyValueStore

logger = logging.getLogger(__name__)


class MetadataIndex:
    """Maintains index buckets; every metadata mutator goes through reindex()."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def add(self, attribute_key: str, attribute_value: AttributeValue, token_id: str) -> None:
        """Add token_id to the bucket, creating it if needed. Idempotent."""
        index_key = DataKey.index(attribute_key, attribute_value)
        token_ids = self.store.get_for_update(index_key, [])

        if token_id not in token_ids:
            self.store.set(index_key, token_ids + [token_id])

    def remove(self, attribute_key: str, attribute_value: AttributeValue, token_id: str) -> None:
        """Drop token_id from the bucket; delete the bucket once empty. Idempotent."""
        index_key = DataKey.index(attribute_key, attribute_value)
        token_ids = self.store.get_for_update(index_key)
        if token_ids is None:
            return

        remaining = [existing for existing in token_ids if existing != token_id]
        if not remaining:
            self.store.remove(index_key)
        elif len(remaining) != len(token_ids):
            self.store.set(index_key, remaining)

    def reindex(
        self,
        token_id: str,
        old_attributes: Mapping[str, AttributeValue],
        new_attributes: Mapping[str, AttributeValue]
    ) -> None:
        """
        Move a token's index entries from old_attributes to new_attributes.

        All stale pairs are removed before any new pair is added. Pairs
        present on both sides are left untouched.
        """
        stale = [
            (key, value) for key, value in old_attributes.items()
            if new_attributes.get(key) != value
        ]
        fresh = [
            (key, value) for key, value in new_attributes.items()
            if old_attributes.get(key) != value
        ]

        for key, value in stale:
            self.remove(key, value, token_id)
        for key, value in fresh:
            self.add(key, value, token_id)

        if stale or fresh:
            logger.debug(
                "Reindexed token %s: %d removed, %d added", token_id, len(stale), len(fresh)
            )

    def query(self, attribute_key: str, attribute_value: AttributeValue) -> List[str]:
        """Token ids holding exactly (attribute_key, attribute_value); [] if none."""
        return list(self.store.get(DataKey.index(attribute_key, attribute_value), []))

    def query_all(self, filters: Dict[str, AttributeValue]) -> List[str]:
        """
        Token ids matching every (key, value) in filters.

        Result follows the order of the smallest bucket. No filters means no
        match rather than "every token".
        """
        if not filters:
            return []

        buckets = [self.query(key, value) for key, value in filters.items()]
        buckets.sort(key=len)
        smallest, others = buckets[0], [set(bucket) for bucket in buckets[1:]]
        return [token_id for token_id in smallest if all(token_id in other for other in others)]
