"""
Attribute and metadata rules.

Both checks are pure: they look only at their arguments and raise
ValidationFailed on the first violation.
"""
from token_registry import config
from token_registry.models.domain import TokenMetadata, TextValue
from token_registry.services.errors import ValidationFailed


def validate_attribute(key: str, value) -> None:
    """
    Check a single attribute.

    Rules:
    - key is non-empty, at most MAX_KEY_LENGTH characters, no surrounding whitespace
    - text values are at most MAX_TEXT_LENGTH characters
    """
    if not key or key != key.strip():
        raise ValidationFailed(f"Attribute key {key!r} must be non-empty and unpadded", field=key)
    if len(key) > config.MAX_KEY_LENGTH:
        raise ValidationFailed(
            f"Attribute key '{key[:16]}...' exceeds {config.MAX_KEY_LENGTH} characters",
            field=key
        )
    if isinstance(value, TextValue) and len(value.value) > config.MAX_TEXT_LENGTH:
        raise ValidationFailed(
            f"Text value of '{key}' exceeds {config.MAX_TEXT_LENGTH} characters",
            field=key
        )


def validate_metadata(metadata: TokenMetadata) -> None:
    """Check the whole metadata document, including every attribute."""
    if len(metadata.description) > config.MAX_DESCRIPTION_LENGTH:
        raise ValidationFailed(
            f"Description exceeds {config.MAX_DESCRIPTION_LENGTH} characters",
            field="description"
        )
    if len(metadata.attributes) > config.MAX_ATTRIBUTES:
        raise ValidationFailed(
            f"Metadata holds {len(metadata.attributes)} attributes; "
            f"at most {config.MAX_ATTRIBUTES} are allowed",
            field="attributes"
        )
    for key, value in metadata.attributes.items():
        validate_attribute(key, value)
