"""Domain models - tokens, attribute values, metadata and history entries."""
from typing import Annotated, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from token_registry.models.enums import TokenStatus, HistoryAction

# 32-byte identifier carried as lowercase hex
TOKEN_ID_PATTERN = r"^[0-9a-f]{64}$"

I64_MIN = -(2 ** 63)
I64_MAX = 2 ** 63 - 1
U64_MAX = 2 ** 64 - 1


class TextValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    value: str


class NumberValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["number"] = "number"
    value: int = Field(..., ge=I64_MIN, le=I64_MAX)


class BooleanValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["boolean"] = "boolean"
    value: bool


class TimestampValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["timestamp"] = "timestamp"
    value: int = Field(..., ge=0, le=U64_MAX)


# Closed set of attribute variants. Frozen models compare and hash by
# field values, so two separately built TextValue("gold") are the same key.
AttributeValue = Annotated[
    Union[TextValue, NumberValue, BooleanValue, TimestampValue],
    Field(discriminator="kind"),
]

attribute_value_adapter = TypeAdapter(AttributeValue)


def parse_attribute_value(kind: str, raw) -> "AttributeValue":
    """Build an attribute value from a kind tag and a raw (possibly string) value."""
    return attribute_value_adapter.validate_python({"kind": kind, "value": raw})


def encode_attribute_value(value: "AttributeValue") -> list:
    """
    Canonical [kind, value] pair used to address index buckets.

    Every variant must be listed here; an unknown variant is a programming
    error, not a data error.
    """
    if isinstance(value, TextValue):
        return ["text", value.value]
    if isinstance(value, NumberValue):
        return ["number", value.value]
    if isinstance(value, BooleanValue):
        return ["boolean", value.value]
    if isinstance(value, TimestampValue):
        return ["timestamp", value.value]
    raise TypeError(f"Unsupported attribute value: {value!r}")


class Token(BaseModel):
    """
    A token is issued Active and stays Active until it expires or is revoked.

    Invariants:
    - id is immutable after issuance
    - expiry_date was strictly in the future at issuance
    - only owner changes, and only through transfer
    """
    id: str = Field(..., pattern=TOKEN_ID_PATTERN)
    owner: str
    status: TokenStatus = TokenStatus.ACTIVE
    issue_date: int
    expiry_date: int

    def effective_status(self, now: int) -> TokenStatus:
        """Status as of `now`; an Active token past its expiry reads as Expired."""
        if self.status == TokenStatus.ACTIVE and now > self.expiry_date:
            return TokenStatus.EXPIRED
        return self.status


class TokenMetadata(BaseModel):
    """
    Versioned attribute map attached to a token.

    Invariants:
    - version starts at 1 and grows by exactly 1 per accepted mutation
    - every (key, value) in attributes is present in the secondary index
    """
    description: str
    attributes: Dict[str, AttributeValue] = Field(default_factory=dict)
    version: int = Field(..., ge=1)
    last_updated: int
    updated_by: str


class MetadataUpdateRecord(BaseModel):
    """
    One entry of a token's metadata history. Never mutated once appended.

    `changes` holds the attributes written by the call and `removed` the
    attribute names it deleted.
    """
    model_config = ConfigDict(frozen=True)

    version: int
    timestamp: int
    updated_by: str
    description: str
    action: HistoryAction
    changes: Dict[str, AttributeValue] = Field(default_factory=dict)
    removed: List[str] = Field(default_factory=list)
