"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from token_registry.models.domain import AttributeValue, TOKEN_ID_PATTERN
from token_registry.models.enums import TokenStatus, HistoryAction


# Registry schemas
class AdminSet(BaseModel):
    admin: str = Field(..., min_length=1)


# Token schemas
class TokenIssue(BaseModel):
    id: str = Field(..., pattern=TOKEN_ID_PATTERN)
    owner: str = Field(..., min_length=1)
    expiry_date: int = Field(..., ge=0)


class TokenTransfer(BaseModel):
    new_owner: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    id: str
    owner: str
    status: TokenStatus
    issue_date: int
    expiry_date: int


# Metadata schemas
class MetadataSet(BaseModel):
    description: str
    attributes: Dict[str, AttributeValue] = Field(default_factory=dict)


class MetadataUpdate(BaseModel):
    updates: Dict[str, AttributeValue]


class AttributeRemoval(BaseModel):
    keys: List[str]


class MetadataResponse(BaseModel):
    description: str
    attributes: Dict[str, AttributeValue]
    version: int
    last_updated: int
    updated_by: str


class HistoryEntryResponse(BaseModel):
    version: int
    timestamp: int
    updated_by: str
    description: str
    action: HistoryAction
    changes: Dict[str, AttributeValue]
    removed: List[str]


# Query schemas
class AttributeQuery(BaseModel):
    """All filters must match (exact match on every key)."""
    filters: Dict[str, AttributeValue]


class TokenIdsResponse(BaseModel):
    token_ids: List[str]


# Audit schemas
class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    entity_type: str
    entity_id: str
    user_id: Optional[str]
    created_at: datetime
    payload_json: Optional[dict]


# Error response
class RefusalResponse(BaseModel):
    """Response when an operation is refused."""
    code: str
    message: str
