"""API routes for the token registry."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from token_registry.database import get_db
from token_registry.models.audit import AuditEvent
from token_registry.models.domain import parse_attribute_value
from token_registry.models.enums import AttributeKind
from token_registry.services.authorization import Authorizer
from token_registry.services.clock import Clock, SystemClock
from token_registry.services.errors import (
    AlreadyExists,
    Expired,
    InvalidExpiry,
    NotFound,
    TokenRegistryError,
    Unauthorized,
    ValidationFailed,
)
from token_registry.services.registry import TokenRegistry
from token_registry.api.schemas import (
    AdminSet,
    TokenIssue,
    TokenTransfer,
    TokenResponse,
    MetadataSet,
    MetadataUpdate,
    AttributeRemoval,
    MetadataResponse,
    HistoryEntryResponse,
    AttributeQuery,
    TokenIdsResponse,
    AuditEventResponse,
    RefusalResponse
)

router = APIRouter()

# Looked up along the exception MRO, so subclasses map to their parent status
REFUSAL_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    AlreadyExists: status.HTTP_409_CONFLICT,
    InvalidExpiry: status.HTTP_400_BAD_REQUEST,
    Expired: status.HTTP_410_GONE,
    Unauthorized: status.HTTP_403_FORBIDDEN,
    ValidationFailed: 422,
}

REFUSAL_RESPONSES = {
    code: {"model": RefusalResponse} for code in sorted(set(REFUSAL_STATUS.values()))
}

_system_clock = SystemClock()


def get_clock() -> Clock:
    """Dependency providing the registry time source (overridden in tests)."""
    return _system_clock


def get_caller(x_principal: Optional[str] = Header(None)) -> Optional[str]:
    """The calling principal, as attested by the X-Principal header."""
    return x_principal


def get_registry(
    db: Session = Depends(get_db),
    caller: Optional[str] = Depends(get_caller),
    clock: Clock = Depends(get_clock)
) -> TokenRegistry:
    return TokenRegistry(db, Authorizer(caller), clock)


def refusal(e: TokenRegistryError) -> HTTPException:
    """Translate a registry refusal into an HTTP error carrying its code."""
    status_code = status.HTTP_400_BAD_REQUEST
    for cls in type(e).__mro__:
        if cls in REFUSAL_STATUS:
            status_code = REFUSAL_STATUS[cls]
            break
    return HTTPException(
        status_code=status_code,
        detail={"code": e.code, "message": e.message}
    )


# Registry endpoints
@router.put("/admin", status_code=status.HTTP_204_NO_CONTENT, responses=REFUSAL_RESPONSES)
def set_admin(admin_data: AdminSet, registry: TokenRegistry = Depends(get_registry)):
    """Set the registry admin. The new admin must be the caller."""
    try:
        registry.set_admin(admin_data.admin)
    except TokenRegistryError as e:
        raise refusal(e)


# Token endpoints
@router.post("/tokens", response_model=TokenResponse, status_code=status.HTTP_201_CREATED,
             responses=REFUSAL_RESPONSES)
def issue_token(token_data: TokenIssue, registry: TokenRegistry = Depends(get_registry)):
    """Issue a new Active token. Admin only."""
    try:
        return registry.issue(token_data.id, token_data.owner, token_data.expiry_date)
    except TokenRegistryError as e:
        raise refusal(e)


@router.get("/tokens/{token_id}", response_model=TokenResponse, responses=REFUSAL_RESPONSES)
def get_token(token_id: str, registry: TokenRegistry = Depends(get_registry)):
    """Get a token. Tokens past their expiry date answer 410."""
    try:
        return registry.get(token_id)
    except TokenRegistryError as e:
        raise refusal(e)


@router.post("/tokens/{token_id}/transfer", response_model=TokenResponse, responses=REFUSAL_RESPONSES)
def transfer_token(token_id: str, transfer_data: TokenTransfer,
                   registry: TokenRegistry = Depends(get_registry)):
    """Transfer an Active token. Current owner only."""
    try:
        return registry.transfer(token_id, transfer_data.new_owner)
    except TokenRegistryError as e:
        raise refusal(e)


# Metadata endpoints
@router.put("/tokens/{token_id}/metadata", response_model=MetadataResponse, responses=REFUSAL_RESPONSES)
def set_metadata(token_id: str, metadata_data: MetadataSet,
                 registry: TokenRegistry = Depends(get_registry)):
    """Create or replace token metadata. Admin or owner."""
    try:
        return registry.set_metadata(token_id, metadata_data.description, metadata_data.attributes)
    except TokenRegistryError as e:
        raise refusal(e)


@router.get("/tokens/{token_id}/metadata", response_model=MetadataResponse, responses=REFUSAL_RESPONSES)
def get_metadata(token_id: str, registry: TokenRegistry = Depends(get_registry)):
    try:
        return registry.get_metadata(token_id)
    except TokenRegistryError as e:
        raise refusal(e)


@router.patch("/tokens/{token_id}/metadata", response_model=MetadataResponse, responses=REFUSAL_RESPONSES)
def update_metadata(token_id: str, update_data: MetadataUpdate,
                    registry: TokenRegistry = Depends(get_registry)):
    """Merge attributes into existing metadata. Owner only."""
    try:
        return registry.update_metadata(token_id, update_data.updates)
    except TokenRegistryError as e:
        raise refusal(e)


@router.post("/tokens/{token_id}/metadata/remove", response_model=MetadataResponse,
             responses=REFUSAL_RESPONSES)
def remove_attributes(token_id: str, removal_data: AttributeRemoval,
                      registry: TokenRegistry = Depends(get_registry)):
    """Remove attributes by name. Unknown names are ignored. Owner only."""
    try:
        return registry.remove_attributes(token_id, removal_data.keys)
    except TokenRegistryError as e:
        raise refusal(e)


@router.get("/tokens/{token_id}/metadata/history", response_model=List[HistoryEntryResponse])
def get_history(token_id: str, registry: TokenRegistry = Depends(get_registry)):
    """Metadata history, oldest first. Empty for unknown tokens."""
    return registry.get_history(token_id)


# Query endpoints
@router.get("/attributes/{attribute_key}/tokens", response_model=TokenIdsResponse)
def query_by_attribute(
    attribute_key: str,
    kind: AttributeKind = Query(...),
    value: str = Query(...),
    registry: TokenRegistry = Depends(get_registry)
):
    """Token ids whose metadata holds exactly attribute_key = value."""
    try:
        attribute_value = parse_attribute_value(kind.value, value)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"code": ValidationFailed.code, "message": str(e)}
        )
    return TokenIdsResponse(token_ids=registry.query_by_attribute(attribute_key, attribute_value))


@router.post("/tokens/query", response_model=TokenIdsResponse)
def query_by_attributes(query_data: AttributeQuery, registry: TokenRegistry = Depends(get_registry)):
    """Token ids matching every given attribute."""
    return TokenIdsResponse(token_ids=registry.query_by_attributes(query_data.filters))


# Audit endpoints
@router.get("/audit-events", response_model=List[AuditEventResponse])
def list_audit_events(entity_id: Optional[str] = None, db: Session = Depends(get_db)):
    """List published events, newest first, optionally for one entity."""
    query = db.query(AuditEvent)
    if entity_id:
        query = query.filter(AuditEvent.entity_id == entity_id)
    return query.order_by(AuditEvent.id.desc()).all()
