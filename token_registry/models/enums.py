"""Enums for the token registry - these define the valid values for statuses and value kinds."""
from enum import Enum


class TokenStatus(str, Enum):
    """
    Lifecycle status of a token.

    Expired is derived at read time from expiry_date; it is never written
    by a transition.
    """
    ACTIVE = "Active"
    EXPIRED = "Expired"
    REVOKED = "Revoked"


class AttributeKind(str, Enum):
    """The closed set of scalar kinds an attribute value can take."""
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"


class HistoryAction(str, Enum):
    """Which metadata mutator produced a history entry."""
    SET = "set"
    UPDATE = "update"
    REMOVE = "remove"
