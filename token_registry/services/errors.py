"""
Errors raised by the registry service layer.

Every failure is terminal for the call that raised it and is raised before
the operation writes anything.
"""


class TokenRegistryError(Exception):
    """Base class for refusals raised by the registry."""
    code = "registry_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class NotFound(TokenRegistryError):
    code = "not_found"


class MetadataNotFound(NotFound):
    """The token exists but metadata has never been set for it."""
    code = "metadata_not_found"


class AlreadyExists(TokenRegistryError):
    code = "already_exists"


class InvalidExpiry(TokenRegistryError):
    code = "invalid_expiry"


class Expired(TokenRegistryError):
    """The token is not currently Active."""
    code = "expired"


class Unauthorized(TokenRegistryError):
    code = "unauthorized"


class AdminNotSet(Unauthorized):
    """An admin-only operation was attempted before any admin was set."""
    code = "admin_not_set"


class ValidationFailed(TokenRegistryError):
    code = "validation_failed"

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)
