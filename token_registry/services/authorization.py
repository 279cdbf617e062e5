"""
Authorization gate.

The calling principal is established outside the registry (the HTTP layer
reads it from the X-Principal header). Policies compare it with the
principal(s) an operation requires and raise Unauthorized on mismatch,
before the operation touches any state.
"""
from typing import Optional

from token_registry.services.errors import AdminNotSet, Unauthorized


class Authorizer:
    """Authorization backend bound to one calling principal."""

    def __init__(self, caller: Optional[str]):
        self.caller = caller

    def require_authorization(self, principal: str) -> None:
        """Succeed only if the caller proves to be `principal`."""
        if not self.caller or self.caller != principal:
            raise Unauthorized(f"Caller is not authorized to act as '{principal}'")

    def require_admin(self, admin: Optional[str]) -> None:
        """admin-only policy."""
        if admin is None:
            raise AdminNotSet("No admin has been set for this registry")
        self.require_authorization(admin)

    def require_owner(self, owner: str) -> None:
        """owner-only policy."""
        self.require_authorization(owner)

    def require_admin_or_owner(self, admin: Optional[str], owner: str) -> None:
        """admin-or-owner policy: either principal may act."""
        if self.caller and self.caller in (admin, owner):
            return
        raise Unauthorized("Caller is neither the registry admin nor the token owner")
