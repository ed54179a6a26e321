"""Tenant membership checks."""

from typing import Optional

from ledgersync.database.base import Database
from ledgersync.domain.errors import AuthorizationError, ValidationError, tenant_access_denied

TENANT_ROLES = ("owner", "admin", "member")


class TenantAccessService:
    """Service for granting and checking tenant access."""

    def __init__(self, db: Database):
        """Initialize tenant access service.

        Args:
            db: Database instance
        """
        self.db = db

    def add_member(self, tenant_id: str, user_id: str, role: str = "member") -> None:
        """Grant a user access to a tenant.

        Raises:
            ValidationError: If ids are blank or the role is unknown
        """
        if not tenant_id or not user_id:
            raise ValidationError("Tenant and user ids are required")
        if role not in TENANT_ROLES:
            raise ValidationError(
                f"Invalid role '{role}'. Must be one of: {', '.join(TENANT_ROLES)}"
            )
        self.db.add_tenant_member(tenant_id, user_id, role)

    def get_role(self, tenant_id: str, user_id: str) -> Optional[str]:
        return self.db.get_tenant_role(tenant_id, user_id)

    def require_member(self, tenant_id: str, user_id: Optional[str]) -> str:
        """Return the user's role, or raise if the user is not in the tenant.

        Raises:
            AuthorizationError: If the user is not a member
        """
        role = self.db.get_tenant_role(tenant_id, user_id) if user_id else None
        if role is None:
            raise AuthorizationError(tenant_access_denied(str(user_id), tenant_id))
        return role
