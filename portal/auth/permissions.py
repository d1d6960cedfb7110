"""
Permission Evaluator

A user's authorization is the union of the permissions attached to the user
record and those granted to the user's role, plus one hard override: the
full-access role is implicitly granted every permission.

Matching is exact (resource, action) equality; "blog:*" has no special
meaning.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from portal.constants.roles import get_full_access_role_id
from portal.plugins.models import Permission, User

# Role grants applied on top of the permissions carried by the user record
DEFAULT_ROLE_PERMISSIONS: dict[int, frozenset[Permission]] = {
    2: frozenset(
        {
            Permission("dashboard", "read"),
            Permission("users", "read"),
            Permission("roles", "read"),
            Permission("plugins", "read"),
            Permission("plugins", "manage"),
            Permission("blog", "manage"),
        }
    ),
    3: frozenset({Permission("dashboard", "read"), Permission("blog", "manage")}),
}


class PermissionEvaluator:
    """Resolves (user, resource, action) authorization. Stateless after construction."""

    def __init__(
        self,
        full_access_role_id: int | None = None,
        role_permissions: Mapping[int, Iterable[Permission]] | None = None,
    ) -> None:
        self.full_access_role_id = get_full_access_role_id() if full_access_role_id is None else full_access_role_id
        grants = DEFAULT_ROLE_PERMISSIONS if role_permissions is None else role_permissions
        self._role_permissions = {role_id: frozenset(perms) for role_id, perms in grants.items()}

    def is_full_access(self, user: User) -> bool:
        """True when the user holds the full-access (super-admin) role."""
        return user.role_id == self.full_access_role_id

    def permissions_for(self, user: User) -> frozenset[Permission]:
        """Explicit permissions of the user: own records plus role grants."""
        return user.permissions | self._role_permissions.get(user.role_id, frozenset())

    def has_permission(self, user: User, resource: str, action: str) -> bool:
        if self.is_full_access(user):
            return True
        return Permission(resource, action) in self.permissions_for(user)

    def has_any_permission(self, user: User, permissions: Iterable[Permission]) -> bool:
        if self.is_full_access(user):
            return True
        granted = self.permissions_for(user)
        return any(permission in granted for permission in permissions)
