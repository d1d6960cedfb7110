"""
Role Constants for the Tenant Portal

Roles themselves are owned by the auth subsystem; the portal only needs to
know which role identifier carries unrestricted access.
"""

from portal.config import settings


def get_full_access_role_id() -> int:
    """Return the role identifier configured as the full-access role."""
    return settings.super_admin_role_id
