"""Constants package for the tenant portal."""

from .roles import get_full_access_role_id

__all__ = ["get_full_access_role_id"]
