"""Authorization helpers: permission evaluation and request principals."""

from .permissions import PermissionEvaluator

__all__ = ["PermissionEvaluator"]
