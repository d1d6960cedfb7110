"""
Custom Exception Classes for the Tenant Portal

This module defines the exception hierarchy shared by the plugin registry,
the loader, the entitlement gate and the HTTP layer. Every exception carries
an HTTP status code, a machine-readable error code and a details dict so the
global handlers can render a consistent error envelope.
"""

from typing import Any

from fastapi import status


class PortalException(Exception):
    """Base exception class for all portal exceptions"""

    error_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Plugin Registry Exceptions
# ============================================================================


class RegistryError(PortalException):
    """Base class for plugin registry failures"""

    error_code = "REGISTRY_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class RegistryUnreachableError(RegistryError):
    """Raised when the plugin backend cannot be reached (network, 5xx, timeout)"""

    error_code = "REGISTRY_UNREACHABLE"

    def __init__(self, message: str = "Plugin backend is unreachable", endpoint: str | None = None):
        details = {"endpoint": endpoint} if endpoint else {}
        super().__init__(message=message, details=details)


class RegistryMalformedError(RegistryError):
    """Raised when backend data fails schema or invariant validation"""

    error_code = "REGISTRY_MALFORMED"

    def __init__(self, message: str, plugin_id: str | None = None):
        details = {"plugin_id": plugin_id} if plugin_id else {}
        super().__init__(message=message, details=details)


class RegistryStateError(RegistryError):
    """Raised when an operation is invalid for the registry's current state"""

    error_code = "REGISTRY_STATE"

    def __init__(self, current_state: str, operation: str):
        super().__init__(
            message=f"Cannot {operation} while registry is {current_state}",
            details={"current_state": current_state, "operation": operation},
        )


# ============================================================================
# Plugin Loader Exceptions
# ============================================================================


class LoaderError(PortalException):
    """Raised when the plugin loader cannot run at all"""

    error_code = "LOADER_ERROR"

    def __init__(self, message: str, source: str | None = None):
        details = {"source": source} if source else {}
        super().__init__(message=message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class ContributionError(PortalException):
    """Raised while resolving a single plugin's route or menu contribution"""

    error_code = "CONTRIBUTION_INVALID"

    def __init__(self, plugin_id: str, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"plugin_id": plugin_id},
        )
        self.plugin_id = plugin_id


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(PortalException):
    """Raised when no authenticated user is attached to the request"""

    error_code = "AUTH_FAILED"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED)


class AuthorizationError(PortalException):
    """Raised when user lacks permission for an action"""

    error_code = "AUTH_PERMISSION_DENIED"

    def __init__(
        self, message: str = "You do not have permission to perform this action", required_permission: str | None = None
    ):
        details = {"required_permission": required_permission} if required_permission else {}
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class FeatureLockedError(PortalException):
    """Raised when the tenant's tier does not unlock a feature; carries the upgrade target"""

    error_code = "FEATURE_LOCKED"

    def __init__(self, plugin_id: str, feature_key: str, upgrade: dict[str, Any] | None = None):
        details: dict[str, Any] = {"plugin_id": plugin_id, "feature_key": feature_key}
        if upgrade:
            details["upgrade"] = upgrade
        super().__init__(
            message=f"Feature '{feature_key}' requires a higher tier",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details=details,
        )


# ============================================================================
# Resource Not Found Exceptions
# ============================================================================


class PluginNotFoundError(PortalException):
    """Raised when a plugin id is unknown to the tenant's registry"""

    error_code = "PLUGIN_NOT_FOUND"

    def __init__(self, plugin_id: str):
        super().__init__(
            message=f"Plugin with id '{plugin_id}' not found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": "Plugin", "resource_id": plugin_id},
        )


class PluginDisabledError(PortalException):
    """Raised when a request targets a plugin that is not enabled for the tenant"""

    error_code = "PLUGIN_DISABLED"

    def __init__(self, plugin_id: str):
        super().__init__(
            message=f"Plugin '{plugin_id}' is not enabled",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"plugin_id": plugin_id},
        )


class TierNotFoundError(PortalException):
    """Raised when an upgrade targets a tier the plugin does not offer"""

    error_code = "TIER_NOT_FOUND"

    def __init__(self, plugin_id: str, tier_id: str):
        super().__init__(
            message=f"Tier '{tier_id}' is not offered for plugin '{plugin_id}'",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"plugin_id": plugin_id, "tier_id": tier_id},
        )
