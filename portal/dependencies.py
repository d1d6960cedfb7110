"""
FastAPI dependencies for the portal API.

The principal comes from the access token issued by the platform auth
service; the tenant and its plugin licences come from the platform backend.
Both are cached on `request.state` for the rest of the request (and for the
access log). An auth layer in front of the portal may attach them there
itself, in which case they are used as-is.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from portal.auth.tokens import decode_access_token, get_auth_token
from portal.exceptions import AuthenticationError, AuthorizationError, FeatureLockedError, PluginDisabledError
from portal.plugins.client import PluginBackendClient
from portal.plugins.gate import AccessDecision, DenialReason
from portal.plugins.models import FeatureKey, Tenant, User
from portal.plugins.runtime import PluginRuntime, RuntimeManager


def get_current_user(request: Request) -> User:
    user = getattr(request.state, "user", None)
    if isinstance(user, User):
        return user
    token = get_auth_token(request)
    if token is None:
        raise AuthenticationError()
    user = decode_access_token(token)
    request.state.user = user
    return user


def get_runtime_manager(request: Request) -> RuntimeManager:
    return request.app.state.runtimes


async def get_current_tenant(
    request: Request,
    user: User = Depends(get_current_user),
    manager: RuntimeManager = Depends(get_runtime_manager),
) -> Tenant:
    tenant = getattr(request.state, "tenant", None)
    if not isinstance(tenant, Tenant):
        client = PluginBackendClient(manager.http, tenant_id=user.tenant_id)
        tenant = await client.fetch_tenant(token=get_auth_token(request))
        request.state.tenant = tenant
    if user.tenant_id != tenant.id:
        raise AuthorizationError("User does not belong to this tenant")
    return tenant


async def get_runtime(
    tenant: Tenant = Depends(get_current_tenant),
    manager: RuntimeManager = Depends(get_runtime_manager),
) -> PluginRuntime:
    return await manager.get(tenant.id)


def require_permission(resource: str, action: str) -> Callable:
    """Dependency factory: 403 unless the user holds resource:action."""

    async def dependency(
        user: User = Depends(get_current_user),
        runtime: PluginRuntime = Depends(get_runtime),
    ) -> User:
        if not runtime.gate.evaluator.has_permission(user, resource, action):
            raise AuthorizationError(required_permission=f"{resource}:{action}")
        return user

    return dependency


def require_feature(
    plugin_id: str | Callable[[], str],
    resource: str,
    action: str,
    feature_key: FeatureKey | None = None,
) -> Callable:
    """
    Dependency factory guarding an endpoint behind the entitlement gate.

    plugin_id may be a callable so deployments can resolve it from settings
    at request time, e.g. `require_feature(lambda: settings.blog_plugin_id, ...)`.

    Raises:
        PluginDisabledError: plugin not enabled for the tenant (404).
        AuthorizationError:  user lacks resource:action (403).
        FeatureLockedError:  tenant tier does not unlock feature_key (402),
                             with the upgrade target in details.
    """

    async def dependency(
        user: User = Depends(get_current_user),
        tenant: Tenant = Depends(get_current_tenant),
        runtime: PluginRuntime = Depends(get_runtime),
    ) -> AccessDecision:
        resolved_id = plugin_id() if callable(plugin_id) else plugin_id
        decision = runtime.gate.evaluate(user, tenant, resolved_id, resource, action, feature_key)
        if decision.allowed:
            return decision
        if decision.denied_by is DenialReason.PLUGIN_DISABLED:
            raise PluginDisabledError(resolved_id)
        if decision.denied_by is DenialReason.PERMISSION:
            raise AuthorizationError(required_permission=f"{resource}:{action}")
        prompt = runtime.gate.upgrade_prompt_for(decision)
        raise FeatureLockedError(resolved_id, feature_key or "", upgrade=prompt.to_dict() if prompt else None)

    return dependency
