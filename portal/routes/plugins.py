"""
Plugin & Entitlement Routes

All routes resolve the caller's tenant runtime first; plugin state, menus
and route manifests are always tenant-scoped.

GET  /api/v1/plugins                          → catalog with tenant status (plugins:read)
POST /api/v1/plugins/refresh                  → re-fetch registry state (plugins:manage)
POST /api/v1/plugins/{plugin_id}/upgrade      → request a tier upgrade (plugins:manage)
GET  /api/v1/navigation?scope=                → menu entries the user can reach
GET  /api/v1/routes                           → route manifest the user can reach
GET  /api/v1/routes/resolve?path=             → guard decision for one path
GET  /api/v1/features/{plugin_id}/{feature}   → entitlement decision (+ upgrade prompt)
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from portal.dependencies import (
    get_current_tenant,
    get_current_user,
    get_runtime,
    get_runtime_manager,
    require_permission,
)
from portal.plugins.base import MenuEntry, RouteDefinition
from portal.plugins.models import Tenant, User  # noqa: TC001
from portal.plugins.runtime import PluginRuntime, RuntimeManager  # noqa: TC001

router = APIRouter(tags=["Plugins"])
logger = logging.getLogger(__name__)


# ── Pydantic schemas ───────────────────────────────────────────────────────────


class TierResponse(BaseModel):
    tier_id: str
    name: str
    position: int
    features: list[str]
    price_monthly: float | None = None
    price_yearly: float | None = None
    price_lifetime: float | None = None
    trial_days: int = 0


class PluginResponse(BaseModel):
    id: str
    name: str
    version: str
    description: str
    status: str
    enabled: bool
    error: str | None = None
    current_tier_id: str | None = None
    tiers: list[TierResponse] = []


class PluginCatalogResponse(BaseModel):
    registry_status: str
    plugins: list[PluginResponse]


class RefreshRequest(BaseModel):
    plugin_id: str | None = None


class LoadFailureResponse(BaseModel):
    plugin_id: str
    error: str
    kind: str


class RefreshResponse(BaseModel):
    registry_status: str
    navigation_version: int
    loaded: list[str] = []
    skipped: list[str] = []
    errors: list[LoadFailureResponse] = []


class UpgradeBody(BaseModel):
    tier_id: str


class UpgradeResponse(BaseModel):
    status: str
    plugin_id: str
    tier_id: str
    redirect_url: str | None = None


class MenuEntryResponse(BaseModel):
    id: str
    label: str
    path: str | None = None
    scope: str
    order: int
    icon: str | None = None
    badge: str | None = None
    parent_id: str | None = None
    plugin_id: str | None = None


class NavigationResponse(BaseModel):
    scope: str
    ready: bool
    entries: list[MenuEntryResponse]


class RouteResponse(BaseModel):
    path: str
    name: str
    scope: str
    lazy: bool
    plugin_id: str | None = None


class RouteManifestResponse(BaseModel):
    ready: bool
    version: int
    routes: list[RouteResponse]


class RouteResolutionResponse(BaseModel):
    outcome: str
    path: str
    route: RouteResponse | None = None
    redirect_to: str | None = None
    denied_by: str | None = None
    upgrade: dict[str, Any] | None = None


class FeatureAccessResponse(BaseModel):
    plugin_id: str
    feature_key: str
    allowed: bool
    denied_by: str | None = None
    current_tier_id: str | None = None
    upgrade: dict[str, Any] | None = None


# ── Helpers ────────────────────────────────────────────────────────────────────


def _menu_response(entry: MenuEntry) -> MenuEntryResponse:
    return MenuEntryResponse(
        id=entry.id,
        label=entry.label,
        path=entry.path,
        scope=entry.scope,
        order=entry.order,
        icon=entry.icon,
        badge=entry.badge,
        parent_id=entry.parent_id,
        plugin_id=entry.plugin_id,
    )


def _route_response(route: RouteDefinition) -> RouteResponse:
    # Core routes never pass through the loader, so lazy may still be unset
    return RouteResponse(
        path=route.path,
        name=route.name,
        scope=route.scope,
        lazy=bool(route.lazy),
        plugin_id=route.plugin_id,
    )


def _plugin_response(runtime: PluginRuntime, tenant: Tenant, plugin_id: str) -> PluginResponse:
    registry = runtime.registry
    plugin = registry.get_plugin(plugin_id)
    state = registry.get_state(plugin_id)
    offering = registry.get_offering(plugin_id)
    return PluginResponse(
        id=plugin.id,
        name=plugin.name,
        version=plugin.version,
        description=plugin.description,
        status=state.status.value,
        enabled=registry.is_enabled(plugin_id),
        error=state.error,
        current_tier_id=tenant.current_tier_id(plugin_id),
        tiers=[
            TierResponse(
                tier_id=tier.tier_id,
                name=tier.name,
                position=tier.position,
                features=list(tier.features),
                price_monthly=tier.price_monthly,
                price_yearly=tier.price_yearly,
                price_lifetime=tier.price_lifetime,
                trial_days=tier.trial_days,
            )
            for tier in (offering.tiers if offering else ())
        ],
    )


# ── Plugin administration ──────────────────────────────────────────────────────


@router.get("/plugins", response_model=PluginCatalogResponse)
async def list_plugins(
    tenant: Tenant = Depends(get_current_tenant),
    runtime: PluginRuntime = Depends(get_runtime),
    _user: User = Depends(require_permission("plugins", "read")),
) -> PluginCatalogResponse:
    """List the tenant's plugin catalog with status and tiers."""
    plugins = sorted(runtime.registry.all_plugins(), key=lambda p: p.name)
    return PluginCatalogResponse(
        registry_status=runtime.registry.status.value,
        plugins=[_plugin_response(runtime, tenant, p.id) for p in plugins],
    )


@router.post("/plugins/refresh", response_model=RefreshResponse)
async def refresh_plugins(
    payload: RefreshRequest | None = None,
    tenant: Tenant = Depends(get_current_tenant),
    manager: RuntimeManager = Depends(get_runtime_manager),
    user: User = Depends(require_permission("plugins", "manage")),
) -> RefreshResponse:
    """Re-fetch plugin state for the tenant; a failed registry is rebuilt."""
    plugin_id = payload.plugin_id if payload else None
    runtime = await manager.refresh(tenant.id, plugin_id)
    report = runtime.loader.last_report
    logger.info("Plugins refreshed by user %s (tenant=%s, plugin=%s)", user.id, tenant.id, plugin_id or "*")
    return RefreshResponse(
        registry_status=runtime.registry.status.value,
        navigation_version=runtime.navigation.version,
        loaded=report.loaded if report else [],
        skipped=report.skipped if report else [],
        errors=[LoadFailureResponse(plugin_id=e.plugin_id, error=e.error, kind=e.kind) for e in report.errors]
        if report
        else [],
    )


@router.post("/plugins/{plugin_id}/upgrade", response_model=UpgradeResponse)
async def request_upgrade(
    plugin_id: str,
    payload: UpgradeBody,
    tenant: Tenant = Depends(get_current_tenant),
    runtime: PluginRuntime = Depends(get_runtime),
    user: User = Depends(require_permission("plugins", "manage")),
) -> UpgradeResponse:
    """Request a tier upgrade; without a billing handler the caller is redirected."""
    result = await runtime.upgrades.request_upgrade(runtime.registry, tenant, plugin_id, payload.tier_id, user.id)
    return UpgradeResponse(
        status=result.status,
        plugin_id=result.plugin_id,
        tier_id=result.tier_id,
        redirect_url=result.redirect_url,
    )


# ── Navigation & route manifest ────────────────────────────────────────────────


@router.get("/navigation", response_model=NavigationResponse)
async def get_navigation(
    scope: Literal["main", "admin", "user"] = Query("main"),
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    runtime: PluginRuntime = Depends(get_runtime),
) -> NavigationResponse:
    entries = runtime.gate.filter_menu(runtime.navigation.menu(scope), user, tenant)
    return NavigationResponse(
        scope=scope,
        ready=runtime.navigation.ready,
        entries=[_menu_response(e) for e in entries],
    )


@router.get("/routes", response_model=RouteManifestResponse)
async def get_routes(
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    runtime: PluginRuntime = Depends(get_runtime),
) -> RouteManifestResponse:
    """Routes the user can enter. Tier-locked routes are omitted; resolve them for an upgrade prompt."""
    routes = runtime.gate.filter_routes(runtime.navigation.routes(), user, tenant)
    return RouteManifestResponse(
        ready=runtime.navigation.ready,
        version=runtime.navigation.version,
        routes=[_route_response(r) for r in routes],
    )


@router.get("/routes/resolve", response_model=RouteResolutionResponse)
async def resolve_route(
    path: str = Query(..., min_length=1),
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    runtime: PluginRuntime = Depends(get_runtime),
) -> RouteResolutionResponse:
    resolution = runtime.gate.guard_route(runtime.navigation, path, user, tenant)
    decision = resolution.decision
    return RouteResolutionResponse(
        outcome=resolution.outcome.value,
        path=resolution.path,
        route=_route_response(resolution.route) if resolution.route else None,
        redirect_to=resolution.redirect_to,
        denied_by=decision.denied_by.value if decision and decision.denied_by else None,
        upgrade=resolution.upgrade.to_dict() if resolution.upgrade else None,
    )


# ── Entitlements ───────────────────────────────────────────────────────────────


@router.get("/features/{plugin_id}/{feature_key}", response_model=FeatureAccessResponse)
async def check_feature(
    plugin_id: str,
    feature_key: str,
    resource: str | None = Query(None),
    action: str | None = Query(None),
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    runtime: PluginRuntime = Depends(get_runtime),
) -> FeatureAccessResponse:
    """Evaluate one feature for the caller; tier denials include the upgrade target."""
    decision = runtime.gate.evaluate(user, tenant, plugin_id, resource, action, feature_key)
    prompt = runtime.gate.upgrade_prompt_for(decision)
    return FeatureAccessResponse(
        plugin_id=plugin_id,
        feature_key=feature_key,
        allowed=decision.allowed,
        denied_by=decision.denied_by.value if decision.denied_by else None,
        current_tier_id=decision.current_tier_id,
        upgrade=prompt.to_dict() if prompt else None,
    )
