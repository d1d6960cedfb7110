"""
Entitlement Gate

One decision function for every place that asks "may this user reach this
plugin feature": menu filtering, route guards and API dependencies.

Evaluation order (short-circuits on the first failure):
    1. plugin_id given and the plugin is not enabled   → deny (plugin_disabled)
    2. permission given and the user lacks it          → deny (permission)
    3. feature_key given and the tenant's tier for the
       plugin does not unlock it                       → deny (tier)
    4. allow

The gate holds no state of its own; results depend only on the registry
snapshot, the user, the tenant and the clock.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from portal.plugins.base import MenuEntry, RouteDefinition
from portal.plugins.models import FeatureKey, Tenant, User
from portal.plugins.upgrade import UpgradePrompt, build_upgrade_prompt

if TYPE_CHECKING:
    from portal.auth.permissions import PermissionEvaluator
    from portal.plugins.navigation import NavigationModel
    from portal.plugins.registry import PluginRegistry


class DenialReason(str, Enum):
    PLUGIN_DISABLED = "plugin_disabled"
    PERMISSION = "permission"
    TIER = "tier"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    denied_by: DenialReason | None = None
    plugin_id: str | None = None
    feature_key: FeatureKey | None = None
    current_tier_id: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


class RouteOutcome(str, Enum):
    ALLOW = "allow"
    REDIRECT = "redirect"
    UPGRADE = "upgrade"
    PENDING = "pending"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class RouteResolution:
    outcome: RouteOutcome
    path: str
    route: RouteDefinition | None = None
    redirect_to: str | None = None
    decision: AccessDecision | None = None
    upgrade: UpgradePrompt | None = None


class EntitlementGate:
    """Combines plugin state, permissions and tier features into one decision."""

    def __init__(
        self,
        registry: PluginRegistry,
        evaluator: PermissionEvaluator,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.evaluator = evaluator
        self._clock = clock

    def evaluate(
        self,
        user: User,
        tenant: Tenant,
        plugin_id: str | None = None,
        resource: str | None = None,
        action: str | None = None,
        feature_key: FeatureKey | None = None,
    ) -> AccessDecision:
        if plugin_id is not None and not self.registry.is_enabled(plugin_id):
            return AccessDecision(False, DenialReason.PLUGIN_DISABLED, plugin_id, feature_key)

        if resource is not None and action is not None:
            if not self.evaluator.has_permission(user, resource, action):
                return AccessDecision(False, DenialReason.PERMISSION, plugin_id, feature_key)

        current_tier_id = None
        if feature_key is not None:
            if plugin_id is None:
                return AccessDecision(False, DenialReason.TIER, None, feature_key)
            current_tier_id = tenant.current_tier_id(plugin_id, now=self._clock())
            offering = self.registry.get_offering(plugin_id)
            tier = offering.tier(current_tier_id) if offering else None
            if tier is None or not tier.unlocks(feature_key):
                return AccessDecision(False, DenialReason.TIER, plugin_id, feature_key, current_tier_id)

        return AccessDecision(True, None, plugin_id, feature_key, current_tier_id)

    def can_access_feature(
        self,
        user: User,
        tenant: Tenant,
        plugin_id: str | None,
        resource: str,
        action: str,
        feature_key: FeatureKey | None = None,
    ) -> bool:
        return self.evaluate(user, tenant, plugin_id, resource, action, feature_key).allowed

    def check_entry(self, entry: MenuEntry | RouteDefinition, user: User, tenant: Tenant) -> AccessDecision:
        """Evaluate a menu entry or route using its own plugin/permission/feature requirements."""
        permission = entry.permission
        return self.evaluate(
            user,
            tenant,
            plugin_id=entry.plugin_id,
            resource=permission.resource if permission else None,
            action=permission.action if permission else None,
            feature_key=entry.feature,
        )

    def filter_menu(self, entries: Iterable[MenuEntry], user: User, tenant: Tenant) -> list[MenuEntry]:
        """Keep entries the user can reach; descendants of a hidden entry are hidden too."""
        entries = list(entries)
        # Parents may be listed after their children when sorted by order
        allowed = {e.id: self.check_entry(e, user, tenant).allowed for e in entries}
        parents = {e.id: e.parent_id for e in entries}

        def reachable(entry_id: str) -> bool:
            seen: set[str] = set()
            current: str | None = entry_id
            # Parents outside this entry set belong to another scope and do not hide anything
            while current is not None and current in allowed:
                if current in seen or not allowed[current]:
                    return False
                seen.add(current)
                current = parents[current]
            return True

        return [entry for entry in entries if reachable(entry.id)]

    def filter_routes(self, routes: Iterable[RouteDefinition], user: User, tenant: Tenant) -> list[RouteDefinition]:
        return [route for route in routes if self.check_entry(route, user, tenant).allowed]

    def guard_route(self, navigation: NavigationModel, path: str, user: User, tenant: Tenant) -> RouteResolution:
        """
        Decide what happens when path is entered directly (e.g. typed URL).

        Unknown paths are PENDING until plugin contributions are published, so
        a plugin page is never treated as missing before the loader has run.
        """
        route = navigation.find_route(path)
        if route is None:
            outcome = RouteOutcome.NOT_FOUND if navigation.ready else RouteOutcome.PENDING
            return RouteResolution(outcome=outcome, path=path)

        decision = self.check_entry(route, user, tenant)
        if decision.allowed:
            return RouteResolution(outcome=RouteOutcome.ALLOW, path=path, route=route, decision=decision)

        if decision.denied_by is DenialReason.TIER and route.plugin_id is not None and route.feature is not None:
            prompt = build_upgrade_prompt(
                self.registry.get_offering(route.plugin_id),
                route.plugin_id,
                decision.current_tier_id,
                route.feature,
            )
            return RouteResolution(
                outcome=RouteOutcome.UPGRADE,
                path=path,
                route=route,
                redirect_to=prompt.upgrade_url,
                decision=decision,
                upgrade=prompt,
            )

        fallback = "/admin" if route.scope == "admin" and path != "/admin" else "/"
        return RouteResolution(
            outcome=RouteOutcome.REDIRECT,
            path=path,
            route=route,
            redirect_to=fallback,
            decision=decision,
        )

    def upgrade_prompt_for(self, decision: AccessDecision) -> UpgradePrompt | None:
        """Upgrade prompt for a tier denial; None for every other outcome."""
        if decision.denied_by is not DenialReason.TIER or decision.plugin_id is None or decision.feature_key is None:
            return None
        return build_upgrade_prompt(
            self.registry.get_offering(decision.plugin_id),
            decision.plugin_id,
            decision.current_tier_id,
            decision.feature_key,
        )
