"""
Upgrade Resolver

Given a feature a tenant was denied and the tier it currently holds, find the
tier to offer. Pure functions over already-loaded tier data; nothing here
fetches.

UpgradeService hands an accepted upgrade over to the billing collaborator
through the `on_upgrade` callback. Without a callback the caller is sent to
the plugins admin page.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from portal.exceptions import PluginNotFoundError, TierNotFoundError
from portal.plugins.models import FeatureKey, PluginOffering, Tenant, Tier

if TYPE_CHECKING:
    from portal.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

PLUGINS_ADMIN_URL = "/admin/plugins"

# Number of tier features listed in an upgrade prompt before "+N more"
PROMPT_FEATURE_PREVIEW = 3


def resolve_upgrade_target(
    offering: PluginOffering | None,
    current_tier_id: str | None,
    feature_key: FeatureKey,
) -> Tier | None:
    """
    Return the cheapest tier above the current one that unlocks feature_key.

    A current tier the plugin does not offer counts as below the lowest tier.
    When no higher tier unlocks the feature the top tier is returned, since
    tier features only grow along the sequence. Returns None only when the
    plugin has no tiers.
    """
    if offering is None or not offering.tiers:
        return None
    position = offering.position_of(current_tier_id)
    for tier in offering.tiers[position + 1 :]:
        if tier.unlocks(feature_key):
            return tier
    return offering.top_tier


def yearly_savings_percent(tier: Tier) -> int | None:
    """Percent saved by paying yearly instead of twelve monthly payments."""
    if not tier.price_monthly or not tier.price_yearly:
        return None
    annual = tier.price_monthly * 12
    return math.floor((annual - tier.price_yearly) / annual * 100 + 0.5)


@dataclass(frozen=True)
class UpgradePrompt:
    """What the UI shows when a feature is locked behind a higher tier."""

    plugin_id: str
    plugin_name: str
    feature_key: FeatureKey
    current_tier_id: str | None
    target: Tier | None
    upgrade_url: str = PLUGINS_ADMIN_URL

    @property
    def highlighted_features(self) -> tuple[FeatureKey, ...]:
        return self.target.features[:PROMPT_FEATURE_PREVIEW] if self.target else ()

    @property
    def more_features_count(self) -> int:
        return max(len(self.target.features) - PROMPT_FEATURE_PREVIEW, 0) if self.target else 0

    def to_dict(self) -> dict[str, Any]:
        target = None
        if self.target is not None:
            target = {
                "tier_id": self.target.tier_id,
                "name": self.target.name,
                "price_monthly": self.target.price_monthly,
                "price_yearly": self.target.price_yearly,
                "price_lifetime": self.target.price_lifetime,
                "yearly_savings_percent": yearly_savings_percent(self.target),
                "highlighted_features": list(self.highlighted_features),
                "more_features_count": self.more_features_count,
            }
        return {
            "plugin_id": self.plugin_id,
            "plugin_name": self.plugin_name,
            "feature_key": self.feature_key,
            "current_tier_id": self.current_tier_id,
            "target": target,
            "upgrade_url": self.upgrade_url,
        }


def build_upgrade_prompt(
    offering: PluginOffering | None,
    plugin_id: str,
    current_tier_id: str | None,
    feature_key: FeatureKey,
) -> UpgradePrompt:
    return UpgradePrompt(
        plugin_id=plugin_id,
        plugin_name=offering.name if offering else plugin_id,
        feature_key=feature_key,
        current_tier_id=current_tier_id,
        target=resolve_upgrade_target(offering, current_tier_id, feature_key),
    )


# ── Upgrade requests ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class UpgradeRequest:
    tenant_id: str
    plugin_id: str
    tier_id: str
    requested_by: int | None = None


@dataclass(frozen=True)
class UpgradeResult:
    status: str  # "requested" | "redirect"
    plugin_id: str
    tier_id: str
    redirect_url: str | None = None


UpgradeHandler = Callable[[UpgradeRequest], Awaitable[Any]]


class UpgradeService:
    """Validates upgrade targets and delegates them to the billing collaborator."""

    def __init__(self, on_upgrade: UpgradeHandler | None = None, fallback_url: str = PLUGINS_ADMIN_URL) -> None:
        self.on_upgrade = on_upgrade
        self.fallback_url = fallback_url

    async def request_upgrade(
        self,
        registry: PluginRegistry,
        tenant: Tenant,
        plugin_id: str,
        tier_id: str,
        requested_by: int | None = None,
    ) -> UpgradeResult:
        """
        Ask for tenant to move to tier_id on plugin_id.

        Raises:
            PluginNotFoundError: plugin has no marketplace offering.
            TierNotFoundError:   tier_id is not one of the plugin's tiers.
        """
        offering = registry.get_offering(plugin_id)
        if offering is None:
            raise PluginNotFoundError(plugin_id)
        if offering.tier(tier_id) is None:
            raise TierNotFoundError(plugin_id, tier_id)

        if self.on_upgrade is None:
            return UpgradeResult(status="redirect", plugin_id=plugin_id, tier_id=tier_id, redirect_url=self.fallback_url)

        request = UpgradeRequest(tenant_id=tenant.id, plugin_id=plugin_id, tier_id=tier_id, requested_by=requested_by)
        await self.on_upgrade(request)
        logger.info("Upgrade requested: tenant=%s plugin=%s tier=%s", tenant.id, plugin_id, tier_id)
        return UpgradeResult(status="requested", plugin_id=plugin_id, tier_id=tier_id)
