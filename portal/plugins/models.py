"""
Entitlement Model

Pure data shared by the registry, loader, gate and upgrade resolver:
plugins and their per-tenant state, subscription tiers and the feature
keys they unlock, permissions, and the read-only user/tenant views handed
over by the auth subsystem.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from portal.exceptions import RegistryMalformedError

# A dotted string naming a gated capability, e.g. "blog.unlimited-posts"
FeatureKey = str


class PluginStatus(str, Enum):
    """Lifecycle status of a plugin for one tenant."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    ERROR = "error"


@dataclass(frozen=True)
class Plugin:
    """
    Published plugin identity.

    Attributes:
        id:          Stable opaque identifier (UUID in practice).
        name:        Human-readable name.
        version:     Semver string, e.g. "1.2.0".
        description: Optional marketing description.
    """

    id: str
    name: str
    version: str
    description: str = ""


@dataclass(frozen=True)
class PluginState:
    """State of one plugin for the registry's tenant. Absence means disabled."""

    plugin_id: str
    status: PluginStatus
    error: str | None = None

    @property
    def enabled(self) -> bool:
        return self.status is PluginStatus.ENABLED


@dataclass(frozen=True)
class Tier:
    """
    A subscription level for one plugin.

    Attributes:
        tier_id:        Identifier, e.g. "free", "pro".
        name:           Display name.
        position:       Rank within the plugin's tier sequence (lower = cheaper).
        features:       Ordered, de-duplicated feature keys this tier unlocks.
        price_monthly:  Display-only pricing facets.
        price_yearly:
        price_lifetime:
        trial_days:     Trial length offered with the tier.
    """

    tier_id: str
    name: str
    position: int
    features: tuple[FeatureKey, ...] = ()
    price_monthly: float | None = None
    price_yearly: float | None = None
    price_lifetime: float | None = None
    trial_days: int = 0

    def __post_init__(self) -> None:
        # dict.fromkeys keeps first occurrence order
        object.__setattr__(self, "features", tuple(dict.fromkeys(self.features)))

    def unlocks(self, feature_key: FeatureKey) -> bool:
        return feature_key in self.features


@dataclass(frozen=True)
class PluginOffering:
    """Marketplace view of a plugin: its ordered tier sequence."""

    plugin_id: str
    name: str
    description: str = ""
    tiers: tuple[Tier, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "tiers", tuple(sorted(self.tiers, key=lambda t: t.position)))

    def tier(self, tier_id: str | None) -> Tier | None:
        for tier in self.tiers:
            if tier.tier_id == tier_id:
                return tier
        return None

    def position_of(self, tier_id: str | None) -> int:
        """Index of the tier in the ordered sequence; -1 when absent (below the lowest tier)."""
        for index, tier in enumerate(self.tiers):
            if tier.tier_id == tier_id:
                return index
        return -1

    @property
    def top_tier(self) -> Tier | None:
        return self.tiers[-1] if self.tiers else None


@dataclass(frozen=True)
class Permission:
    """A (resource, action) pair. Matching is exact string equality."""

    resource: str
    action: str

    @classmethod
    def parse(cls, value: str) -> Permission:
        """Parse "resource:action", e.g. "blog:manage"."""
        resource, sep, action = value.partition(":")
        if not sep or not resource or not action:
            raise ValueError(f"Invalid permission string: {value!r}")
        return cls(resource=resource, action=action)

    def __str__(self) -> str:
        return f"{self.resource}:{self.action}"


@dataclass(frozen=True)
class User:
    """Read-only view of an authenticated user."""

    id: int
    tenant_id: str
    role_id: int
    permissions: frozenset[Permission] = field(default_factory=frozenset)


# Subscription statuses that grant access
_ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})


@dataclass(frozen=True)
class TenantSubscription:
    """A tenant's licence for one plugin at one tier."""

    plugin_id: str
    tier_id: str
    status: str = "active"
    expires_at: float | None = None

    def is_active(self, now: float) -> bool:
        if self.status not in _ACTIVE_SUBSCRIPTION_STATUSES:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True)
class Tenant:
    """Read-only view of a tenant and its plugin subscriptions."""

    id: str
    name: str = ""
    subscriptions: tuple[TenantSubscription, ...] = ()

    def current_tier_id(self, plugin_id: str, now: float | None = None) -> str | None:
        """Return the active tier for a plugin, or None when free/unentitled."""
        now = time.time() if now is None else now
        for subscription in self.subscriptions:
            if subscription.plugin_id == plugin_id and subscription.is_active(now):
                return subscription.tier_id
        return None


def validate_tier_sequence(plugin_id: str, tiers: Iterable[Tier]) -> tuple[Tier, ...]:
    """
    Check a plugin's tiers and return them ordered by position.

    Raises RegistryMalformedError on duplicate tier ids or positions, or when
    a higher tier drops a feature that a lower tier unlocks.
    """
    ordered = tuple(sorted(tiers, key=lambda t: t.position))
    seen_ids: set[str] = set()
    seen_positions: set[int] = set()
    for tier in ordered:
        if tier.tier_id in seen_ids:
            raise RegistryMalformedError(f"Duplicate tier '{tier.tier_id}'", plugin_id=plugin_id)
        if tier.position in seen_positions:
            raise RegistryMalformedError(f"Duplicate tier position {tier.position}", plugin_id=plugin_id)
        seen_ids.add(tier.tier_id)
        seen_positions.add(tier.position)

    for lower, higher in zip(ordered, ordered[1:]):
        missing = set(lower.features) - set(higher.features)
        if missing:
            raise RegistryMalformedError(
                f"Tier '{higher.tier_id}' drops features of lower tier '{lower.tier_id}': {sorted(missing)}",
                plugin_id=plugin_id,
            )
    return ordered
