"""
Plugin Backend Client

Reads the plugin catalog, per-tenant plugin state and marketplace tiers from
the platform backend and converts them into entitlement model records.

Error mapping:
    /api/plugins  404           → empty catalog (no plugins available)
    /api/plugins  other non-2xx → RegistryUnreachableError
    transport error / timeout   → RegistryUnreachableError
    schema/invariant failure    → RegistryMalformedError
    /api/saas/marketplace non-2xx or transport error → None (tier data unavailable)
    /api/plugins/licenses any failure → tenant without subscriptions (logged)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from portal.exceptions import RegistryMalformedError, RegistryUnreachableError
from portal.plugins.models import (
    Plugin,
    PluginOffering,
    PluginState,
    Tenant,
    TenantSubscription,
    Tier,
    validate_tier_sequence,
)
from portal.plugins.schemas import CatalogResponse, LicensesResponse, MarketplaceResponse

logger = logging.getLogger(__name__)

CATALOG_PATH = "/api/plugins"
MARKETPLACE_PATH = "/api/saas/marketplace"
LICENSES_PATH = "/api/plugins/licenses"


@dataclass(frozen=True)
class Catalog:
    """Plugins known to a tenant and their states, keyed by plugin id."""

    plugins: dict[str, Plugin] = field(default_factory=dict)
    states: dict[str, PluginState] = field(default_factory=dict)


class PluginBackendClient:
    """Async client for the plugin catalog and marketplace endpoints."""

    def __init__(self, http: httpx.AsyncClient, tenant_id: str | None = None):
        self.http = http
        self.tenant_id = tenant_id

    def _headers(self, token: str | None = None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.tenant_id:
            headers["X-Tenant-ID"] = self.tenant_id
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _get(self, path: str, token: str | None = None) -> httpx.Response:
        try:
            return await self.http.get(path, headers=self._headers(token))
        except httpx.TimeoutException as e:
            raise RegistryUnreachableError("Plugin backend request timed out", endpoint=path) from e
        except httpx.RequestError as e:
            raise RegistryUnreachableError(f"Request error: {e}", endpoint=path) from e

    @staticmethod
    def _json(response: httpx.Response, path: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RegistryMalformedError(f"{path} returned a non-JSON body") from e

    async def fetch_catalog(self) -> Catalog:
        """Fetch plugin identities and per-tenant states."""
        response = await self._get(CATALOG_PATH)
        if response.status_code == 404:
            logger.info("Plugin catalog not found (404) for tenant %s; no plugins available", self.tenant_id)
            return Catalog()
        if not response.is_success:
            raise RegistryUnreachableError(
                f"Plugin backend returned HTTP {response.status_code}",
                endpoint=CATALOG_PATH,
            )

        try:
            parsed = CatalogResponse.model_validate(self._json(response, CATALOG_PATH))
        except ValidationError as e:
            raise RegistryMalformedError(f"Invalid plugin catalog: {e.error_count()} validation error(s)") from e

        plugins: dict[str, Plugin] = {}
        for record in parsed.plugins:
            if record.id in plugins:
                raise RegistryMalformedError("Duplicate plugin in catalog", plugin_id=record.id)
            plugins[record.id] = Plugin(
                id=record.id,
                name=record.name,
                version=record.version,
                description=record.description,
            )

        states: dict[str, PluginState] = {}
        for record in parsed.states:
            if record.id in states:
                raise RegistryMalformedError("More than one state for plugin", plugin_id=record.id)
            if record.id not in plugins:
                logger.warning("Ignoring state for unknown plugin %s", record.id)
                continue
            states[record.id] = PluginState(plugin_id=record.id, status=record.status, error=record.error)

        return Catalog(plugins=plugins, states=states)

    async def fetch_marketplace(self) -> dict[str, PluginOffering] | None:
        """
        Fetch tier sequences per plugin.

        Returns None when the marketplace is unavailable, so callers can tell
        an outage apart from a marketplace that lists no tiers.
        """
        try:
            response = await self._get(MARKETPLACE_PATH)
        except RegistryUnreachableError as e:
            logger.warning("Marketplace unavailable: %s", e.message)
            return None
        if not response.is_success:
            logger.warning("Marketplace returned HTTP %d; tier data unavailable", response.status_code)
            return None

        try:
            parsed = MarketplaceResponse.model_validate(self._json(response, MARKETPLACE_PATH))
        except ValidationError as e:
            raise RegistryMalformedError(f"Invalid marketplace data: {e.error_count()} validation error(s)") from e

        offerings: dict[str, PluginOffering] = {}
        for record in parsed.plugins:
            tiers = [
                Tier(
                    tier_id=tier.tier_id,
                    name=tier.name,
                    position=index if tier.position is None else tier.position,
                    features=tuple(tier.features),
                    price_monthly=tier.price_monthly,
                    price_yearly=tier.price_yearly,
                    price_lifetime=tier.price_lifetime,
                    trial_days=tier.trial_days,
                )
                for index, tier in enumerate(record.tiers)
            ]
            offerings[record.id] = PluginOffering(
                plugin_id=record.id,
                name=record.name,
                description=record.description or "",
                tiers=validate_tier_sequence(record.id, tiers),
            )
        return offerings

    async def fetch_tenant(self, token: str | None = None) -> Tenant:
        """
        Fetch the tenant record and its plugin licences, forwarding the caller's token.

        Any failure degrades to the tenant with no subscriptions, so paid
        features stay locked rather than the request failing.
        """
        unlicensed = Tenant(id=self.tenant_id or "")
        try:
            response = await self._get(LICENSES_PATH, token=token)
        except RegistryUnreachableError as e:
            logger.warning("Licences unavailable for tenant %s: %s", self.tenant_id, e.message)
            return unlicensed
        if not response.is_success:
            logger.warning("Licences returned HTTP %d for tenant %s", response.status_code, self.tenant_id)
            return unlicensed

        try:
            parsed = LicensesResponse.model_validate(self._json(response, LICENSES_PATH))
        except (ValidationError, RegistryMalformedError) as e:
            logger.warning("Ignoring malformed licence data for tenant %s: %s", self.tenant_id, e)
            return unlicensed

        subscriptions = tuple(
            TenantSubscription(
                plugin_id=record.plugin_id,
                tier_id=record.tier_id,
                status=record.status,
                expires_at=record.expires_at,
            )
            for record in parsed.licenses
        )
        if parsed.tenant is None:
            return Tenant(id=unlicensed.id, subscriptions=subscriptions)
        return Tenant(id=parsed.tenant.id, name=parsed.tenant.name, subscriptions=subscriptions)
