"""
Per-tenant plugin runtime.

A PluginRuntime ties together one tenant's registry, loader, navigation
model and entitlement gate. RuntimeManager hands out one runtime per tenant
id and builds it lazily on first use.

Bootstrap order is fixed: registry.initialize() settles first, then the
loader publishes contributions. A registry that fails to initialize leaves
the runtime usable but fail-closed: core navigation only, every plugin
reported as disabled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from portal.auth.permissions import PermissionEvaluator
from portal.exceptions import RegistryError
from portal.plugins.client import PluginBackendClient
from portal.plugins.events import EVENT_PLUGIN_DISABLED, EVENT_PLUGIN_ENABLED
from portal.plugins.gate import EntitlementGate
from portal.plugins.loader import LoadOptions, LoadReport, PluginLoader
from portal.plugins.navigation import NavigationModel
from portal.plugins.registry import PluginRegistry, RegistryStatus
from portal.plugins.upgrade import UpgradeService

logger = logging.getLogger(__name__)


class PluginRuntime:
    """Registry, loader, navigation and gate for one tenant."""

    def __init__(
        self,
        tenant_id: str,
        registry: PluginRegistry,
        evaluator: PermissionEvaluator | None = None,
        options: LoadOptions | None = None,
        upgrades: UpgradeService | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.registry = registry
        self.navigation = NavigationModel()
        self.loader = PluginLoader(registry, self.navigation)
        self.gate = EntitlementGate(registry, evaluator or PermissionEvaluator())
        self.upgrades = upgrades or UpgradeService()
        self.options = options or LoadOptions()
        self._bootstrap_task: asyncio.Task[None] | None = None

        registry.subscribe(EVENT_PLUGIN_ENABLED, self._on_plugin_change)
        registry.subscribe(EVENT_PLUGIN_DISABLED, self._on_plugin_change)

    @property
    def failed(self) -> bool:
        return self.registry.status is RegistryStatus.FAILED

    async def ensure_ready(self) -> None:
        """Initialize the registry and run the first load, once."""
        if self.navigation.ready:
            return
        if self._bootstrap_task is None:
            self._bootstrap_task = asyncio.create_task(self._bootstrap())
            self._bootstrap_task.add_done_callback(self._on_bootstrap_done)
        await asyncio.shield(self._bootstrap_task)

    def _on_bootstrap_done(self, task: asyncio.Task[None]) -> None:
        # A failed bootstrap is retried by the next ensure_ready()
        if task.cancelled() or task.exception() is not None:
            self._bootstrap_task = None

    async def _bootstrap(self) -> None:
        try:
            await self.registry.initialize()
        except RegistryError as e:
            logger.warning(
                "Tenant %s running without plugins: registry %s (%s)",
                self.tenant_id,
                e.error_code,
                e.message,
            )
        await self.loader.load(self.options)

    async def _on_plugin_change(self, event: str, payload: dict[str, Any]) -> None:
        # Bootstrap publishes the initial set itself
        if not self.navigation.ready:
            return
        logger.info("Reloading plugins for tenant %s after %s (%s)", self.tenant_id, event, payload.get("plugin_id"))
        await self.loader.load(self.options)

    async def refresh(self, plugin_id: str | None = None) -> LoadReport | None:
        """Re-fetch registry state; enable/disable transitions reload navigation."""
        await self.ensure_ready()
        await self.registry.refresh(plugin_id)
        return self.loader.last_report


class RuntimeManager:
    """
    Owns one PluginRuntime per tenant.

    Args:
        http:      Shared client whose base_url points at the platform backend.
        evaluator: Permission evaluator shared by every tenant's gate.
        options:   Loader options applied to every tenant.
        upgrades:  Upgrade service shared by every tenant.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        evaluator: PermissionEvaluator | None = None,
        options: LoadOptions | None = None,
        upgrades: UpgradeService | None = None,
        **registry_kwargs: Any,
    ) -> None:
        self.http = http
        self.evaluator = evaluator or PermissionEvaluator()
        self.options = options
        self.upgrades = upgrades
        self.registry_kwargs = registry_kwargs
        self._runtimes: dict[str, PluginRuntime] = {}

    def _build(self, tenant_id: str) -> PluginRuntime:
        registry = PluginRegistry(PluginBackendClient(self.http, tenant_id=tenant_id), **self.registry_kwargs)
        return PluginRuntime(
            tenant_id,
            registry,
            evaluator=self.evaluator,
            options=self.options,
            upgrades=self.upgrades,
        )

    def peek(self, tenant_id: str) -> PluginRuntime | None:
        return self._runtimes.get(tenant_id)

    async def get(self, tenant_id: str) -> PluginRuntime:
        """Return the tenant's runtime, bootstrapping it on first use."""
        runtime = self._runtimes.get(tenant_id)
        if runtime is None:
            runtime = self._build(tenant_id)
            self._runtimes[tenant_id] = runtime
        await runtime.ensure_ready()
        return runtime

    def reset(self, tenant_id: str) -> None:
        """Forget the tenant's runtime; the next get() bootstraps a new one."""
        if self._runtimes.pop(tenant_id, None) is not None:
            logger.info("Plugin runtime reset for tenant %s", tenant_id)

    async def refresh(self, tenant_id: str, plugin_id: str | None = None) -> PluginRuntime:
        """
        Refresh a tenant's plugin state.

        A FAILED registry cannot refresh, so its runtime is rebuilt from scratch.
        """
        runtime = await self.get(tenant_id)
        if runtime.failed:
            self.reset(tenant_id)
            return await self.get(tenant_id)
        await runtime.refresh(plugin_id)
        return runtime
