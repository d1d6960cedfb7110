"""
Plugin Runtime Tests

Test classes:
    TestPluginRuntime   — bootstrap ordering, fail-closed degradation, reloads
    TestRuntimeManager  — one runtime per tenant, FAILED runtimes rebuilt
"""

from __future__ import annotations

import asyncio

import pytest
from utils.backend import BLOG_ID, CATALOG_PATH, TENANT_ID, FakeBackend, catalog_payload, no_sleep


def _manager(backend: FakeBackend, source: str = "portal.plugins.bundles"):
    from portal.plugins.loader import LoadOptions
    from portal.plugins.runtime import RuntimeManager

    return RuntimeManager(
        backend.client(),
        options=LoadOptions(source=source, lazy_load=True),
        retry_attempts=0,
        sleep=no_sleep,
    )


# ══════════════════════════════════════════════════════════════════════════════
# 1. TestPluginRuntime
# ══════════════════════════════════════════════════════════════════════════════


class TestPluginRuntime:
    @pytest.mark.asyncio
    async def test_ensure_ready_initializes_then_loads(self, backend):
        from portal.plugins.registry import RegistryStatus

        runtime = await _manager(backend).get(TENANT_ID)
        assert runtime.registry.status is RegistryStatus.READY
        assert runtime.navigation.ready
        assert runtime.navigation.contributed_plugin_ids() == {BLOG_ID}

    @pytest.mark.asyncio
    async def test_concurrent_ensure_ready_bootstraps_once(self, backend):
        from portal.plugins.client import PluginBackendClient
        from portal.plugins.loader import LoadOptions
        from portal.plugins.registry import PluginRegistry
        from portal.plugins.runtime import PluginRuntime

        backend.delay = 0.01
        registry = PluginRegistry(PluginBackendClient(backend.client(), TENANT_ID), retry_attempts=0)
        runtime = PluginRuntime(TENANT_ID, registry, options=LoadOptions(source="portal.plugins.bundles"))

        await asyncio.gather(*(runtime.ensure_ready() for _ in range(5)))
        assert backend.count(CATALOG_PATH) == 1
        assert runtime.navigation.version == 1

    @pytest.mark.asyncio
    async def test_registry_failure_degrades_to_core_navigation(self, backend):
        backend.catalog_statuses = [500]
        runtime = await _manager(backend).get(TENANT_ID)
        assert runtime.failed
        assert runtime.navigation.ready
        assert runtime.navigation.plugin_routes() == []
        assert {e.id for e in runtime.navigation.menu("admin")} >= {"admin.dashboard", "admin.plugins"}

    @pytest.mark.asyncio
    async def test_failed_bootstrap_is_retried(self, backend):
        from portal.exceptions import LoaderError
        from portal.plugins.loader import LoadOptions

        manager = _manager(backend, source="portal.plugins.no_such_package")
        with pytest.raises(LoaderError):
            await manager.get(TENANT_ID)

        runtime = manager.peek(TENANT_ID)
        assert not runtime.navigation.ready
        runtime.options = LoadOptions(source="portal.plugins.bundles")
        await runtime.ensure_ready()
        assert runtime.navigation.ready
        assert runtime.navigation.contributed_plugin_ids() == {BLOG_ID}
        # The registry settled on the first attempt and is not fetched again
        assert backend.count(CATALOG_PATH) == 1

    @pytest.mark.asyncio
    async def test_disable_event_reloads_navigation(self, backend):
        manager = _manager(backend)

        runtime = await manager.get(TENANT_ID)
        backend.catalog = catalog_payload(status="disabled")
        await runtime.refresh()
        assert runtime.navigation.contributed_plugin_ids() == set()
        assert runtime.loader.last_report.skipped == [BLOG_ID]

    @pytest.mark.asyncio
    async def test_enable_event_reloads_navigation(self):
        backend = FakeBackend(catalog=catalog_payload(status="disabled"))
        manager = _manager(backend)

        runtime = await manager.get(TENANT_ID)
        assert runtime.navigation.contributed_plugin_ids() == set()
        backend.catalog = catalog_payload(status="enabled")
        await runtime.refresh(BLOG_ID)
        assert runtime.navigation.contributed_plugin_ids() == {BLOG_ID}


# ══════════════════════════════════════════════════════════════════════════════
# 2. TestRuntimeManager
# ══════════════════════════════════════════════════════════════════════════════


class TestRuntimeManager:
    @pytest.mark.asyncio
    async def test_one_runtime_per_tenant(self, backend):
        manager = _manager(backend)

        first, second = await asyncio.gather(manager.get(TENANT_ID), manager.get(TENANT_ID))
        other = await manager.get("tenant-other")
        assert first is second
        assert other is not first
        assert backend.count(CATALOG_PATH) == 2

    @pytest.mark.asyncio
    async def test_tenant_header_per_runtime(self, backend):
        manager = _manager(backend)
        await manager.get("tenant-other")
        assert backend.requests[0].headers["X-Tenant-ID"] == "tenant-other"

    @pytest.mark.asyncio
    async def test_refresh_rebuilds_failed_runtime(self, backend):
        from portal.plugins.registry import RegistryStatus

        backend.catalog_statuses = [500, 200]
        manager = _manager(backend)

        failed = await manager.get(TENANT_ID)
        rebuilt = await manager.refresh(TENANT_ID)
        assert failed.failed
        assert rebuilt is not failed
        assert rebuilt.registry.status is RegistryStatus.READY
        assert manager.peek(TENANT_ID) is rebuilt

    @pytest.mark.asyncio
    async def test_reset_forgets_runtime(self, backend):
        manager = _manager(backend)
        await manager.get(TENANT_ID)
        manager.reset(TENANT_ID)
        assert manager.peek(TENANT_ID) is None
