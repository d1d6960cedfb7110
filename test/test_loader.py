"""
Plugin Loader Tests

Test classes:
    TestPluginBundle     — abstract base class and contribution defaults
    TestDiscovery        — source package scanning
    TestLoad             — enabled-set / published-set agreement
    TestPartialFailure   — invalid contributions excluded, rest loaded
    TestNavigationModel  — core entries, menu ordering, path matching
    TestBlogBundle       — bundled blog plugin contributions
"""

from __future__ import annotations

import asyncio

import pytest
from utils.backend import BLOG_ID, FakeBackend, catalog_payload

GOOD_BUNDLE = """
from portal.plugins.base import MenuEntry, PluginBundle, RouteDefinition


class GoodBundle(PluginBundle):
    name = "Good"

    @property
    def plugin_id(self):
        return "p-good"

    def routes(self):
        return (RouteDefinition(path="/good", name="good.home"),)

    def menu(self):
        return (MenuEntry(id="good", label="Good", path="/good"),)


bundle = GoodBundle()
"""

CLASHING_BUNDLE = """
from portal.plugins.base import PluginBundle, RouteDefinition


class ClashingBundle(PluginBundle):
    @property
    def plugin_id(self):
        return "p-clash"

    def routes(self):
        return (RouteDefinition(path="/admin", name="clash.admin", scope="admin"),)


def create_bundle():
    return ClashingBundle()
"""

BROKEN_MODULE = """
raise RuntimeError("bundle import exploded")
"""

HELPER_MODULE = """
SHARED = 1
"""


def _catalog(*plugin_ids: str, status: str = "enabled") -> dict:
    plugins = [{"id": pid, "name": pid, "version": "1.0.0"} for pid in plugin_ids]
    return catalog_payload(status=status, plugins=plugins)


def _runtime_parts(registry):
    from portal.plugins.loader import PluginLoader
    from portal.plugins.navigation import NavigationModel

    navigation = NavigationModel()
    return PluginLoader(registry, navigation), navigation


# ══════════════════════════════════════════════════════════════════════════════
# 1. TestPluginBundle
# ══════════════════════════════════════════════════════════════════════════════


class TestPluginBundle:
    def test_bundle_is_abstract(self):
        from portal.plugins.base import PluginBundle

        with pytest.raises(TypeError):
            PluginBundle()  # type: ignore[abstract]

    @pytest.mark.asyncio
    async def test_contributions_default_empty(self):
        from portal.plugins.base import PluginBundle

        class Minimal(PluginBundle):
            @property
            def plugin_id(self):
                return "minimal"

        bundle = Minimal()
        assert tuple(bundle.routes()) == ()
        assert tuple(bundle.menu()) == ()
        assert await bundle.on_load() is None

    def test_route_defaults(self):
        from portal.plugins.base import RouteDefinition

        route = RouteDefinition(path="/x", name="x")
        assert route.scope == "main"
        assert route.lazy is None
        assert route.plugin_id is None


# ══════════════════════════════════════════════════════════════════════════════
# 2. TestDiscovery
# ══════════════════════════════════════════════════════════════════════════════


class TestDiscovery:
    def test_discovers_bundle_and_factory(self, bundle_package):
        from portal.plugins.loader import discover_bundles

        source = bundle_package({"good": GOOD_BUNDLE, "clash": CLASHING_BUNDLE, "helpers": HELPER_MODULE})
        bundles, failures = discover_bundles(source)
        assert set(bundles) == {"p-good", "p-clash"}
        assert failures == []

    def test_import_failure_recorded(self, bundle_package):
        from portal.plugins.loader import discover_bundles

        source = bundle_package({"good": GOOD_BUNDLE, "broken": BROKEN_MODULE})
        bundles, failures = discover_bundles(source)
        assert set(bundles) == {"p-good"}
        assert len(failures) == 1
        assert "exploded" in failures[0].error
        assert failures[0].kind == "partial_load"

    def test_missing_source_raises(self):
        from portal.exceptions import LoaderError
        from portal.plugins.loader import discover_bundles

        with pytest.raises(LoaderError):
            discover_bundles("portal.plugins.no_such_package")

    def test_module_source_rejected(self):
        from portal.exceptions import LoaderError
        from portal.plugins.loader import discover_bundles

        with pytest.raises(LoaderError):
            discover_bundles("portal.plugins.base")

    def test_default_source_finds_blog(self):
        from portal.plugins.loader import discover_bundles

        bundles, failures = discover_bundles("portal.plugins.bundles")
        assert BLOG_ID in bundles
        assert failures == []


# ══════════════════════════════════════════════════════════════════════════════
# 3. TestLoad
# ══════════════════════════════════════════════════════════════════════════════


class TestLoad:
    @pytest.mark.asyncio
    async def test_load_before_registry_settles_raises(self, backend, make_registry):
        from portal.exceptions import LoaderError

        loader, navigation = _runtime_parts(make_registry(backend))
        with pytest.raises(LoaderError):
            await loader.load()
        assert not navigation.ready

    @pytest.mark.asyncio
    async def test_enabled_plugin_contributes(self, backend, make_registry):
        from portal.plugins.loader import LoadOptions, LoaderStatus

        registry = make_registry(backend)
        loader, navigation = _runtime_parts(registry)

        await registry.initialize()
        report = await loader.load(LoadOptions(source="portal.plugins.bundles"))
        assert report.ok
        assert report.loaded == [BLOG_ID]
        assert navigation.contributed_plugin_ids() == {p.id for p in registry.enabled_plugins()}
        assert navigation.find_route("/admin/blog").plugin_id == BLOG_ID
        assert loader.status is LoaderStatus.LOADED

    @pytest.mark.asyncio
    async def test_disabled_plugin_skipped(self, make_registry):
        from portal.plugins.loader import LoadOptions

        registry = make_registry(FakeBackend(catalog=catalog_payload(status="disabled")))
        loader, navigation = _runtime_parts(registry)

        await registry.initialize()
        report = await loader.load(LoadOptions(source="portal.plugins.bundles"))
        assert report.skipped == [BLOG_ID]
        assert navigation.contributed_plugin_ids() == set()
        assert navigation.find_route("/blog") is None

    @pytest.mark.asyncio
    async def test_failed_registry_loads_core_only(self, backend, make_registry):
        from portal.exceptions import RegistryError
        from portal.plugins.loader import LoadOptions

        backend.catalog_statuses = [500]
        registry = make_registry(backend)
        loader, navigation = _runtime_parts(registry)

        with pytest.raises(RegistryError):
            await registry.initialize()
        report = await loader.load(LoadOptions(source="portal.plugins.bundles"))
        assert report.loaded == []
        assert navigation.ready
        assert navigation.plugin_routes() == []
        assert navigation.find_route("/admin/users") is not None

    @pytest.mark.asyncio
    async def test_concurrent_loads_publish_once(self, backend, make_registry):
        from portal.plugins.loader import LoadOptions

        registry = make_registry(backend)
        loader, navigation = _runtime_parts(registry)

        await registry.initialize()
        options = LoadOptions(source="portal.plugins.bundles")
        reports = await asyncio.gather(*(loader.load(options) for _ in range(5)))
        assert navigation.version == 1
        assert all(r is reports[0] for r in reports)

    @pytest.mark.asyncio
    async def test_repeated_loads_do_not_duplicate(self, backend, make_registry):
        from portal.plugins.loader import LoadOptions

        registry = make_registry(backend)
        loader, navigation = _runtime_parts(registry)

        await registry.initialize()
        options = LoadOptions(source="portal.plugins.bundles")
        await loader.load(options)
        await loader.load(options)
        paths = [r.path for r in navigation.routes()]
        assert len(paths) == len(set(paths))
        assert navigation.version == 2

    @pytest.mark.asyncio
    async def test_on_load_called_once(self, backend, make_registry, monkeypatch):
        from portal.plugins.bundles.blog import BlogBundle
        from portal.plugins.loader import LoadOptions

        registry = make_registry(backend)
        loader, _ = _runtime_parts(registry)
        calls = []

        async def fake_on_load(self):
            calls.append(self.plugin_id)

        monkeypatch.setattr(BlogBundle, "on_load", fake_on_load)
        await registry.initialize()
        options = LoadOptions(source="portal.plugins.bundles")
        await loader.load(options)
        await loader.load(options)
        assert calls == [BLOG_ID]

    @pytest.mark.asyncio
    async def test_lazy_option_fills_unset_routes(self, backend, make_registry):
        from portal.plugins.loader import LoadOptions

        registry = make_registry(backend)
        loader, navigation = _runtime_parts(registry)

        await registry.initialize()
        await loader.load(LoadOptions(source="portal.plugins.bundles", lazy_load=True))
        assert navigation.find_route("/admin/blog").lazy is True
        assert navigation.find_route("/blog").lazy is False

    @pytest.mark.asyncio
    async def test_enabled_plugin_without_bundle_reported(self, bundle_package, make_registry):
        from portal.plugins.loader import LoadOptions

        source = bundle_package({"good": GOOD_BUNDLE})
        registry = make_registry(FakeBackend(catalog=_catalog("p-good", "p-orphan")))
        loader, navigation = _runtime_parts(registry)

        await registry.initialize()
        report = await loader.load(LoadOptions(source=source))
        assert report.loaded == ["p-good"]
        assert [e.plugin_id for e in report.errors] == ["p-orphan"]
        assert navigation.contributed_plugin_ids() == {"p-good"}

    @pytest.mark.asyncio
    async def test_reload_after_disable_removes_contributions(self, backend, make_registry):
        from portal.plugins.loader import LoadOptions

        registry = make_registry(backend)
        loader, navigation = _runtime_parts(registry)

        await registry.initialize()
        options = LoadOptions(source="portal.plugins.bundles")
        await loader.load(options)
        backend.catalog = catalog_payload(status="disabled")
        await registry.refresh()
        await loader.load(options)
        assert navigation.contributed_plugin_ids() == set()
        assert navigation.find_route("/blog") is None


# ══════════════════════════════════════════════════════════════════════════════
# 4. TestPartialFailure
# ══════════════════════════════════════════════════════════════════════════════


class TestPartialFailure:
    @pytest.mark.asyncio
    async def test_clashing_plugin_excluded_others_loaded(self, bundle_package, make_registry):
        from portal.plugins.loader import LoadOptions

        source = bundle_package({"good": GOOD_BUNDLE, "clash": CLASHING_BUNDLE})
        registry = make_registry(FakeBackend(catalog=_catalog("p-good", "p-clash")))
        loader, navigation = _runtime_parts(registry)

        await registry.initialize()
        report = await loader.load(LoadOptions(source=source))
        assert report.loaded == ["p-good"]
        assert [e.plugin_id for e in report.errors] == ["p-clash"]
        assert not report.ok
        assert navigation.find_route("/good").plugin_id == "p-good"
        assert navigation.find_route("/admin").plugin_id is None

    @pytest.mark.asyncio
    async def test_invalid_scope_rejected(self, bundle_package, make_registry):
        from portal.plugins.loader import LoadOptions

        source = bundle_package(
            {
                "odd": """
                from portal.plugins.base import PluginBundle, RouteDefinition


                class OddBundle(PluginBundle):
                    @property
                    def plugin_id(self):
                        return "p-odd"

                    def routes(self):
                        return (RouteDefinition(path="/odd", name="odd", scope="sidebar"),)


                bundle = OddBundle()
                """
            }
        )
        registry = make_registry(FakeBackend(catalog=_catalog("p-odd")))
        loader, navigation = _runtime_parts(registry)

        await registry.initialize()
        report = await loader.load(LoadOptions(source=source))
        assert report.loaded == []
        assert "sidebar" in report.errors[0].error
        assert navigation.plugin_routes() == []

    def test_relative_path_rejected(self):
        from portal.exceptions import ContributionError
        from portal.plugins.base import PluginBundle, RouteDefinition
        from portal.plugins.loader import LoadOptions, PluginLoader

        class Relative(PluginBundle):
            @property
            def plugin_id(self):
                return "p-rel"

            def routes(self):
                return (RouteDefinition(path="relative", name="rel"),)

        with pytest.raises(ContributionError) as exc_info:
            PluginLoader._resolve(Relative(), LoadOptions(source="x", lazy_load=True), set())
        assert exc_info.value.plugin_id == "p-rel"

    def test_duplicate_menu_id_rejected(self):
        from portal.exceptions import ContributionError
        from portal.plugins.base import MenuEntry, PluginBundle
        from portal.plugins.loader import LoadOptions, PluginLoader

        class Doubled(PluginBundle):
            @property
            def plugin_id(self):
                return "p-dup"

            def menu(self):
                return (MenuEntry(id="a", label="A"), MenuEntry(id="a", label="A again"))

        with pytest.raises(ContributionError):
            PluginLoader._resolve(Doubled(), LoadOptions(source="x", lazy_load=True), set())


# ══════════════════════════════════════════════════════════════════════════════
# 5. TestNavigationModel
# ══════════════════════════════════════════════════════════════════════════════


class TestNavigationModel:
    def test_not_ready_until_published(self):
        from portal.plugins.navigation import NavigationModel

        navigation = NavigationModel()
        assert not navigation.ready
        navigation.publish({})
        assert navigation.ready
        assert navigation.version == 1

    def test_core_entries_always_present(self):
        from portal.plugins.navigation import NavigationModel

        navigation = NavigationModel()
        assert "/admin/plugins" in navigation.core_paths
        assert [e.id for e in navigation.menu("admin")][0] == "admin.dashboard"

    def test_menu_sorted_by_order_then_label(self):
        from portal.plugins.base import MenuEntry
        from portal.plugins.navigation import Contribution, NavigationModel

        navigation = NavigationModel(core_routes=(), core_menu=())
        navigation.publish(
            {
                "p": Contribution(
                    plugin_id="p",
                    menu=(
                        MenuEntry(id="z", label="Zeta", order=5),
                        MenuEntry(id="b", label="Beta", order=1),
                        MenuEntry(id="a", label="Alpha", order=5),
                    ),
                )
            }
        )
        assert [e.id for e in navigation.menu("main")] == ["b", "a", "z"]

    @pytest.mark.parametrize(
        "pattern,path,expected",
        [
            ("/blog/:slug", "/blog/hello-world", True),
            ("/blog/:slug", "/blog", False),
            ("/admin/blog/:id/edit", "/admin/blog/42/edit", True),
            ("/blog", "/blog?page=2", True),
            ("/blog", "/blogs", False),
        ],
    )
    def test_match_path(self, pattern, path, expected):
        from portal.plugins.navigation import match_path

        assert match_path(pattern, path) is expected

    def test_literal_route_wins_over_parameter(self):
        from portal.plugins.base import RouteDefinition
        from portal.plugins.navigation import NavigationModel

        navigation = NavigationModel(
            core_routes=(
                RouteDefinition(path="/admin/blog/:id", name="by-id"),
                RouteDefinition(path="/admin/blog/new", name="new"),
            ),
            core_menu=(),
        )
        assert navigation.find_route("/admin/blog/new").name == "new"
        assert navigation.find_route("/admin/blog/7").name == "by-id"


# ══════════════════════════════════════════════════════════════════════════════
# 6. TestBlogBundle
# ══════════════════════════════════════════════════════════════════════════════


class TestBlogBundle:
    def test_plugin_id_from_settings(self):
        from unittest.mock import patch

        from portal.config import settings
        from portal.plugins.bundles.blog import create_bundle

        with patch.object(settings, "blog_plugin_id", "custom-blog-id"):
            assert create_bundle().plugin_id == "custom-blog-id"

    def test_admin_routes_require_blog_manage(self):
        from portal.plugins.bundles.blog import BlogBundle
        from portal.plugins.models import Permission

        admin_routes = [r for r in BlogBundle().routes() if r.scope == "admin"]
        assert admin_routes
        assert all(r.permission == Permission("blog", "manage") for r in admin_routes)

    def test_route_paths_unique(self):
        from portal.plugins.bundles.blog import BlogBundle

        paths = [r.path for r in BlogBundle().routes()]
        assert len(paths) == len(set(paths))
