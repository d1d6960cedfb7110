"""
Plugin Loader

Discovers bundled plugins from a source package, activates those the
registry reports as enabled, and publishes their route and menu
contributions into the NavigationModel.

Each module in the source package exports either a module-level `bundle`
(a PluginBundle instance) or a `create_bundle()` factory. Modules that
export neither are treated as helpers and ignored.

Guarantees:
    - load() only runs once the registry is READY or FAILED.
    - Concurrent load() calls share one pass; if the registry snapshot
      changes mid-pass, the pass repeats before anyone sees its result.
    - Contributions are replaced per plugin id in one publish, never appended.
    - A plugin whose contribution fails validation is excluded and reported;
      the rest still load.
"""

from __future__ import annotations

import asyncio
import dataclasses
import importlib
import logging
import pkgutil
from dataclasses import dataclass, field
from enum import Enum
from types import ModuleType
from typing import TYPE_CHECKING

from portal.config import settings
from portal.exceptions import ContributionError, LoaderError
from portal.plugins.base import NAVIGATION_SCOPES, MenuEntry, PluginBundle, RouteDefinition
from portal.plugins.navigation import Contribution

if TYPE_CHECKING:
    from portal.plugins.navigation import NavigationModel
    from portal.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadOptions:
    """Where to find plugin bundles and whether their routes are code-split."""

    source: str = field(default_factory=lambda: settings.plugin_source)
    lazy_load: bool = field(default_factory=lambda: settings.plugin_lazy_load)


@dataclass(frozen=True)
class PluginLoadFailure:
    """A plugin excluded from this load (partial load, not a fatal error)."""

    plugin_id: str
    error: str
    kind: str = "partial_load"


@dataclass
class LoadReport:
    loaded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[PluginLoadFailure] = field(default_factory=list)
    navigation_version: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors


class LoaderStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"


# ── Discovery ─────────────────────────────────────────────────────────────────


def _bundle_from_module(module: ModuleType) -> PluginBundle | None:
    candidate = getattr(module, "bundle", None)
    if candidate is None:
        factory = getattr(module, "create_bundle", None)
        if factory is None:
            return None
        candidate = factory()
    if not isinstance(candidate, PluginBundle):
        raise TypeError(f"{module.__name__} exports {type(candidate).__name__}, expected PluginBundle")
    return candidate


def discover_bundles(source: str) -> tuple[dict[str, PluginBundle], list[PluginLoadFailure]]:
    """
    Import every module of the source package and collect its bundle.

    Raises:
        LoaderError: the source package itself cannot be imported.

    Returns:
        (bundles keyed by plugin id, failures for modules that could not load)
    """
    try:
        package = importlib.import_module(source)
    except ImportError as e:
        raise LoaderError(f"Plugin source '{source}' cannot be imported: {e}", source=source) from e

    search_path = getattr(package, "__path__", None)
    if search_path is None:
        raise LoaderError(f"Plugin source '{source}' is not a package", source=source)

    bundles: dict[str, PluginBundle] = {}
    failures: list[PluginLoadFailure] = []
    for info in sorted(pkgutil.iter_modules(search_path), key=lambda m: m.name):
        module_name = f"{source}.{info.name}"
        try:
            bundle = _bundle_from_module(importlib.import_module(module_name))
        except Exception as exc:
            logger.warning("Plugin module %s failed to import: %s", module_name, exc)
            failures.append(PluginLoadFailure(plugin_id=module_name, error=str(exc)))
            continue
        if bundle is None:
            continue
        if bundle.plugin_id in bundles:
            failures.append(PluginLoadFailure(plugin_id=bundle.plugin_id, error=f"Duplicate bundle in {module_name}"))
            continue
        bundles[bundle.plugin_id] = bundle
    return bundles, failures


# ── Loader ────────────────────────────────────────────────────────────────────


class PluginLoader:
    """Activates enabled plugin bundles against a registry and navigation model."""

    def __init__(self, registry: PluginRegistry, navigation: NavigationModel) -> None:
        self.registry = registry
        self.navigation = navigation
        self._status = LoaderStatus.IDLE
        self._task: asyncio.Task[LoadReport] | None = None
        self._activated: set[str] = set()
        self.last_report: LoadReport | None = None

    @property
    def status(self) -> LoaderStatus:
        return self._status

    @property
    def loaded(self) -> bool:
        """True once at least one load pass has published."""
        return self.navigation.ready

    async def load(self, options: LoadOptions | None = None) -> LoadReport:
        """
        Merge contributions of every enabled plugin into the navigation model.

        Raises:
            LoaderError: the registry has not settled, or the source package is missing.
        """
        if not self.registry.settled:
            raise LoaderError(f"Plugin registry is {self.registry.status.value}; load requires it to be settled")

        options = options or LoadOptions()
        if self._task is not None:
            return await asyncio.shield(self._task)

        self._status = LoaderStatus.LOADING
        task = asyncio.create_task(self._run(options))
        self._task = task
        task.add_done_callback(self._on_done)
        return await asyncio.shield(task)

    def _on_done(self, task: asyncio.Task[LoadReport]) -> None:
        self._task = None
        self._status = LoaderStatus.LOADED if self.navigation.ready else LoaderStatus.IDLE

    async def _run(self, options: LoadOptions) -> LoadReport:
        while True:
            version = self.registry.snapshot.version
            report = await self._load_once(options)
            if self.registry.snapshot.version == version:
                self.last_report = report
                return report
            logger.debug("Registry changed during load; running another pass")

    async def _load_once(self, options: LoadOptions) -> LoadReport:
        bundles, failures = discover_bundles(options.source)
        report = LoadReport(errors=list(failures))
        contributions: dict[str, Contribution] = {}
        claimed_paths = set(self.navigation.core_paths)

        for plugin_id in sorted(bundles):
            bundle = bundles[plugin_id]
            if not self.registry.is_enabled(plugin_id):
                report.skipped.append(plugin_id)
                continue
            try:
                if plugin_id not in self._activated:
                    await bundle.on_load()
                    self._activated.add(plugin_id)
                contribution = self._resolve(bundle, options, claimed_paths)
            except Exception as exc:
                logger.warning("Plugin %s excluded from navigation: %s", plugin_id, exc)
                report.errors.append(PluginLoadFailure(plugin_id=plugin_id, error=str(exc)))
                continue
            claimed_paths.update(route.path for route in contribution.routes)
            contributions[plugin_id] = contribution
            report.loaded.append(plugin_id)

        for plugin in self.registry.enabled_plugins():
            if plugin.id not in bundles:
                report.errors.append(PluginLoadFailure(plugin_id=plugin.id, error="No bundle found for enabled plugin"))

        self.navigation.publish(contributions)
        report.navigation_version = self.navigation.version
        logger.info(
            "Plugin load complete: %d loaded, %d skipped, %d failed",
            len(report.loaded),
            len(report.skipped),
            len(report.errors),
        )
        return report

    @staticmethod
    def _resolve(bundle: PluginBundle, options: LoadOptions, claimed_paths: set[str]) -> Contribution:
        plugin_id = bundle.plugin_id

        routes: list[RouteDefinition] = []
        seen_paths: set[str] = set()
        for route in bundle.routes():
            if not isinstance(route, RouteDefinition):
                raise ContributionError(plugin_id, f"Route contribution must be RouteDefinition, got {route!r}")
            if not route.path.startswith("/"):
                raise ContributionError(plugin_id, f"Route path must be absolute: {route.path!r}")
            if not route.name:
                raise ContributionError(plugin_id, f"Route {route.path} has no name")
            if route.scope not in NAVIGATION_SCOPES:
                raise ContributionError(plugin_id, f"Unknown scope {route.scope!r} for route {route.path}")
            if route.path in seen_paths or route.path in claimed_paths:
                raise ContributionError(plugin_id, f"Route path already registered: {route.path}")
            seen_paths.add(route.path)
            lazy = options.lazy_load if route.lazy is None else route.lazy
            routes.append(dataclasses.replace(route, plugin_id=plugin_id, lazy=lazy))

        menu: list[MenuEntry] = []
        seen_ids: set[str] = set()
        for entry in bundle.menu():
            if not isinstance(entry, MenuEntry):
                raise ContributionError(plugin_id, f"Menu contribution must be MenuEntry, got {entry!r}")
            if not entry.id or not entry.label:
                raise ContributionError(plugin_id, "Menu entries need an id and a label")
            if entry.scope not in NAVIGATION_SCOPES:
                raise ContributionError(plugin_id, f"Unknown scope {entry.scope!r} for menu entry {entry.id}")
            if entry.id in seen_ids:
                raise ContributionError(plugin_id, f"Duplicate menu entry id: {entry.id}")
            seen_ids.add(entry.id)
            menu.append(dataclasses.replace(entry, plugin_id=plugin_id))

        return Contribution(plugin_id=plugin_id, routes=tuple(routes), menu=tuple(menu))
