"""
Navigation Model

Holds the portal's route table and navigation menus: a fixed set of core
(non-plugin) entries plus the contributions published by the plugin loader.

Plugin contributions are swapped in as one mapping keyed by plugin id.
Before the first publish `ready` is False and no plugin entry is visible, so
consumers see either no plugin entries or the complete set.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from portal.plugins.base import MenuEntry, RouteDefinition
from portal.plugins.models import Permission


@dataclass(frozen=True)
class Contribution:
    """Everything one plugin adds to the route table and menus."""

    plugin_id: str
    routes: tuple[RouteDefinition, ...] = ()
    menu: tuple[MenuEntry, ...] = ()


# ── Core entries (always present, gated only by permission) ──────────────────

CORE_ROUTES: tuple[RouteDefinition, ...] = (
    RouteDefinition(path="/", name="home"),
    RouteDefinition(path="/login", name="login"),
    RouteDefinition(path="/register", name="register"),
    RouteDefinition(path="/admin", name="admin.dashboard", scope="admin", permission=Permission("dashboard", "read")),
    RouteDefinition(path="/admin/users", name="admin.users", scope="admin", permission=Permission("users", "read")),
    RouteDefinition(path="/admin/roles", name="admin.roles", scope="admin", permission=Permission("roles", "read")),
    RouteDefinition(
        path="/admin/plugins", name="admin.plugins", scope="admin", permission=Permission("plugins", "read")
    ),
)

CORE_MENU: tuple[MenuEntry, ...] = (
    MenuEntry(id="home", label="Home", path="/", scope="main", order=0),
    MenuEntry(
        id="admin.dashboard",
        label="Dashboard",
        path="/admin",
        scope="admin",
        order=0,
        icon="layout-dashboard",
        permission=Permission("dashboard", "read"),
    ),
    MenuEntry(
        id="admin.users",
        label="Users",
        path="/admin/users",
        scope="admin",
        order=50,
        icon="users",
        permission=Permission("users", "read"),
    ),
    MenuEntry(
        id="admin.roles",
        label="Roles",
        path="/admin/roles",
        scope="admin",
        order=60,
        icon="shield",
        permission=Permission("roles", "read"),
    ),
    MenuEntry(
        id="admin.plugins",
        label="Plugins",
        path="/admin/plugins",
        scope="admin",
        order=70,
        icon="puzzle",
        permission=Permission("plugins", "read"),
    ),
)


def match_path(pattern: str, path: str) -> bool:
    """Match a concrete path against a pattern with ":param" segments."""
    pattern_parts = [p for p in pattern.split("/") if p]
    path_parts = [p for p in path.split("?")[0].split("/") if p]
    if len(pattern_parts) != len(path_parts):
        return False
    for expected, actual in zip(pattern_parts, path_parts):
        if expected.startswith(":"):
            continue
        if expected != actual:
            return False
    return True


class NavigationModel:
    """Route table and menus for one tenant's portal."""

    def __init__(
        self,
        core_routes: Iterable[RouteDefinition] = CORE_ROUTES,
        core_menu: Iterable[MenuEntry] = CORE_MENU,
    ) -> None:
        self._core_routes = tuple(core_routes)
        self._core_menu = tuple(core_menu)
        self._contributions: Mapping[str, Contribution] = MappingProxyType({})
        self._ready = False
        self._version = 0

    @property
    def ready(self) -> bool:
        """True once plugin contributions have been published at least once."""
        return self._ready

    @property
    def version(self) -> int:
        return self._version

    @property
    def core_paths(self) -> frozenset[str]:
        return frozenset(route.path for route in self._core_routes)

    def publish(self, contributions: Mapping[str, Contribution]) -> None:
        """Replace every plugin contribution in one assignment."""
        self._contributions = MappingProxyType(dict(contributions))
        self._version += 1
        self._ready = True

    def contributed_plugin_ids(self) -> set[str]:
        return set(self._contributions)

    def contribution(self, plugin_id: str) -> Contribution | None:
        return self._contributions.get(plugin_id)

    def plugin_routes(self) -> list[RouteDefinition]:
        contributions = self._contributions
        return [route for plugin_id in sorted(contributions) for route in contributions[plugin_id].routes]

    def routes(self) -> list[RouteDefinition]:
        return [*self._core_routes, *self.plugin_routes()]

    def menu(self, scope: str) -> list[MenuEntry]:
        """Core and plugin menu entries for a scope, sorted by order then label."""
        contributions = self._contributions
        entries = [e for e in self._core_menu if e.scope == scope]
        for plugin_id in sorted(contributions):
            entries.extend(e for e in contributions[plugin_id].menu if e.scope == scope)
        return sorted(entries, key=lambda e: (e.order, e.label))

    def find_route(self, path: str) -> RouteDefinition | None:
        """Return the route whose pattern matches path; literal segments win over parameters."""
        candidates = [route for route in self.routes() if match_path(route.path, path)]
        if not candidates:
            return None
        return max(candidates, key=lambda r: sum(1 for part in r.path.split("/") if part and not part.startswith(":")))
