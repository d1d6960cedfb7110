"""
Plugin Bundle Base Classes

RouteDefinition / MenuEntry: declarative contributions a plugin makes to the
portal's route table and navigation menus.
PluginBundle: abstract base class every bundled plugin subclasses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass

from portal.plugins.models import FeatureKey, Permission

# Navigation scopes a contribution can target
NAVIGATION_SCOPES: tuple[str, ...] = ("main", "admin", "user")


@dataclass(frozen=True)
class RouteDefinition:
    """
    A page route contributed to the SPA router.

    Attributes:
        path:       Path pattern, ":name" segments are parameters ("/blog/:id").
        name:       Stable route name used by the frontend to pick a view.
        scope:      Which app shell mounts the route.
        lazy:       Whether the view is code-split; None defers to LoadOptions.
        permission: Permission required to enter the route.
        feature:    Tier feature required to enter the route.
        plugin_id:  Owning plugin, stamped by the loader.
    """

    path: str
    name: str
    scope: str = "main"
    lazy: bool | None = None
    permission: Permission | None = None
    feature: FeatureKey | None = None
    plugin_id: str | None = None


@dataclass(frozen=True)
class MenuEntry:
    """A navigation menu item. Lower `order` sorts first."""

    id: str
    label: str
    path: str | None = None
    scope: str = "main"
    order: int = 999
    icon: str | None = None
    badge: str | None = None
    parent_id: str | None = None
    permission: Permission | None = None
    feature: FeatureKey | None = None
    plugin_id: str | None = None


class PluginBundle(ABC):
    """
    Abstract base class for plugins bundled with the portal.

    Subclasses must implement `plugin_id`. Contributions default to empty so
    a bundle only overrides what it provides.
    """

    name: str = ""

    @property
    @abstractmethod
    def plugin_id(self) -> str:
        """Return the catalog id this bundle implements."""
        ...

    def routes(self) -> Iterable[RouteDefinition]:
        return ()

    def menu(self) -> Iterable[MenuEntry]:
        return ()

    async def on_load(self) -> None:  # noqa: B027
        """
        Called once, the first time the loader activates this bundle.

        Override to warm caches or validate bundle configuration.
        """
