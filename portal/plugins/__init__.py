"""
Portal Plugin System

Public API for the plugin system:
    PluginBundle    — abstract base class for bundled plugins
    RouteDefinition — route contribution
    MenuEntry       — navigation menu contribution
    PluginRegistry  — per-tenant catalog, state and tier registry
    PluginLoader    — activates enabled bundles into the navigation model

The gate and runtime live in portal.plugins.gate / portal.plugins.runtime.
"""

from .base import MenuEntry, PluginBundle, RouteDefinition
from .loader import LoadOptions, PluginLoader
from .registry import PluginRegistry, RegistryStatus

__all__ = [
    "LoadOptions",
    "MenuEntry",
    "PluginBundle",
    "PluginLoader",
    "PluginRegistry",
    "RegistryStatus",
    "RouteDefinition",
]
