"""
Plugin Registry Event Constants

Event names the registry publishes to subscribers when a snapshot changes.
Names follow the `category.action` convention.
"""

from __future__ import annotations

# ── Per-plugin transitions ────────────────────────────────────────────────────
EVENT_PLUGIN_ENABLED = "plugin.enabled"
EVENT_PLUGIN_DISABLED = "plugin.disabled"
EVENT_PLUGIN_ERROR = "plugin.error"

# ── Registry lifecycle ────────────────────────────────────────────────────────
EVENT_REGISTRY_READY = "registry.ready"
EVENT_REGISTRY_FAILED = "registry.failed"

# ── Master list ───────────────────────────────────────────────────────────────
ALL_EVENTS: list[str] = [
    EVENT_PLUGIN_ENABLED,
    EVENT_PLUGIN_DISABLED,
    EVENT_PLUGIN_ERROR,
    EVENT_REGISTRY_READY,
    EVENT_REGISTRY_FAILED,
]
