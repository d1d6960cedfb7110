"""
Plugin Registry

PluginRegistry: per-tenant table of known plugins, their lifecycle state and
their marketplace tiers. It is the only writer of plugin state; everything
else reads it.

State machine:
    UNINITIALIZED → INITIALIZING → READY    (terminal success)
    UNINITIALIZED → INITIALIZING → FAILED   (terminal failure, fail-closed)

The table is held in an immutable RegistrySnapshot that is replaced as a
whole on every change, so a reader never observes a partially applied
refresh. Snapshots are assembled from the snapshot that is current *after*
the network fetch resolves, with no suspension point between read and
write, which keeps concurrent refreshes from dropping each other's updates.

Subscribers are notified of enable/disable/error transitions. Listener
exceptions are caught and logged so a misbehaving subscriber never breaks a
refresh.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from portal.config import settings
from portal.exceptions import RegistryError, RegistryStateError, RegistryUnreachableError
from portal.plugins.events import (
    EVENT_PLUGIN_DISABLED,
    EVENT_PLUGIN_ENABLED,
    EVENT_PLUGIN_ERROR,
    EVENT_REGISTRY_FAILED,
    EVENT_REGISTRY_READY,
)
from portal.plugins.models import Plugin, PluginOffering, PluginState, PluginStatus

if TYPE_CHECKING:
    from portal.plugins.client import Catalog, PluginBackendClient

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict[str, Any]], Awaitable[None] | None]


class RegistryStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


def _frozen(mapping: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of the registry table at one version."""

    version: int = 0
    plugins: Mapping[str, Plugin] = field(default_factory=_frozen)
    states: Mapping[str, PluginState] = field(default_factory=_frozen)
    offerings: Mapping[str, PluginOffering] = field(default_factory=_frozen)

    def is_enabled(self, plugin_id: str) -> bool:
        state = self.states.get(plugin_id)
        return state is not None and state.enabled


EMPTY_SNAPSHOT = RegistrySnapshot()


class PluginRegistry:
    """
    Registry of plugins and their state for one tenant.

    Args:
        client:          Backend client used for every fetch.
        timeout_seconds: Upper bound on one initialization or refresh,
                         retries included.
        retry_attempts:  Extra attempts after an Unreachable failure.
        retry_backoff:   Delay before each retry; the last value repeats.
        sleep:           Injected for tests.
    """

    def __init__(
        self,
        client: PluginBackendClient,
        *,
        timeout_seconds: float | None = None,
        retry_attempts: int | None = None,
        retry_backoff: list[float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self.timeout_seconds = settings.registry_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.retry_attempts = settings.registry_retry_attempts if retry_attempts is None else retry_attempts
        self.retry_backoff = list(settings.registry_retry_backoff if retry_backoff is None else retry_backoff)
        self._sleep = sleep

        self._status = RegistryStatus.UNINITIALIZED
        self._snapshot = EMPTY_SNAPSHOT
        self._error: RegistryError | None = None
        self._init_task: asyncio.Task[None] | None = None
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def status(self) -> RegistryStatus:
        return self._status

    @property
    def error(self) -> RegistryError | None:
        return self._error

    @property
    def settled(self) -> bool:
        """True once the registry has reached READY or FAILED."""
        return self._status in (RegistryStatus.READY, RegistryStatus.FAILED)

    async def initialize(self) -> None:
        """
        Fetch the catalog, states and tiers once.

        Calls made while a fetch is in flight join it; calls after READY
        return immediately; calls after FAILED re-raise the recorded error.

        Raises:
            RegistryUnreachableError: backend down, 5xx, or timeout.
            RegistryMalformedError:   response failed schema/invariant checks.
        """
        if self._status is RegistryStatus.READY:
            return
        if self._status is RegistryStatus.FAILED:
            raise self._error or RegistryStateError(self._status.value, "initialize")
        if self._init_task is None:
            self._status = RegistryStatus.INITIALIZING
            self._init_task = asyncio.create_task(self._run_initialize())
        # Shielded so a cancelled caller does not cancel the shared attempt
        await asyncio.shield(self._init_task)

    async def _run_initialize(self) -> None:
        try:
            catalog, offerings = await self._bounded(self._fetch_all())
        except RegistryError as e:
            self._status = RegistryStatus.FAILED
            self._error = e
            logger.error("Plugin registry failed to initialize: %s", e.message)
            await self._emit(EVENT_REGISTRY_FAILED, {"error": e.message, "error_code": e.error_code})
            raise

        previous = self._snapshot
        self._snapshot = RegistrySnapshot(
            version=previous.version + 1,
            plugins=_frozen(catalog.plugins),
            states=_frozen(catalog.states),
            offerings=_frozen(offerings),
        )
        self._status = RegistryStatus.READY
        logger.info(
            "Plugin registry ready: %d plugins, %d enabled",
            len(catalog.plugins),
            sum(1 for s in catalog.states.values() if s.enabled),
        )
        await self._emit(EVENT_REGISTRY_READY, {"version": self._snapshot.version})
        await self._emit_transitions(previous, self._snapshot)

    async def refresh(self, plugin_id: str | None = None) -> None:
        """
        Re-fetch plugin state for one plugin, or everything when plugin_id is None.

        On failure the previous snapshot stays in place and the error is raised.
        """
        if self._status is not RegistryStatus.READY:
            raise RegistryStateError(self._status.value, "refresh")

        if plugin_id is None:
            catalog, offerings = await self._bounded(self._fetch_all())
        else:
            catalog = await self._bounded(self._with_retry(self._client.fetch_catalog))
            offerings = None

        # No await between reading the current snapshot and publishing
        current = self._snapshot
        if plugin_id is None:
            plugins, states = dict(catalog.plugins), dict(catalog.states)
        else:
            plugins, states = dict(current.plugins), dict(current.states)
            plugins.pop(plugin_id, None)
            states.pop(plugin_id, None)
            if plugin_id in catalog.plugins:
                plugins[plugin_id] = catalog.plugins[plugin_id]
            if plugin_id in catalog.states:
                states[plugin_id] = catalog.states[plugin_id]

        self._snapshot = RegistrySnapshot(
            version=current.version + 1,
            plugins=_frozen(plugins),
            states=_frozen(states),
            # A marketplace outage keeps the tiers already known
            offerings=current.offerings if offerings is None else _frozen(offerings),
        )
        logger.info("Plugin registry refreshed (plugin=%s, version=%d)", plugin_id or "*", self._snapshot.version)
        await self._emit_transitions(current, self._snapshot)

    # ── Fetching ──────────────────────────────────────────────────────────────

    async def _bounded(self, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise RegistryUnreachableError(
                f"Plugin backend did not respond within {self.timeout_seconds}s"
            ) from e

    async def _fetch_all(self) -> tuple[Catalog, dict[str, PluginOffering] | None]:
        catalog = await self._with_retry(self._client.fetch_catalog)
        offerings = await self._client.fetch_marketplace()
        return catalog, offerings

    async def _with_retry(self, fetch: Callable[[], Awaitable[Any]]) -> Any:
        attempt = 0
        while True:
            try:
                return await fetch()
            except RegistryUnreachableError as e:
                if attempt >= self.retry_attempts:
                    raise
                delay = self.retry_backoff[min(attempt, len(self.retry_backoff) - 1)] if self.retry_backoff else 0.0
                attempt += 1
                logger.warning(
                    "Plugin backend unreachable (%s); retry %d/%d in %.1fs",
                    e.message,
                    attempt,
                    self.retry_attempts,
                    delay,
                )
                await self._sleep(delay)

    # ── Lookup ────────────────────────────────────────────────────────────────

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def is_enabled(self, plugin_id: str) -> bool:
        """Return True only for a known plugin whose state is ENABLED. Never raises."""
        if self._status is not RegistryStatus.READY:
            return False
        return self._snapshot.is_enabled(plugin_id)

    def get_plugin(self, plugin_id: str) -> Plugin | None:
        return self._snapshot.plugins.get(plugin_id)

    def get_state(self, plugin_id: str) -> PluginState:
        """Return the plugin's state; unknown plugins report DISABLED."""
        state = self._snapshot.states.get(plugin_id)
        if state is None:
            return PluginState(plugin_id=plugin_id, status=PluginStatus.DISABLED)
        return state

    def get_offering(self, plugin_id: str) -> PluginOffering | None:
        return self._snapshot.offerings.get(plugin_id)

    def all_plugins(self) -> list[Plugin]:
        return list(self._snapshot.plugins.values())

    def enabled_plugins(self) -> list[Plugin]:
        snapshot = self._snapshot
        if self._status is not RegistryStatus.READY:
            return []
        return [p for p in snapshot.plugins.values() if snapshot.is_enabled(p.id)]

    # ── Events ────────────────────────────────────────────────────────────────

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return unsubscribe

    async def _emit(self, event: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(event, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Registry listener for %s raised: %s", event, exc)

    async def _emit_transitions(self, previous: RegistrySnapshot, current: RegistrySnapshot) -> None:
        plugin_ids = set(previous.states) | set(current.states)
        for plugin_id in sorted(plugin_ids):
            was_enabled = previous.is_enabled(plugin_id)
            now_enabled = current.is_enabled(plugin_id)
            state = current.states.get(plugin_id)
            payload = {"plugin_id": plugin_id, "version": current.version}
            if now_enabled and not was_enabled:
                await self._emit(EVENT_PLUGIN_ENABLED, payload)
            elif was_enabled and not now_enabled:
                await self._emit(EVENT_PLUGIN_DISABLED, payload)
            if state is not None and state.status is PluginStatus.ERROR:
                prior = previous.states.get(plugin_id)
                if prior is None or prior.status is not PluginStatus.ERROR:
                    await self._emit(EVENT_PLUGIN_ERROR, {**payload, "error": state.error})
