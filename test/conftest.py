"""
Pytest configuration and fixtures for portal tests
"""

import importlib
import os
import sys
import textwrap
import uuid

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH120

from portal.plugins.client import PluginBackendClient  # noqa: E402
from portal.plugins.models import Permission, User  # noqa: E402
from portal.plugins.registry import PluginRegistry  # noqa: E402
from utils.backend import TENANT_ID, FakeBackend, no_sleep  # noqa: E402


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_registry():
    """Build a PluginRegistry against a FakeBackend with retries off and no real sleeps."""

    def _make(backend: FakeBackend, **kwargs) -> PluginRegistry:
        kwargs.setdefault("retry_attempts", 0)
        kwargs.setdefault("timeout_seconds", 5.0)
        kwargs.setdefault("sleep", no_sleep)
        return PluginRegistry(PluginBackendClient(backend.client(), tenant_id=TENANT_ID), **kwargs)

    return _make


@pytest.fixture
def super_admin():
    return User(id=1, tenant_id=TENANT_ID, role_id=1)


@pytest.fixture
def blog_editor():
    return User(id=7, tenant_id=TENANT_ID, role_id=4, permissions=frozenset({Permission("blog", "manage")}))


@pytest.fixture
def reader():
    return User(id=9, tenant_id=TENANT_ID, role_id=4)


@pytest.fixture
def bundle_package(tmp_path, monkeypatch):
    """
    Write a throwaway plugin source package and put it on sys.path.

    Returns a function taking {module_name: source} and returning the
    importable package name.
    """

    def _make(modules: dict[str, str]) -> str:
        name = f"bundles_{uuid.uuid4().hex[:8]}"
        package = tmp_path / name
        package.mkdir()
        (package / "__init__.py").write_text("")
        for module_name, source in modules.items():
            (package / f"{module_name}.py").write_text(textwrap.dedent(source))
        monkeypatch.syspath_prepend(str(tmp_path))
        importlib.invalidate_caches()
        return name

    return _make
