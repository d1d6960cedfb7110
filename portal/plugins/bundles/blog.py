"""
Blog Plugin Bundle

Contributes the public blog pages and the admin blog console. Content CRUD
itself lives in the blog service; this bundle only declares where the
views mount and what gates them.

Feature keys (unlocked by tier):
  - blog.posts.create       → compose new posts
  - blog.categories.manage  → category management
  - blog.tags.manage        → tag management
  - blog.settings.manage    → blog settings panel
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from portal.config import settings
from portal.plugins.base import MenuEntry, PluginBundle, RouteDefinition
from portal.plugins.models import Permission

logger = logging.getLogger(__name__)

FEATURE_CREATE_POSTS = "blog.posts.create"
FEATURE_MANAGE_CATEGORIES = "blog.categories.manage"
FEATURE_MANAGE_TAGS = "blog.tags.manage"
FEATURE_MANAGE_SETTINGS = "blog.settings.manage"

PERMISSION_MANAGE = Permission("blog", "manage")


class BlogBundle(PluginBundle):
    """Blog plugin: public post pages plus the admin console."""

    name = "Blog"

    def __init__(self, plugin_id: str | None = None) -> None:
        self._plugin_id = plugin_id or settings.blog_plugin_id

    @property
    def plugin_id(self) -> str:
        return self._plugin_id

    def routes(self) -> Iterable[RouteDefinition]:
        return (
            RouteDefinition(path="/blog", name="blog.list", lazy=False),
            RouteDefinition(path="/blog/:slug", name="blog.post", lazy=False),
            RouteDefinition(path="/admin/blog", name="admin.blog.list", scope="admin", permission=PERMISSION_MANAGE),
            RouteDefinition(
                path="/admin/blog/new",
                name="admin.blog.new",
                scope="admin",
                permission=PERMISSION_MANAGE,
                feature=FEATURE_CREATE_POSTS,
            ),
            RouteDefinition(
                path="/admin/blog/:id/edit",
                name="admin.blog.edit",
                scope="admin",
                permission=PERMISSION_MANAGE,
            ),
            RouteDefinition(
                path="/admin/blog/categories",
                name="admin.blog.categories",
                scope="admin",
                permission=PERMISSION_MANAGE,
                feature=FEATURE_MANAGE_CATEGORIES,
            ),
            RouteDefinition(
                path="/admin/blog/tags",
                name="admin.blog.tags",
                scope="admin",
                permission=PERMISSION_MANAGE,
                feature=FEATURE_MANAGE_TAGS,
            ),
            RouteDefinition(
                path="/admin/blog/settings",
                name="admin.blog.settings",
                scope="admin",
                permission=PERMISSION_MANAGE,
                feature=FEATURE_MANAGE_SETTINGS,
            ),
        )

    def menu(self) -> Iterable[MenuEntry]:
        return (
            MenuEntry(id="blog", label="Blog", path="/blog", scope="main", order=10, icon="newspaper"),
            MenuEntry(
                id="admin.blog",
                label="Blog",
                path="/admin/blog",
                scope="admin",
                order=20,
                icon="newspaper",
                permission=PERMISSION_MANAGE,
            ),
            MenuEntry(
                id="admin.blog.categories",
                label="Categories",
                path="/admin/blog/categories",
                scope="admin",
                order=21,
                parent_id="admin.blog",
                permission=PERMISSION_MANAGE,
                feature=FEATURE_MANAGE_CATEGORIES,
            ),
            MenuEntry(
                id="admin.blog.settings",
                label="Blog Settings",
                path="/admin/blog/settings",
                scope="admin",
                order=29,
                parent_id="admin.blog",
                permission=PERMISSION_MANAGE,
                feature=FEATURE_MANAGE_SETTINGS,
            ),
        )

    async def on_load(self) -> None:
        logger.debug("BlogBundle activated for plugin %s", self.plugin_id)


def create_bundle() -> BlogBundle:
    return BlogBundle()
