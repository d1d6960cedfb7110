"""
Bundled plugins.

Each module exports `bundle` (or `create_bundle()`) and is discovered by
portal.plugins.loader.discover_bundles().
"""
