"""
Upgrade Resolver Tests

Test classes:
    TestResolveUpgradeTarget  — cheapest unlocking tier above the current one
    TestUpgradePrompt         — savings and feature preview
    TestUpgradeService        — handler delegation and validation
"""

from __future__ import annotations

import pytest
from utils.backend import tenant_on

from portal.plugins.models import PluginOffering, Tier

OFFERING = PluginOffering(
    plugin_id="p",
    name="Blog",
    tiers=(
        Tier(tier_id="free", name="Free", position=0, features=("a",)),
        Tier(tier_id="pro", name="Pro", position=1, features=("a", "b"), price_monthly=10, price_yearly=100),
        Tier(tier_id="enterprise", name="Enterprise", position=2, features=("a", "b", "c", "d", "e")),
    ),
)


class StubRegistry:
    def get_offering(self, plugin_id):
        return OFFERING if plugin_id == "p" else None


# ══════════════════════════════════════════════════════════════════════════════
# 1. TestResolveUpgradeTarget
# ══════════════════════════════════════════════════════════════════════════════


class TestResolveUpgradeTarget:
    @pytest.mark.parametrize(
        "current,feature,expected",
        [
            ("free", "b", "pro"),
            ("free", "c", "enterprise"),
            ("pro", "c", "enterprise"),
            (None, "a", "free"),
            ("legacy", "b", "pro"),
            ("enterprise", "zzz", "enterprise"),
            ("pro", "zzz", "enterprise"),
        ],
    )
    def test_targets(self, current, feature, expected):
        from portal.plugins.upgrade import resolve_upgrade_target

        assert resolve_upgrade_target(OFFERING, current, feature).tier_id == expected

    def test_no_tiers_no_target(self):
        from portal.plugins.upgrade import resolve_upgrade_target

        assert resolve_upgrade_target(PluginOffering(plugin_id="p", name="P"), "free", "a") is None
        assert resolve_upgrade_target(None, "free", "a") is None

    def test_current_tier_never_returned_when_higher_unlocks(self):
        from portal.plugins.upgrade import resolve_upgrade_target

        # "a" is already unlocked by free; the next tier up still has it
        assert resolve_upgrade_target(OFFERING, "free", "a").tier_id == "pro"


# ══════════════════════════════════════════════════════════════════════════════
# 2. TestUpgradePrompt
# ══════════════════════════════════════════════════════════════════════════════


class TestUpgradePrompt:
    def test_yearly_savings(self):
        from portal.plugins.upgrade import yearly_savings_percent

        assert yearly_savings_percent(OFFERING.tier("pro")) == 17
        assert yearly_savings_percent(OFFERING.tier("free")) is None

    def test_feature_preview(self):
        from portal.plugins.upgrade import build_upgrade_prompt

        prompt = build_upgrade_prompt(OFFERING, "p", "pro", "c")
        assert prompt.target.tier_id == "enterprise"
        assert prompt.highlighted_features == ("a", "b", "c")
        assert prompt.more_features_count == 2

    def test_to_dict(self):
        from portal.plugins.upgrade import build_upgrade_prompt

        data = build_upgrade_prompt(OFFERING, "p", "free", "b").to_dict()
        assert data["plugin_name"] == "Blog"
        assert data["current_tier_id"] == "free"
        assert data["target"]["tier_id"] == "pro"
        assert data["target"]["yearly_savings_percent"] == 17
        assert data["upgrade_url"] == "/admin/plugins"

    def test_prompt_without_offering(self):
        from portal.plugins.upgrade import build_upgrade_prompt

        prompt = build_upgrade_prompt(None, "p", None, "b")
        assert prompt.plugin_name == "p"
        assert prompt.target is None
        assert prompt.to_dict()["target"] is None


# ══════════════════════════════════════════════════════════════════════════════
# 3. TestUpgradeService
# ══════════════════════════════════════════════════════════════════════════════


class TestUpgradeService:
    @pytest.mark.asyncio
    async def test_without_handler_redirects(self):
        from portal.plugins.upgrade import UpgradeService

        result = await UpgradeService().request_upgrade(StubRegistry(), tenant_on(None), "p", "pro")
        assert result.status == "redirect"
        assert result.redirect_url == "/admin/plugins"

    @pytest.mark.asyncio
    async def test_handler_receives_request(self):
        from portal.plugins.upgrade import UpgradeService

        received = []

        async def on_upgrade(request):
            received.append(request)

        service = UpgradeService(on_upgrade=on_upgrade)
        result = await service.request_upgrade(StubRegistry(), tenant_on("free"), "p", "enterprise", 7)
        assert result.status == "requested"
        assert received[0].tier_id == "enterprise"
        assert received[0].tenant_id == "tenant-acme"
        assert received[0].requested_by == 7

    @pytest.mark.asyncio
    async def test_unknown_tier_rejected(self):
        from portal.exceptions import TierNotFoundError
        from portal.plugins.upgrade import UpgradeService

        with pytest.raises(TierNotFoundError):
            await UpgradeService().request_upgrade(StubRegistry(), tenant_on(None), "p", "platinum")

    @pytest.mark.asyncio
    async def test_unknown_plugin_rejected(self):
        from portal.exceptions import PluginNotFoundError
        from portal.plugins.upgrade import UpgradeService

        with pytest.raises(PluginNotFoundError):
            await UpgradeService().request_upgrade(StubRegistry(), tenant_on(None), "other", "pro")
