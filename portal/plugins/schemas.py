"""
Wire schemas for the platform backend.

GET /api/plugins            → CatalogResponse
GET /api/saas/marketplace   → MarketplaceResponse
GET /api/plugins/licenses   → LicensesResponse
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from portal.plugins.models import PluginStatus


class PluginRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    description: str = ""


class PluginStateRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    status: PluginStatus
    error: str | None = None


class CatalogResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    plugins: list[PluginRecord] = Field(default_factory=list)
    states: list[PluginStateRecord] = Field(default_factory=list)


class TierRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tier_id: str = Field(min_length=1)
    name: str
    features: list[str] = Field(default_factory=list)
    position: int | None = None
    price_monthly: float | None = None
    price_yearly: float | None = None
    price_lifetime: float | None = None
    trial_days: int = 0

    @field_validator("features", mode="before")
    @classmethod
    def _decode_features(cls, value: Any) -> Any:
        # The marketplace query aggregates tiers with JSON_OBJECT, which leaves
        # the features column as a JSON-encoded string.
        if isinstance(value, str):
            return json.loads(value)
        return value

    @field_validator("trial_days", mode="before")
    @classmethod
    def _default_trial_days(cls, value: Any) -> Any:
        return 0 if value is None else value


class MarketplacePluginRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str
    description: str | None = None
    tiers: list[TierRecord] = Field(default_factory=list)


class MarketplaceResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    plugins: list[MarketplacePluginRecord] = Field(default_factory=list)


class TenantRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str = ""


class LicenseRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    plugin_id: str = Field(min_length=1)
    # The licence table stores the tier as "plan"
    tier_id: str = Field(min_length=1, validation_alias=AliasChoices("tier_id", "plan"))
    status: str = "active"
    expires_at: float | None = None


class LicensesResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tenant: TenantRecord | None = None
    licenses: list[LicenseRecord] = Field(default_factory=list)
