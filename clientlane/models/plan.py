"""
clientlane/models/plan.py

Plan models for subscription tiers.

Plans carry numeric limits (clients, storage, team, per-file size, files per
portal) and boolean feature flags. ``None`` on a numeric limit means unlimited.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from clientlane.models.base import ApiModel


class SupportLevel(str, Enum):
    BASIC = "basic"
    PRIORITY = "priority"
    ALWAYS_ON = "24/7"


class PlanLimits(ApiModel):
    """
    Limits and feature flags for one tier.

    Numeric limits are positive integers or None (unlimited).
    ``max_file_size_mb`` is always finite.
    """

    max_clients: Optional[int]
    max_storage_mb: Optional[int] = Field(alias="maxStorageMB")
    can_add_team: bool
    max_team_members: Optional[int]
    max_file_size_mb: int = Field(alias="maxFileSizeMB")
    max_files_per_portal: Optional[int]
    max_updates_per_portal: Optional[int] = None
    can_custom_brand: bool
    can_use_api: bool = Field(alias="canUseAPI")
    can_use_advanced_analytics: bool
    can_use_white_label: bool
    support_level: SupportLevel


class PlanTier(ApiModel):
    """Catalog entry: a purchasable tier with its price and limits."""

    id: str
    name: str
    description: str
    price: int = Field(description="USD per month")
    features: List[str] = Field(default_factory=list)
    limits: PlanLimits


class PlanInfo(ApiModel):
    """The plan in effect for a freelancer right now."""

    id: str
    name: str
    is_active: bool
    is_free_plan: bool
    ends_at: Optional[datetime] = None
    limits: PlanLimits
