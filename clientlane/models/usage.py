"""
clientlane/models/usage.py

Usage accounting results: per-dimension usage, admission decisions,
over-limit status and upgrade advice.
"""

from typing import List, Optional, Union

from pydantic import Field

from clientlane.models.base import ApiModel
from clientlane.models.plan import PlanInfo


class ClientUsage(ApiModel):
    current: int
    limit: Optional[int]
    can_create: bool
    is_over_limit: bool
    usage_percentage: int = Field(ge=0, le=100)


class StorageUsage(ApiModel):
    """Storage usage; ``current`` and ``limit`` are bytes."""

    current: int
    limit: Optional[int]
    current_mb: float = Field(alias="currentMB")
    limit_mb: Optional[int] = Field(alias="limitMB")
    can_upload: bool
    is_over_limit: bool
    usage_percentage: int = Field(ge=0, le=100)
    formatted_current: str
    formatted_limit: str


class TeamUsage(ApiModel):
    current: int
    limit: Optional[int]
    can_invite: bool
    is_over_limit: bool
    usage_percentage: int = Field(ge=0, le=100)


class PlanUsage(ApiModel):
    clients: ClientUsage
    storage: StorageUsage
    team: TeamUsage


class LimitCheckResult(ApiModel):
    """Admission decision. ``reason`` is set whenever ``allowed`` is False."""

    allowed: bool
    reason: Optional[str] = None
    upgrade_required: Optional[bool] = None
    current_usage: Optional[Union[int, float]] = None
    limit: Optional[Union[int, float]] = None


class OverLimitStatus(ApiModel):
    is_over_limit: bool
    over_limit_types: List[str] = Field(default_factory=list)
    message: str = ""


class UpgradeRecommendation(ApiModel):
    should_upgrade: bool
    recommended_plan: Optional[str] = None
    reason: str
    current_plan: str
    contact_support: bool = False


class PlanOverview(ApiModel):
    plan: PlanInfo
    usage: PlanUsage
    recommendation: UpgradeRecommendation
