"""
clientlane/features/usage/service.py

Plan usage accounting.

Handles:
- Usage figures per freelancer (clients, storage bytes, team size)
- Derived per-dimension flags (can*, isOverLimit, usagePercentage)
- Admission checks for portal creation, file uploads and team invites
- The aggregate over-limit check and upgrade recommendation

All functions take an open Session so admission checks can run inside the
same transaction as the write they guard.
"""

import logging
import math
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from clientlane.core.database import files, portals, users
from clientlane.features.plans.service import (
    AGENCY_PLAN_ID,
    FREE_PLAN_ID,
    get_plan_tier,
    list_plans,
    resolve_plan,
)
from clientlane.models.plan import PlanInfo, PlanLimits
from clientlane.models.usage import (
    ClientUsage,
    LimitCheckResult,
    OverLimitStatus,
    PlanUsage,
    StorageUsage,
    TeamUsage,
    UpgradeRecommendation,
)
from clientlane.models.user import Role

logger = logging.getLogger("clientlane")

BYTES_PER_MB = 1024 * 1024
APPROACHING_LIMIT_PERCENT = 80

# Order matters: it is the order reported in overLimitTypes.
USAGE_DIMENSIONS = ("clients", "storage", "team")

BOOLEAN_FEATURES = {
    "can_add_team",
    "can_custom_brand",
    "can_use_api",
    "can_use_advanced_analytics",
    "can_use_white_label",
}


def bytes_to_mb(size_bytes: int) -> float:
    return size_bytes / BYTES_PER_MB


def mb_to_bytes(size_mb: Optional[int]) -> Optional[int]:
    if size_mb is None:
        return None
    return size_mb * BYTES_PER_MB


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_storage_size(size_mb: float) -> str:
    """Human-readable size: KB below 1 MB, MB below 1 GB, else GB to one decimal."""
    if size_mb < 1:
        return f"{_round_half_up(size_mb * 1024)} KB"
    if size_mb < 1024:
        return f"{_round_half_up(size_mb)} MB"
    return f"{_round_half_up(size_mb / 1024 * 10) / 10} GB"


def usage_percentage(current: float, limit: Optional[float]) -> int:
    """0 for unlimited, otherwise min(100, round(current / limit * 100))."""
    if limit is None or limit <= 0:
        return 0
    return max(0, min(100, _round_half_up(current / limit * 100)))


def is_over_limit(current: float, limit: Optional[float]) -> bool:
    """Strictly above a finite limit; sitting exactly at the limit is not over."""
    return limit is not None and current > limit


def has_headroom(current: float, limit: Optional[float]) -> bool:
    """Room for at least one more: unlimited, or current < limit."""
    return limit is None or current < limit


# ---------------------------------------------------------------------------
# Raw usage figures
# ---------------------------------------------------------------------------

def count_clients(session: Session, user_id: str) -> int:
    """
    Count client-assigned portals owned by a freelancer.

    Counting is per portal: one client assigned to two portals counts twice.
    """
    return session.execute(
        select(func.count())
        .select_from(portals)
        .where(portals.c.created_by == user_id)
        .where(portals.c.client_id.is_not(None))
    ).scalar_one()


def storage_bytes(session: Session, user_id: str) -> int:
    """Total bytes of every file in portals the freelancer owns."""
    total = session.execute(
        select(func.coalesce(func.sum(files.c.file_size), 0))
        .select_from(files.join(portals, portals.c.id == files.c.portal_id))
        .where(portals.c.created_by == user_id)
    ).scalar_one()
    return int(total or 0)


def team_size(session: Session, user_id: str) -> int:
    # Team memberships are not modelled yet: the freelancer is the whole team.
    return 1


# ---------------------------------------------------------------------------
# Derived usage
# ---------------------------------------------------------------------------

def build_usage(limits: PlanLimits, *, clients: int, storage: int, team: int) -> PlanUsage:
    """Derive the per-dimension view from raw figures and a plan's limits."""
    storage_limit = mb_to_bytes(limits.max_storage_mb)
    current_mb = bytes_to_mb(storage)
    return PlanUsage(
        clients=ClientUsage(
            current=clients,
            limit=limits.max_clients,
            can_create=has_headroom(clients, limits.max_clients),
            is_over_limit=is_over_limit(clients, limits.max_clients),
            usage_percentage=usage_percentage(clients, limits.max_clients),
        ),
        storage=StorageUsage(
            current=storage,
            limit=storage_limit,
            current_mb=round(current_mb, 2),
            limit_mb=limits.max_storage_mb,
            can_upload=has_headroom(storage, storage_limit),
            is_over_limit=is_over_limit(storage, storage_limit),
            usage_percentage=usage_percentage(storage, storage_limit),
            formatted_current=format_storage_size(current_mb),
            formatted_limit=(
                format_storage_size(limits.max_storage_mb)
                if limits.max_storage_mb is not None
                else "Unlimited"
            ),
        ),
        team=TeamUsage(
            current=team,
            limit=limits.max_team_members,
            can_invite=has_headroom(team, limits.max_team_members),
            is_over_limit=is_over_limit(team, limits.max_team_members),
            usage_percentage=usage_percentage(team, limits.max_team_members),
        ),
    )


def get_plan_usage(
    session: Session,
    user_id: str,
    *,
    plan: Optional[PlanInfo] = None,
    now: Optional[datetime] = None,
) -> PlanUsage:
    """
    Compute a freelancer's usage against the plan in effect.

    Args:
        session: Open session
        user_id: Freelancer id
        plan: Already-resolved plan (resolved here when omitted)
        now: Reference time for plan resolution

    Returns:
        PlanUsage with clients, storage and team
    """
    plan = plan or resolve_plan(session, user_id, now=now)
    return build_usage(
        plan.limits,
        clients=count_clients(session, user_id),
        storage=storage_bytes(session, user_id),
        team=team_size(session, user_id),
    )


# ---------------------------------------------------------------------------
# Admission checks
# ---------------------------------------------------------------------------

def lock_account(session: Session, user_id: str) -> None:
    """
    Row-lock the account whose usage an admission check is about to count.

    Concurrent admissions for the same freelancer queue on this lock until
    the first commits. SQLite renders no FOR UPDATE; its admission
    transactions are already serialised by BEGIN IMMEDIATE.
    """
    session.execute(select(users.c.id).where(users.c.id == user_id).with_for_update())


def decide_portal_creation(clients: ClientUsage) -> LimitCheckResult:
    """Allow iff one more client-assigned portal stays within the limit."""
    if clients.limit is None or clients.current + 1 <= clients.limit:
        return LimitCheckResult(allowed=True)

    tail = (
        "You are currently over your limit."
        if clients.is_over_limit
        else "Creating another portal would exceed your limit."
    )
    return LimitCheckResult(
        allowed=False,
        reason=f"You've reached your plan's client limit ({clients.limit}). {tail}",
        upgrade_required=True,
        current_usage=clients.current,
        limit=clients.limit,
    )


def decide_upload(
    limits: PlanLimits,
    current_bytes: int,
    file_size_bytes: int,
    *,
    portal_context: bool = False,
) -> LimitCheckResult:
    """
    Decide whether ``file_size_bytes`` more fits the plan.

    Storage is compared in bytes: projected usage above the limit is denied
    (never admitted and truncated). The per-file size cap is checked next.
    """
    limit_bytes = mb_to_bytes(limits.max_storage_mb)
    if limit_bytes is not None and current_bytes + file_size_bytes > limit_bytes:
        used = format_storage_size(bytes_to_mb(current_bytes))
        allowed = format_storage_size(limits.max_storage_mb)
        if portal_context:
            reason = (
                "This upload would exceed the portal's storage limit. "
                f"The portal is using {used} of {allowed}."
            )
        else:
            reason = f"This upload would exceed your storage limit. You're using {used} of {allowed}."
        return LimitCheckResult(
            allowed=False,
            reason=reason,
            upgrade_required=True,
            current_usage=round(bytes_to_mb(current_bytes), 2),
            limit=limits.max_storage_mb,
        )

    file_size_mb = bytes_to_mb(file_size_bytes)
    if file_size_mb > limits.max_file_size_mb:
        owner = "this portal's" if portal_context else "your plan's"
        return LimitCheckResult(
            allowed=False,
            reason=(
                f"File size ({format_storage_size(file_size_mb)}) exceeds {owner} limit of "
                f"{format_storage_size(limits.max_file_size_mb)}."
            ),
            upgrade_required=True,
            current_usage=round(file_size_mb, 2),
            limit=limits.max_file_size_mb,
        )

    return LimitCheckResult(allowed=True)


def can_create_portal(session: Session, user_id: str, *, now: Optional[datetime] = None) -> LimitCheckResult:
    """
    Admission check for a new client-assigned portal.

    Fails closed: any error while resolving the plan or counting usage
    yields a denial instead of an exception.
    """
    try:
        usage = get_plan_usage(session, user_id, now=now)
    except Exception:
        logger.exception("[usage] portal admission check failed", extra={"user_id": user_id})
        return LimitCheckResult(
            allowed=False,
            reason="Unable to verify plan limits. Please try again.",
            upgrade_required=False,
        )

    decision = decide_portal_creation(usage.clients)
    if not decision.allowed:
        logger.info(
            "[usage] portal admission denied",
            extra={"user_id": user_id, "current": usage.clients.current, "limit": usage.clients.limit},
        )
    return decision


def can_upload_file(
    session: Session,
    user_id: str,
    file_size_bytes: int,
    *,
    now: Optional[datetime] = None,
) -> LimitCheckResult:
    """Admission check for an upload counted against the uploader's own plan. Fails closed."""
    try:
        plan = resolve_plan(session, user_id, now=now)
        current = storage_bytes(session, user_id)
    except Exception:
        logger.exception("[usage] upload admission check failed", extra={"user_id": user_id})
        return LimitCheckResult(
            allowed=False,
            reason="Unable to verify storage limits. Please try again.",
            upgrade_required=False,
        )
    return decide_upload(plan.limits, current, file_size_bytes)


def can_upload_file_to_portal(
    session: Session,
    portal_id: str,
    file_size_bytes: int,
    *,
    now: Optional[datetime] = None,
) -> LimitCheckResult:
    """
    Admission check for an upload into a portal.

    Whoever uploads (freelancer or client), the portal owner's plan and
    storage are what count. Fails closed.
    """
    try:
        owner_id = session.execute(
            select(portals.c.created_by).where(portals.c.id == portal_id)
        ).scalar_one_or_none()
        if owner_id is None:
            return LimitCheckResult(allowed=False, reason="Portal not found.", upgrade_required=False)
        plan = resolve_plan(session, owner_id, now=now)
        current = storage_bytes(session, owner_id)
    except Exception:
        logger.exception("[usage] portal upload admission check failed", extra={"portal_id": portal_id})
        return LimitCheckResult(
            allowed=False,
            reason="Unable to verify portal upload limits. Please try again.",
            upgrade_required=False,
        )
    return decide_upload(plan.limits, current, file_size_bytes, portal_context=True)


def can_invite_team_member(session: Session, user_id: str, *, now: Optional[datetime] = None) -> LimitCheckResult:
    try:
        plan = resolve_plan(session, user_id, now=now)
        if not plan.limits.can_add_team:
            return LimitCheckResult(
                allowed=False,
                reason="Team invites are not available on your current plan.",
                upgrade_required=True,
            )
        usage = get_plan_usage(session, user_id, plan=plan)
    except Exception:
        logger.exception("[usage] team admission check failed", extra={"user_id": user_id})
        return LimitCheckResult(
            allowed=False,
            reason="Unable to verify team limits. Please try again.",
            upgrade_required=False,
        )

    if usage.team.can_invite:
        return LimitCheckResult(allowed=True)
    return LimitCheckResult(
        allowed=False,
        reason=f"You've reached your plan's team member limit ({usage.team.limit}).",
        upgrade_required=True,
        current_usage=usage.team.current,
        limit=usage.team.limit,
    )


def can_access_feature(
    session: Session,
    user_id: str,
    feature: str,
    *,
    now: Optional[datetime] = None,
) -> LimitCheckResult:
    """
    Check a boolean plan flag such as ``can_custom_brand``.

    Raises:
        ValueError: If ``feature`` is not a boolean plan flag
    """
    if feature not in BOOLEAN_FEATURES:
        raise ValueError(f"Unknown plan feature: {feature}")
    try:
        plan = resolve_plan(session, user_id, now=now)
    except Exception:
        logger.exception("[usage] feature access check failed", extra={"user_id": user_id, "feature": feature})
        return LimitCheckResult(
            allowed=False,
            reason="Unable to verify feature access. Please try again.",
            upgrade_required=False,
        )
    enabled = bool(getattr(plan.limits, feature))
    if enabled:
        return LimitCheckResult(allowed=True, upgrade_required=False)
    return LimitCheckResult(
        allowed=False,
        reason="This feature is not available on your current plan.",
        upgrade_required=True,
    )


# ---------------------------------------------------------------------------
# Over-limit status and upgrade advice
# ---------------------------------------------------------------------------

def over_limit_types(usage: PlanUsage) -> List[str]:
    return [name for name in USAGE_DIMENSIONS if getattr(usage, name).is_over_limit]


def over_limit_message(types: List[str]) -> str:
    if not types:
        return ""
    if len(types) == 1:
        message = f"You're over your plan's {types[0]} limit."
    else:
        message = f"You're over your plan's {' and '.join(types)} limits."
    return message + " Upgrade to restore full access."


def check_over_limits(
    session: Session,
    user_id: str,
    role: Role,
    *,
    now: Optional[datetime] = None,
) -> OverLimitStatus:
    """
    Aggregate over-limit check driving the dashboard warning.

    Only freelancers have plans; clients always get an empty status and
    no usage is computed for them.
    """
    if role != Role.FREELANCER:
        return OverLimitStatus(is_over_limit=False, over_limit_types=[], message="")

    usage = get_plan_usage(session, user_id, now=now)
    types = over_limit_types(usage)
    return OverLimitStatus(
        is_over_limit=bool(types),
        over_limit_types=types,
        message=over_limit_message(types),
    )


def _accommodates(limits: PlanLimits, usage: PlanUsage) -> bool:
    return (
        not is_over_limit(usage.clients.current, limits.max_clients)
        and not is_over_limit(usage.storage.current, mb_to_bytes(limits.max_storage_mb))
        and not is_over_limit(usage.team.current, limits.max_team_members)
    )


def recommend_upgrade(plan: PlanInfo, usage: PlanUsage) -> UpgradeRecommendation:
    """
    Suggest the cheapest higher tier that fits current usage.

    - On the top tier: no upgrade.
    - Over a limit: cheapest higher tier accommodating all three dimensions;
      if none does, the top tier with ``contact_support`` set.
    - Above 80% of a finite client or storage limit: the next tier up.
    """
    tiers = list_plans()
    top = tiers[-1]
    current_tier = get_plan_tier(plan.id) or get_plan_tier(FREE_PLAN_ID)
    higher = [tier for tier in tiers if tier.price > current_tier.price]

    if plan.id == AGENCY_PLAN_ID or not higher:
        return UpgradeRecommendation(
            should_upgrade=False,
            recommended_plan=None,
            reason="You're on our highest plan with unlimited features.",
            current_plan=plan.id,
        )

    if over_limit_types(usage):
        fitting = next((tier for tier in higher if _accommodates(tier.limits, usage)), None)
        if fitting is None:
            return UpgradeRecommendation(
                should_upgrade=True,
                recommended_plan=top.id,
                reason=(
                    f"Your usage exceeds every plan's limits. Upgrade to {top.id} "
                    "and contact support to arrange higher limits."
                ),
                current_plan=plan.id,
                contact_support=True,
            )
        unlimited = fitting.limits.max_clients is None and fitting.limits.max_storage_mb is None
        return UpgradeRecommendation(
            should_upgrade=True,
            recommended_plan=fitting.id,
            reason=(
                f"You're over your current plan's limits. Upgrade to {fitting.id} for "
                f"{'unlimited access' if unlimited else 'higher limits'}."
            ),
            current_plan=plan.id,
        )

    if (
        usage.clients.usage_percentage > APPROACHING_LIMIT_PERCENT
        or usage.storage.usage_percentage > APPROACHING_LIMIT_PERCENT
    ):
        next_tier = higher[0]
        return UpgradeRecommendation(
            should_upgrade=True,
            recommended_plan=next_tier.id,
            reason=f"You're approaching your plan's limits. Consider upgrading to {next_tier.id} for more capacity.",
            current_plan=plan.id,
        )

    return UpgradeRecommendation(
        should_upgrade=False,
        recommended_plan=None,
        reason="You're within your plan's limits.",
        current_plan=plan.id,
    )


def get_upgrade_recommendation(
    session: Session,
    user_id: str,
    *,
    now: Optional[datetime] = None,
) -> UpgradeRecommendation:
    plan = resolve_plan(session, user_id, now=now)
    usage = get_plan_usage(session, user_id, plan=plan)
    return recommend_upgrade(plan, usage)
