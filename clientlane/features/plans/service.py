"""
clientlane/features/plans/service.py

Plan catalog and plan resolution.

Handles:
- The tier catalog (free, pro, agency) with limits and prices
- Plan row seeding (idempotent)
- Resolving the plan currently in effect for a freelancer
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, insert
from sqlalchemy.engine import Row
from sqlalchemy.orm import Session

from clientlane.core.database import Database, as_utc, plans, subscriptions
from clientlane.models.plan import PlanInfo, PlanLimits, PlanTier, SupportLevel


FREE_PLAN_ID = "free"
PRO_PLAN_ID = "pro"
AGENCY_PLAN_ID = "agency"


# Ordered cheapest first; upgrade advice walks this order.
PLAN_CATALOG: Dict[str, PlanTier] = {
    FREE_PLAN_ID: PlanTier(
        id=FREE_PLAN_ID,
        name="Free Plan",
        description="1 client portal",
        price=0,
        features=[
            "1 client portal",
            "Comments & collaboration",
            "Activity feed & notifications",
            "Basic support",
        ],
        limits=PlanLimits(
            max_clients=1,
            max_storage_mb=100,
            can_add_team=False,
            max_team_members=1,  # just the freelancer
            max_file_size_mb=5,
            max_files_per_portal=50,
            max_updates_per_portal=None,
            can_custom_brand=False,
            can_use_api=False,
            can_use_advanced_analytics=False,
            can_use_white_label=False,
            support_level=SupportLevel.BASIC,
        ),
    ),
    PRO_PLAN_ID: PlanTier(
        id=PRO_PLAN_ID,
        name="Pro Plan",
        description="Up to 5 clients",
        price=9,
        features=[
            "Up to 5 client portals",
            "Comments & collaboration",
            "Activity feed & notifications",
            "Priority support",
            "Custom branding",
            "Advanced analytics",
        ],
        limits=PlanLimits(
            max_clients=5,
            max_storage_mb=1000,
            can_add_team=True,
            max_team_members=3,  # freelancer + 2 team members
            max_file_size_mb=25,
            max_files_per_portal=200,
            max_updates_per_portal=None,
            can_custom_brand=True,
            can_use_api=False,
            can_use_advanced_analytics=True,
            can_use_white_label=False,
            support_level=SupportLevel.PRIORITY,
        ),
    ),
    AGENCY_PLAN_ID: PlanTier(
        id=AGENCY_PLAN_ID,
        name="Agency Plan",
        description="Unlimited clients",
        price=29,
        features=[
            "Unlimited client portals",
            "Comments & collaboration",
            "Activity feed & notifications",
            "24/7 priority support",
            "Custom branding",
            "Advanced analytics",
            "White-label solution",
            "API access",
        ],
        limits=PlanLimits(
            max_clients=None,
            max_storage_mb=None,
            can_add_team=True,
            max_team_members=None,
            max_file_size_mb=100,
            max_files_per_portal=None,
            max_updates_per_portal=None,
            can_custom_brand=True,
            can_use_api=True,
            can_use_advanced_analytics=True,
            can_use_white_label=True,
            support_level=SupportLevel.ALWAYS_ON,
        ),
    ),
}


def list_plans() -> List[PlanTier]:
    """Return catalog tiers ordered by price (cheapest first)."""
    return sorted(PLAN_CATALOG.values(), key=lambda tier: tier.price)


def get_plan_tier(plan_id: str) -> Optional[PlanTier]:
    return PLAN_CATALOG.get(plan_id)


def get_plan_limits(plan_id: str) -> PlanLimits:
    """Limits for a catalog id; unknown ids get the Free plan's limits."""
    tier = PLAN_CATALOG.get(plan_id) or PLAN_CATALOG[FREE_PLAN_ID]
    return tier.limits


def plan_id_for_name(plan_name: str) -> str:
    """
    Map a stored plan name onto a catalog id.

    "Agency Plan" -> agency, "Pro Plan" -> pro, anything else -> free.
    """
    lowered = (plan_name or "").lower()
    if "agency" in lowered:
        return AGENCY_PLAN_ID
    if "pro" in lowered:
        return PRO_PLAN_ID
    return FREE_PLAN_ID


def free_plan_info() -> PlanInfo:
    tier = PLAN_CATALOG[FREE_PLAN_ID]
    return PlanInfo(
        id=tier.id,
        name=tier.name,
        is_active=True,
        is_free_plan=True,
        ends_at=None,
        limits=tier.limits,
    )


def seed_plans(db: Database) -> None:
    """
    Seed catalog plans into the plans table (idempotent).

    Safe to call multiple times; existing rows are left untouched.
    """
    with db.session() as session:
        for tier in list_plans():
            existing = session.execute(
                select(plans.c.id).where(plans.c.id == tier.id)
            ).first()
            if existing:
                continue
            session.execute(
                insert(plans).values(
                    id=tier.id,
                    name=tier.name,
                    price_cents=tier.price * 100,
                    currency="USD",
                    billing_cycle="monthly",
                    is_active=True,
                )
            )


def get_current_subscription(session: Session, user_id: str, now: Optional[datetime] = None) -> Optional[Row]:
    """
    Fetch the subscription currently in effect for a user.

    Current means ``is_active`` and ``ends_at > now`` (strict: a
    subscription ending exactly now is expired). Should several rows qualify,
    the most recently started one wins; that ordering is a tie-break for a
    state the write path never produces, not a contract.

    Returns:
        Row joined with the plan name (``plan_name``), or None
    """
    reference = as_utc(now) if now is not None else datetime.now(timezone.utc)
    return session.execute(
        select(
            subscriptions.c.id,
            subscriptions.c.user_id,
            subscriptions.c.plan_id,
            subscriptions.c.stripe_subscription_id,
            subscriptions.c.starts_at,
            subscriptions.c.ends_at,
            subscriptions.c.is_active,
            subscriptions.c.canceled_at,
            plans.c.name.label("plan_name"),
        )
        .join(plans, plans.c.id == subscriptions.c.plan_id)
        .where(subscriptions.c.user_id == user_id)
        .where(subscriptions.c.is_active.is_(True))
        .where(subscriptions.c.ends_at > reference)
        .order_by(subscriptions.c.starts_at.desc(), subscriptions.c.created_at.desc())
        .limit(1)
    ).first()


def resolve_plan(session: Session, user_id: str, now: Optional[datetime] = None) -> PlanInfo:
    """
    Return the plan in effect for a freelancer.

    Falls back to the Free plan when there is no current subscription;
    a missing subscription is never an error.

    Raises:
        SQLAlchemyError: If the lookup itself fails (callers decide whether
        to fail closed)
    """
    subscription = get_current_subscription(session, user_id, now=now)
    if subscription is None:
        return free_plan_info()

    plan_id = plan_id_for_name(subscription.plan_name)
    return PlanInfo(
        id=plan_id,
        name=subscription.plan_name,
        is_active=bool(subscription.is_active),
        is_free_plan=plan_id == FREE_PLAN_ID,
        ends_at=as_utc(subscription.ends_at),
        limits=get_plan_limits(plan_id),
    )
