"""
Portal activity feed.

Handles:
- Recording activities inside the caller's transaction
- Listing a portal's feed with date-range filtering and pagination
"""

from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, insert, func
from sqlalchemy.orm import Session

from clientlane.core.database import Database, activities, as_utc, new_id, users
from clientlane.features.portals.access import get_accessible_portal
from clientlane.models.activity import Activity, ActivityType, ActorSummary


def record_activity(
    session: Session,
    portal_id: str,
    user_id: str,
    activity_type: ActivityType,
    details: Optional[Dict[str, Any]] = None,
    *,
    now: Optional[datetime] = None,
) -> str:
    """Insert one activity row; runs in the caller's transaction."""
    activity_id = new_id()
    session.execute(
        insert(activities).values(
            id=activity_id,
            portal_id=portal_id,
            user_id=user_id,
            type=ActivityType(activity_type).value,
            details=details or {},
            created_at=now or datetime.now(timezone.utc),
        )
    )
    return activity_id


def _date_window(date_from: Optional[date], date_to: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    start = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
    # dateTo covers the entire day
    end = datetime.combine(date_to, time.max, tzinfo=timezone.utc) if date_to else None
    return start, end


def list_activities(
    db: Database,
    user_id: str,
    portal_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> Dict[str, Any]:
    """
    List a portal's activities, newest first.

    Raises:
        NotFoundError: Portal missing or caller is neither its creator nor its client
    """
    start, end = _date_window(date_from, date_to)
    offset = (page - 1) * limit

    with db.session() as session:
        get_accessible_portal(session, portal_id, user_id)

        conditions = [activities.c.portal_id == portal_id]
        if start is not None:
            conditions.append(activities.c.created_at >= start)
        if end is not None:
            conditions.append(activities.c.created_at <= end)

        total = session.execute(
            select(func.count()).select_from(activities).where(*conditions)
        ).scalar_one()
        rows = session.execute(
            select(activities, users.c.name.label("user_name"), users.c.email.label("user_email"))
            .join(users, users.c.id == activities.c.user_id)
            .where(*conditions)
            .order_by(activities.c.created_at.desc())
            .offset(offset)
            .limit(limit)
        ).all()

    items: List[Activity] = [
        Activity(
            id=row.id,
            portal_id=row.portal_id,
            user_id=row.user_id,
            type=row.type,
            details=row.details or {},
            created_at=as_utc(row.created_at),
            user=ActorSummary(id=row.user_id, name=row.user_name, email=row.user_email),
        )
        for row in rows
    ]
    return {
        "activities": [item.to_api() for item in items],
        "total": total,
        "page": page,
        "limit": limit,
        "hasMore": offset + len(items) < total,
    }
