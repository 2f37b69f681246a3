"""
Dashboard summaries.

The freelancer dashboard rolls up the caller's portals: totals, the last
twelve months of updates and new portals, the busiest portals, the plan in
effect and a page of recent activity. The client dashboard lists the
portals assigned to the caller with pages of their files, updates and
activity.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, select, func
from sqlalchemy.orm import Session

from clientlane.core.database import Database, activities, as_utc, files, portals, updates, users, utc_now
from clientlane.features.plans.service import resolve_plan
from clientlane.features.usage.service import storage_bytes
from clientlane.models.activity import ActivityType

MONTHS_SHOWN = 12

ACTIVITY_MESSAGES = {
    ActivityType.PORTAL_CREATED.value: "Created portal",
    ActivityType.PORTAL_UPDATED.value: "Updated portal",
    ActivityType.UPDATE_CREATED.value: "Posted an update",
    ActivityType.UPDATE_DELETED.value: "Deleted an update",
    ActivityType.FILE_UPLOADED.value: "Uploaded a file",
    ActivityType.FILE_DELETED.value: "Deleted a file",
    ActivityType.REPLY_CREATED.value: "Added a comment",
    ActivityType.SHARED_LINK_CREATED.value: "Created a shared link",
}


def activity_message(activity_type: str) -> str:
    return ACTIVITY_MESSAGES.get(activity_type, "Performed an action")


def format_storage_used(size_bytes: int) -> str:
    """Two decimals, in GB from 1 GB up and in MB below."""
    size_mb = size_bytes / (1024 * 1024)
    if size_mb >= 1024:
        return f"{size_mb / 1024:.2f} GB"
    return f"{size_mb:.2f} MB"


def page_meta(page: int, limit: int, total: int) -> Dict[str, Any]:
    pages = math.ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalItems": total,
        "totalPages": pages,
        "itemsPerPage": limit,
        "hasNext": page < pages,
        "hasPrev": page > 1,
    }


def month_starts(now: datetime, count: int = MONTHS_SHOWN) -> List[datetime]:
    """First instant of each of the last ``count`` months, oldest first, ending with now's month."""
    year, month = now.year, now.month
    starts = []
    for _ in range(count):
        starts.append(datetime(year, month, 1, tzinfo=timezone.utc))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return starts[::-1]


def _bucket_by_month(starts: List[datetime], stamps) -> List[int]:
    counts = {(start.year, start.month): 0 for start in starts}
    for stamp in stamps:
        stamp = as_utc(stamp)
        key = (stamp.year, stamp.month)
        if key in counts:
            counts[key] += 1
    return [counts[(start.year, start.month)] for start in starts]


def _top_level():
    return updates.c.parent_update_id.is_(None)


def _count(session: Session, query) -> int:
    return session.execute(select(func.count()).select_from(query.subquery())).scalar_one()


def _activity_page(session: Session, portal_filter, page: int, limit: int) -> Tuple[int, List[Dict[str, Any]]]:
    query = (
        select(
            activities.c.id,
            activities.c.type,
            activities.c.created_at,
            portals.c.name.label("portal_name"),
            users.c.name.label("user_name"),
        )
        .join(portals, portals.c.id == activities.c.portal_id)
        .join(users, users.c.id == activities.c.user_id)
        .where(portal_filter)
    )
    total = _count(session, query)
    rows = session.execute(
        query.order_by(activities.c.created_at.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    return total, [
        {
            "id": row.id,
            "type": row.type,
            "message": activity_message(row.type),
            "portalName": row.portal_name,
            "userName": row.user_name,
            "createdAt": as_utc(row.created_at).isoformat(),
        }
        for row in rows
    ]


def freelancer_dashboard(
    db: Database,
    user_id: str,
    *,
    top_portals_limit: int = 5,
    activity_limit: int = 10,
    activity_page: int = 1,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utc_now()
    owned = portals.c.created_by == user_id
    starts = month_starts(now)

    with db.session() as session:
        total_portals = session.execute(select(func.count()).select_from(portals).where(owned)).scalar_one()
        # COUNT(DISTINCT) skips portals without a client
        total_clients = session.execute(
            select(func.count(portals.c.client_id.distinct())).where(owned)
        ).scalar_one()
        total_updates = session.execute(
            select(func.count())
            .select_from(updates.join(portals, portals.c.id == updates.c.portal_id))
            .where(owned)
            .where(_top_level())
        ).scalar_one()
        used = storage_bytes(session, user_id)

        update_times = session.execute(
            select(updates.c.created_at)
            .join(portals, portals.c.id == updates.c.portal_id)
            .where(owned)
            .where(_top_level())
            .where(updates.c.created_at >= starts[0])
        ).scalars().all()
        portal_times = session.execute(
            select(portals.c.created_at).where(owned).where(portals.c.created_at >= starts[0])
        ).scalars().all()

        client = users.alias("client")
        update_count = func.count(updates.c.id).label("update_count")
        top_rows = session.execute(
            select(
                portals.c.id,
                portals.c.name,
                portals.c.status,
                portals.c.updated_at,
                client.c.name.label("client_name"),
                update_count,
            )
            .outerjoin(client, client.c.id == portals.c.client_id)
            .outerjoin(updates, and_(updates.c.portal_id == portals.c.id, _top_level()))
            .where(owned)
            .group_by(portals.c.id, portals.c.name, portals.c.status, portals.c.updated_at, client.c.name)
            .order_by(update_count.desc(), portals.c.updated_at.desc())
            .limit(top_portals_limit)
        ).all()

        plan = resolve_plan(session, user_id, now=now)
        activity_total, recent = _activity_page(session, owned, activity_page, activity_limit)

    monthly = zip(starts, _bucket_by_month(starts, update_times), _bucket_by_month(starts, portal_times))
    return {
        "overview": {
            "totalPortals": total_portals,
            "totalClients": total_clients,
            "totalUpdates": total_updates,
            "storageUsed": format_storage_used(used),
        },
        "monthlyActivity": [
            {"month": start.strftime("%b %Y"), "updates": update_total, "clients": portal_total}
            for start, update_total, portal_total in monthly
        ],
        "topPortals": [
            {
                "id": row.id,
                "name": row.name,
                "clientName": row.client_name or "",
                "updateCount": row.update_count,
                "lastUpdated": as_utc(row.updated_at).isoformat(),
                "status": row.status,
            }
            for row in top_rows
        ],
        "planUsage": {
            "currentPlan": plan.name,
            "planId": plan.id,
            "isActive": plan.is_active,
            "endsAt": plan.ends_at.isoformat() if plan.ends_at else None,
        },
        "recentActivity": recent,
        "pagination": {"activity": page_meta(activity_page, activity_limit, activity_total)},
    }


def client_dashboard(
    db: Database,
    user_id: str,
    *,
    files_page: int = 1,
    files_limit: int = 20,
    updates_page: int = 1,
    updates_limit: int = 10,
    activity_page: int = 1,
    activity_limit: int = 10,
) -> Dict[str, Any]:
    assigned = portals.c.client_id == user_id
    freelancer = users.alias("freelancer")
    author = users.alias("author")

    with db.session() as session:
        update_counts = (
            select(updates.c.portal_id, func.count().label("total"))
            .where(_top_level())
            .group_by(updates.c.portal_id)
            .subquery()
        )
        file_counts = (
            select(files.c.portal_id, func.count().label("total")).group_by(files.c.portal_id).subquery()
        )
        portal_rows = session.execute(
            select(
                portals,
                freelancer.c.name.label("freelancer_name"),
                freelancer.c.email.label("freelancer_email"),
                func.coalesce(update_counts.c.total, 0).label("update_count"),
                func.coalesce(file_counts.c.total, 0).label("file_count"),
            )
            .join(freelancer, freelancer.c.id == portals.c.created_by)
            .outerjoin(update_counts, update_counts.c.portal_id == portals.c.id)
            .outerjoin(file_counts, file_counts.c.portal_id == portals.c.id)
            .where(assigned)
            .order_by(portals.c.updated_at.desc())
        ).all()

        file_query = (
            select(
                files,
                portals.c.name.label("portal_name"),
                author.c.name.label("uploader_name"),
                author.c.email.label("uploader_email"),
            )
            .join(portals, portals.c.id == files.c.portal_id)
            .join(author, author.c.id == files.c.user_id)
            .where(assigned)
        )
        files_total = _count(session, file_query)
        file_rows = session.execute(
            file_query.order_by(files.c.uploaded_at.desc())
            .offset((files_page - 1) * files_limit)
            .limit(files_limit)
        ).all()

        update_query = (
            select(
                updates,
                portals.c.name.label("portal_name"),
                author.c.name.label("author_name"),
                author.c.email.label("author_email"),
            )
            .join(portals, portals.c.id == updates.c.portal_id)
            .join(author, author.c.id == updates.c.user_id)
            .where(assigned)
            .where(_top_level())
        )
        updates_total = _count(session, update_query)
        update_rows = session.execute(
            update_query.order_by(updates.c.created_at.desc())
            .offset((updates_page - 1) * updates_limit)
            .limit(updates_limit)
        ).all()

        activity_total, recent = _activity_page(session, assigned, activity_page, activity_limit)

    return {
        "assignedPortals": [
            {
                "id": row.id,
                "name": row.name,
                "description": row.description or "",
                "status": row.status,
                "freelancerName": row.freelancer_name,
                "freelancerEmail": row.freelancer_email,
                "updateCount": row.update_count,
                "fileCount": row.file_count,
                "lastUpdated": as_utc(row.updated_at).isoformat(),
                "createdAt": as_utc(row.created_at).isoformat(),
            }
            for row in portal_rows
        ],
        "sharedFiles": [
            {
                "id": row.id,
                "fileName": row.file_name,
                "fileUrl": row.file_url,
                "fileType": row.file_type or "",
                "fileSize": row.file_size,
                "uploadedAt": as_utc(row.uploaded_at).isoformat(),
                "portalName": row.portal_name,
                "uploaderName": row.uploader_name,
                "uploaderEmail": row.uploader_email,
            }
            for row in file_rows
        ],
        "unreadUpdates": [
            {
                "id": row.id,
                "title": row.title,
                "content": row.content,
                "portalName": row.portal_name,
                "authorName": row.author_name,
                "authorEmail": row.author_email,
                "createdAt": as_utc(row.created_at).isoformat(),
            }
            for row in update_rows
        ],
        "recentActivity": recent,
        "pagination": {
            "files": page_meta(files_page, files_limit, files_total),
            "updates": page_meta(updates_page, updates_limit, updates_total),
            "activity": page_meta(activity_page, activity_limit, activity_total),
        },
    }
