"""
Notification service.

Handles:
- Link and message generation per notification type
- Fan-out to everyone on a portal except the actor
- Inbox listing and read-state updates
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, insert, update, func
from sqlalchemy.orm import Session

from clientlane.core.database import Database, as_utc, new_id, notifications, portals, users
from clientlane.models.activity import ActivityType, Notification, NotificationPortal, NotificationType

logger = logging.getLogger("clientlane")

ACTIVITY_NOTIFICATIONS = {
    ActivityType.REPLY_CREATED: NotificationType.NEW_COMMENT,
    ActivityType.FILE_UPLOADED: NotificationType.FILE_UPLOADED,
    ActivityType.PORTAL_UPDATED: NotificationType.PORTAL_UPDATED,
    ActivityType.UPDATE_CREATED: NotificationType.NEW_UPDATE,
}


def notification_link(portal_id: str, notification_type: NotificationType, meta: Optional[Dict[str, Any]] = None) -> str:
    """Deep link for a notification, relative to the app root."""
    meta = meta or {}
    base = f"/portal/{portal_id}"
    update_id = meta.get("updateId")

    if notification_type == NotificationType.NEW_COMMENT:
        if update_id and meta.get("replyId"):
            return f"{base}/update/{update_id}#reply-{meta['replyId']}"
        if update_id:
            return f"{base}/update/{update_id}"
        return base
    if notification_type == NotificationType.FILE_UPLOADED:
        return f"{base}/update/{update_id}" if update_id else f"{base}/files"
    if notification_type == NotificationType.NEW_UPDATE:
        return f"{base}/update/{update_id}" if update_id else base
    return base


def notification_message(
    notification_type: NotificationType,
    meta: Optional[Dict[str, Any]] = None,
    actor_name: str = "Someone",
) -> str:
    meta = meta or {}
    if notification_type == NotificationType.NEW_COMMENT:
        if meta.get("parentUpdateTitle"):
            return f'{actor_name} replied to "{meta["parentUpdateTitle"]}"'
        return f"{actor_name} left a new comment"
    if notification_type == NotificationType.FILE_UPLOADED:
        if meta.get("fileName"):
            return f'{actor_name} uploaded "{meta["fileName"]}"'
        return f"{actor_name} uploaded a new file"
    if notification_type == NotificationType.PORTAL_UPDATED:
        if meta.get("portalName"):
            return f'Portal "{meta["portalName"]}" was updated'
        return "Portal was updated"
    if notification_type == NotificationType.NEW_UPDATE:
        if meta.get("updateTitle"):
            return f'{actor_name} posted "{meta["updateTitle"]}"'
        return f"{actor_name} posted a new update"
    if notification_type == NotificationType.DEADLINE_REMINDER:
        if meta.get("portalName"):
            return f"Reminder: The deadline for project '{meta['portalName']}' is in 7 days."
        return "Project deadline reminder: 7 days remaining"
    return f"New activity from {actor_name}"


def notify_portal_members(
    session: Session,
    portal_id: str,
    actor_id: str,
    activity_type: ActivityType,
    meta: Optional[Dict[str, Any]] = None,
    *,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Create notifications for an activity, inside the caller's transaction.

    Recipients are the portal's freelancer and client, minus the actor.
    Activity types without a notification mapping are a no-op.

    Returns:
        Recipient user ids
    """
    notification_type = ACTIVITY_NOTIFICATIONS.get(ActivityType(activity_type))
    if notification_type is None:
        return []

    portal = session.execute(
        select(portals.c.created_by, portals.c.client_id).where(portals.c.id == portal_id)
    ).first()
    actor_name = session.execute(select(users.c.name).where(users.c.id == actor_id)).scalar_one_or_none()
    if portal is None or actor_name is None:
        return []

    recipients = [
        member for member in (portal.created_by, portal.client_id)
        if member and member != actor_id
    ]
    link = notification_link(portal_id, notification_type, meta)
    message = notification_message(notification_type, meta, actor_name)
    created_at = now or datetime.now(timezone.utc)
    for recipient in recipients:
        session.execute(
            insert(notifications).values(
                id=new_id(),
                user_id=recipient,
                portal_id=portal_id,
                type=notification_type.value,
                message=message,
                link=link,
                is_read=False,
                created_at=created_at,
            )
        )
    return recipients


def unread_count(session: Session, user_id: str) -> int:
    return session.execute(
        select(func.count())
        .select_from(notifications)
        .where(notifications.c.user_id == user_id)
        .where(notifications.c.is_read.is_(False))
    ).scalar_one()


def list_notifications(
    db: Database,
    user_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
) -> Dict[str, Any]:
    offset = (page - 1) * limit
    conditions = [notifications.c.user_id == user_id]
    if unread_only:
        conditions.append(notifications.c.is_read.is_(False))

    with db.session() as session:
        total = session.execute(
            select(func.count()).select_from(notifications).where(*conditions)
        ).scalar_one()
        rows = session.execute(
            select(notifications, portals.c.name.label("portal_name"))
            .outerjoin(portals, portals.c.id == notifications.c.portal_id)
            .where(*conditions)
            .order_by(notifications.c.created_at.desc())
            .offset(offset)
            .limit(limit)
        ).all()
        unread = unread_count(session, user_id)

    items = [
        Notification(
            id=row.id,
            type=row.type,
            message=row.message,
            link=row.link,
            is_read=bool(row.is_read),
            created_at=as_utc(row.created_at),
            portal=NotificationPortal(id=row.portal_id, name=row.portal_name) if row.portal_id and row.portal_name else None,
        )
        for row in rows
    ]
    return {
        "notifications": [item.to_api() for item in items],
        "total": total,
        "unreadCount": unread,
        "page": page,
        "limit": limit,
        "hasMore": offset + len(items) < total,
    }


def mark_read(db: Database, user_id: str, notification_id: str) -> int:
    """Mark one notification read; other users' notifications are untouched."""
    with db.session() as session:
        result = session.execute(
            update(notifications)
            .where(notifications.c.id == notification_id)
            .where(notifications.c.user_id == user_id)
            .values(is_read=True)
        )
        return result.rowcount


def mark_all_read(db: Database, user_id: str) -> int:
    with db.session() as session:
        result = session.execute(
            update(notifications)
            .where(notifications.c.user_id == user_id)
            .where(notifications.c.is_read.is_(False))
            .values(is_read=True)
        )
        return result.rowcount


def mark_read_by_link(db: Database, user_id: str, link_fragment: str) -> int:
    """Mark unread notifications whose link contains ``link_fragment``."""
    with db.session() as session:
        result = session.execute(
            update(notifications)
            .where(notifications.c.user_id == user_id)
            .where(notifications.c.is_read.is_(False))
            .where(notifications.c.link.contains(link_fragment, autoescape=True))
            .values(is_read=True)
        )
        return result.rowcount
