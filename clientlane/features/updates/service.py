"""
Portal updates (posts written by the freelancer or the client) and the
replies left on them.

A reply is stored as an untitled update whose parent_update_id names the
update it answers. Update listings only ever show top-level updates.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import select, insert, update, delete, func

from clientlane.core.database import Database, as_utc, files, new_id, notifications, updates, users, utc_now
from clientlane.core.errors import NotFoundError, PermissionError
from clientlane.features.activities.service import record_activity
from clientlane.features.files.service import files_for_updates
from clientlane.features.notifications.service import notify_portal_members
from clientlane.features.portals.access import get_accessible_portal
from clientlane.models.activity import ActivityType, ActorSummary
from clientlane.models.file import PortalUpdate, UpdateReply

logger = logging.getLogger("clientlane")

UPDATE_NOT_EDITABLE = "Update not found or you don't have permission to edit it"
REPLY_NOT_FOUND = "Reply not found or unauthorized"


def _update_from_row(row) -> PortalUpdate:
    return PortalUpdate(
        id=row.id,
        portal_id=row.portal_id,
        title=row.title,
        content=row.content,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        user=ActorSummary(id=row.user_id, name=row.user_name, email=row.user_email),
    )


def _reply_from_row(row, attached=()) -> UpdateReply:
    return UpdateReply(
        id=row.id,
        update_id=row.parent_update_id,
        content=row.content,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        user=ActorSummary(id=row.user_id, name=row.user_name, email=row.user_email),
        files=list(attached),
    )


def _select_updates():
    return (
        select(updates, users.c.name.label("user_name"), users.c.email.label("user_email"))
        .join(users, users.c.id == updates.c.user_id)
    )


def _top_level():
    return updates.c.parent_update_id.is_(None)


def _remove_attached_files(session, owner_id: str, file_ids: Sequence[str]) -> int:
    """Delete the listed file rows, but only those attached to ``owner_id``."""
    if not file_ids:
        return 0
    result = session.execute(
        delete(files).where(files.c.id.in_(list(file_ids))).where(files.c.update_id == owner_id)
    )
    return result.rowcount


def create_update(
    db: Database,
    user_id: str,
    *,
    portal_id: str,
    title: str,
    content: str,
    now: Optional[datetime] = None,
) -> PortalUpdate:
    now = now or utc_now()
    with db.session() as session:
        get_accessible_portal(session, portal_id, user_id)

        update_id = new_id()
        session.execute(
            insert(updates).values(
                id=update_id,
                portal_id=portal_id,
                user_id=user_id,
                title=title.strip(),
                content=content,
                created_at=now,
                updated_at=now,
            )
        )
        meta = {"updateId": update_id, "updateTitle": title.strip()}
        record_activity(session, portal_id, user_id, ActivityType.UPDATE_CREATED, meta, now=now)
        notify_portal_members(session, portal_id, user_id, ActivityType.UPDATE_CREATED, meta, now=now)

        row = session.execute(_select_updates().where(updates.c.id == update_id)).one()

    logger.info("[updates] update created", extra={"user_id": user_id, "portal_id": portal_id})
    return _update_from_row(row)


def list_updates(
    db: Database,
    user_id: str,
    portal_id: str,
    *,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    offset = (page - 1) * limit
    with db.session() as session:
        get_accessible_portal(session, portal_id, user_id)
        total = session.execute(
            select(func.count()).select_from(updates).where(updates.c.portal_id == portal_id).where(_top_level())
        ).scalar_one()
        rows = session.execute(
            _select_updates()
            .where(updates.c.portal_id == portal_id)
            .where(_top_level())
            .order_by(updates.c.created_at.desc())
            .offset(offset)
            .limit(limit)
        ).all()

    return {
        "updates": [_update_from_row(row).to_api() for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "hasMore": offset + len(rows) < total,
    }


def get_update(db: Database, user_id: str, update_id: str) -> Dict[str, Any]:
    """
    One update with its files, its replies (oldest first) and its portal.

    Raises:
        NotFoundError: Update missing or its portal not visible to the caller
    """
    with db.session() as session:
        row = session.execute(_select_updates().where(updates.c.id == update_id).where(_top_level())).first()
        if row is None:
            raise NotFoundError("Update not found")
        portal = get_accessible_portal(session, row.portal_id, user_id)

        reply_rows = session.execute(
            _select_updates()
            .where(updates.c.parent_update_id == update_id)
            .order_by(updates.c.created_at.asc())
        ).all()
        attached = files_for_updates(session, [update_id] + [reply.id for reply in reply_rows])

    detail = _update_from_row(row).to_api()
    detail["files"] = [item.to_api() for item in attached[update_id]]
    detail["replies"] = [_reply_from_row(reply, attached[reply.id]).to_api() for reply in reply_rows]
    detail["portal"] = {
        "id": portal.id,
        "name": portal.name,
        "createdBy": portal.created_by,
        "clientId": portal.client_id,
    }
    return detail


def edit_update(
    db: Database,
    user_id: str,
    update_id: str,
    *,
    title: str,
    content: str,
    files_to_remove: Sequence[str] = (),
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Rewrite an update's title and content. Only its author may edit.

    ``files_to_remove`` names attached files to delete; ids attached to
    anything else are ignored.

    Raises:
        NotFoundError: Update missing or written by someone else
    """
    now = now or utc_now()
    with db.session() as session:
        row = session.execute(
            select(updates.c.id, updates.c.portal_id)
            .where(updates.c.id == update_id)
            .where(updates.c.user_id == user_id)
            .where(_top_level())
        ).first()
        if row is None:
            raise NotFoundError(UPDATE_NOT_EDITABLE)
        # The author may since have lost access to the portal
        get_accessible_portal(session, row.portal_id, user_id)

        removed = _remove_attached_files(session, update_id, files_to_remove)
        session.execute(
            update(updates)
            .where(updates.c.id == update_id)
            .values(title=title.strip(), content=content, updated_at=now)
        )

    logger.info(
        "[updates] update edited",
        extra={"user_id": user_id, "portal_id": row.portal_id, "files_removed": removed},
    )
    return get_update(db, user_id, update_id)


def delete_update(db: Database, user_id: str, update_id: str, *, now: Optional[datetime] = None) -> None:
    """
    Delete an update and its replies. Its author or the portal creator may delete.

    Files attached to the update or its replies stay in the portal, detached.

    Raises:
        NotFoundError: Update missing or its portal not visible to the caller
        PermissionError: Caller is a portal member but neither author nor creator
    """
    with db.session() as session:
        row = session.execute(select(updates).where(updates.c.id == update_id).where(_top_level())).first()
        if row is None:
            raise NotFoundError("Update not found")
        portal = get_accessible_portal(session, row.portal_id, user_id)
        if user_id not in (row.user_id, portal.created_by):
            raise PermissionError("Only the author or the portal owner can delete this update")

        reply_ids = session.execute(
            select(updates.c.id).where(updates.c.parent_update_id == update_id)
        ).scalars().all()
        session.execute(
            update(files).where(files.c.update_id.in_([update_id, *reply_ids])).values(update_id=None)
        )
        session.execute(
            delete(notifications)
            .where(notifications.c.portal_id == row.portal_id)
            .where(notifications.c.link.contains(f"/update/{update_id}", autoescape=True))
        )
        session.execute(delete(updates).where(updates.c.parent_update_id == update_id))
        session.execute(delete(updates).where(updates.c.id == update_id))
        record_activity(
            session,
            row.portal_id,
            user_id,
            ActivityType.UPDATE_DELETED,
            {"updateId": update_id, "updateTitle": row.title, "replyCount": len(reply_ids)},
            now=now,
        )

    logger.info("[updates] update deleted", extra={"user_id": user_id, "portal_id": row.portal_id})


# Replies

def create_reply(
    db: Database,
    user_id: str,
    update_id: str,
    *,
    content: str,
    now: Optional[datetime] = None,
) -> UpdateReply:
    """
    Reply to an update. Anyone who can see the portal may reply.

    Raises:
        NotFoundError: Update missing or its portal not visible to the caller
    """
    now = now or utc_now()
    with db.session() as session:
        parent = session.execute(
            select(updates.c.id, updates.c.portal_id, updates.c.title)
            .where(updates.c.id == update_id)
            .where(_top_level())
        ).first()
        if parent is None:
            raise NotFoundError("Update not found")
        get_accessible_portal(session, parent.portal_id, user_id)

        reply_id = new_id()
        session.execute(
            insert(updates).values(
                id=reply_id,
                portal_id=parent.portal_id,
                user_id=user_id,
                parent_update_id=update_id,
                title="",
                content=content,
                created_at=now,
                updated_at=now,
            )
        )
        meta = {"updateId": update_id, "replyId": reply_id, "parentUpdateTitle": parent.title}
        record_activity(session, parent.portal_id, user_id, ActivityType.REPLY_CREATED, meta, now=now)
        notify_portal_members(session, parent.portal_id, user_id, ActivityType.REPLY_CREATED, meta, now=now)

        row = session.execute(_select_updates().where(updates.c.id == reply_id)).one()

    logger.info("[updates] reply created", extra={"user_id": user_id, "portal_id": parent.portal_id})
    return _reply_from_row(row)


def _own_reply(session, user_id: str, reply_id: str):
    row = session.execute(
        select(updates.c.id, updates.c.portal_id)
        .where(updates.c.id == reply_id)
        .where(updates.c.user_id == user_id)
        .where(updates.c.parent_update_id.is_not(None))
    ).first()
    if row is None:
        raise NotFoundError(REPLY_NOT_FOUND)
    return row


def edit_reply(
    db: Database,
    user_id: str,
    reply_id: str,
    *,
    content: str,
    files_to_remove: Sequence[str] = (),
    now: Optional[datetime] = None,
) -> UpdateReply:
    """
    Rewrite a reply. Only its author may edit.

    Raises:
        NotFoundError: Reply missing or written by someone else
    """
    now = now or utc_now()
    with db.session() as session:
        own = _own_reply(session, user_id, reply_id)
        _remove_attached_files(session, reply_id, files_to_remove)
        session.execute(
            update(updates).where(updates.c.id == reply_id).values(content=content, updated_at=now)
        )
        row = session.execute(_select_updates().where(updates.c.id == reply_id)).one()
        attached = files_for_updates(session, [reply_id])

    logger.info("[updates] reply edited", extra={"user_id": user_id, "portal_id": own.portal_id})
    return _reply_from_row(row, attached[reply_id])


def delete_reply(db: Database, user_id: str, reply_id: str) -> None:
    """
    Delete a reply and the files attached to it. Only its author may delete.

    Raises:
        NotFoundError: Reply missing or written by someone else
    """
    with db.session() as session:
        own = _own_reply(session, user_id, reply_id)
        session.execute(delete(files).where(files.c.update_id == reply_id))
        session.execute(
            delete(notifications)
            .where(notifications.c.portal_id == own.portal_id)
            .where(notifications.c.link.contains(f"#reply-{reply_id}", autoescape=True))
        )
        session.execute(delete(updates).where(updates.c.id == reply_id))

    logger.info("[updates] reply deleted", extra={"user_id": user_id, "portal_id": own.portal_id})
