"""
File metadata service.

Blob storage is external; this module records what was uploaded where and
enforces the portal owner's plan limits on every upload.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, insert, delete, func
from sqlalchemy.orm import Session

from clientlane.core.database import Database, as_utc, files, new_id, updates, users, utc_now
from clientlane.core.errors import NotFoundError, QuotaExceededError
from clientlane.features.activities.service import record_activity
from clientlane.features.notifications.service import notify_portal_members
from clientlane.features.plans.service import resolve_plan
from clientlane.features.portals.access import get_accessible_portal
from clientlane.features.usage.service import can_upload_file_to_portal, lock_account
from clientlane.models.activity import ActivityType, ActorSummary
from clientlane.models.file import PortalFile

logger = logging.getLogger("clientlane")


def _file_from_row(row) -> PortalFile:
    return PortalFile(
        id=row.id,
        portal_id=row.portal_id,
        update_id=row.update_id,
        file_name=row.file_name,
        file_url=row.file_url,
        file_type=row.file_type or "",
        file_size=row.file_size,
        uploaded_at=as_utc(row.uploaded_at),
        user=ActorSummary(id=row.user_id, name=row.user_name, email=row.user_email),
    )


def files_for_updates(session: Session, update_ids: Sequence[str]) -> Dict[str, List[PortalFile]]:
    """Files attached to each of ``update_ids``, oldest first."""
    attached: Dict[str, List[PortalFile]] = {update_id: [] for update_id in update_ids}
    if not update_ids:
        return attached
    rows = session.execute(
        select(files, users.c.name.label("user_name"), users.c.email.label("user_email"))
        .join(users, users.c.id == files.c.user_id)
        .where(files.c.update_id.in_(list(update_ids)))
        .order_by(files.c.uploaded_at.asc())
    ).all()
    for row in rows:
        attached[row.update_id].append(_file_from_row(row))
    return attached


def list_files(
    db: Database,
    user_id: str,
    portal_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    offset = (page - 1) * limit
    conditions = [files.c.portal_id == portal_id]
    if search:
        conditions.append(files.c.file_name.ilike(f"%{search.strip()}%"))

    with db.session() as session:
        get_accessible_portal(session, portal_id, user_id)
        total = session.execute(
            select(func.count()).select_from(files).where(*conditions)
        ).scalar_one()
        rows = session.execute(
            select(files, users.c.name.label("user_name"), users.c.email.label("user_email"))
            .join(users, users.c.id == files.c.user_id)
            .where(*conditions)
            .order_by(files.c.uploaded_at.desc())
            .offset(offset)
            .limit(limit)
        ).all()

    return {
        "files": [_file_from_row(row).to_api() for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def create_file(
    db: Database,
    user_id: str,
    *,
    portal_id: str,
    file_name: str,
    file_url: str,
    file_size: int,
    file_type: str = "",
    update_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PortalFile:
    """
    Record an uploaded file.

    The storage check, per-portal file cap and insert commit in one
    admission transaction. Limits are those of the portal owner, whoever
    uploads.

    Raises:
        NotFoundError: Portal (or update) missing or not visible to the uploader
        QuotaExceededError: Storage, file size or file count limit reached
    """
    now = now or utc_now()

    with db.session(isolation_level=db.admission_isolation) as session:
        portal = get_accessible_portal(session, portal_id, user_id)
        lock_account(session, portal.created_by)

        if update_id is not None:
            found = session.execute(
                select(updates.c.id)
                .where(updates.c.id == update_id)
                .where(updates.c.portal_id == portal_id)
            ).scalar_one_or_none()
            if found is None:
                raise NotFoundError("Update not found")

        decision = can_upload_file_to_portal(session, portal_id, file_size, now=now)
        if not decision.allowed:
            raise QuotaExceededError(
                decision.reason or "Upload limit reached",
                details={
                    "upgradeRequired": decision.upgrade_required,
                    "currentUsage": decision.current_usage,
                    "limit": decision.limit,
                },
            )

        max_files = resolve_plan(session, portal.created_by, now=now).limits.max_files_per_portal
        if max_files is not None:
            count = session.execute(
                select(func.count()).select_from(files).where(files.c.portal_id == portal_id)
            ).scalar_one()
            if count + 1 > max_files:
                raise QuotaExceededError(
                    f"This portal has reached its limit of {max_files} files.",
                    details={"upgradeRequired": True, "currentUsage": count, "limit": max_files},
                )

        file_id = new_id()
        session.execute(
            insert(files).values(
                id=file_id,
                portal_id=portal_id,
                user_id=user_id,
                update_id=update_id,
                file_name=file_name,
                file_url=file_url,
                file_type=file_type or "",
                file_size=file_size,
                uploaded_at=now,
            )
        )
        meta = {"fileName": file_name, "fileSize": file_size, "fileType": file_type or ""}
        if update_id:
            meta["updateId"] = update_id
        record_activity(session, portal_id, user_id, ActivityType.FILE_UPLOADED, meta, now=now)
        notify_portal_members(session, portal_id, user_id, ActivityType.FILE_UPLOADED, meta, now=now)

        row = session.execute(
            select(files, users.c.name.label("user_name"), users.c.email.label("user_email"))
            .join(users, users.c.id == files.c.user_id)
            .where(files.c.id == file_id)
        ).one()

    logger.info(
        "[files] file recorded",
        extra={"user_id": user_id, "portal_id": portal_id, "file_size": file_size},
    )
    return _file_from_row(row)


def delete_file(db: Database, user_id: str, file_id: str, *, now: Optional[datetime] = None) -> None:
    """
    Delete a file row. The portal's creator or client may delete.

    Raises:
        NotFoundError: File missing or its portal not visible to the caller
    """
    with db.session() as session:
        row = session.execute(select(files).where(files.c.id == file_id)).first()
        if row is None:
            raise NotFoundError("File not found")
        get_accessible_portal(session, row.portal_id, user_id)

        session.execute(delete(files).where(files.c.id == file_id))
        record_activity(
            session,
            row.portal_id,
            user_id,
            ActivityType.FILE_DELETED,
            {"fileName": row.file_name, "fileSize": row.file_size, "fileType": row.file_type or ""},
            now=now,
        )

    logger.info("[files] file deleted", extra={"user_id": user_id, "portal_id": row.portal_id})

