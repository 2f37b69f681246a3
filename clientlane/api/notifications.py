"""
Notification inbox routes.

- GET /api/notifications?page&limit&unreadOnly
- PUT /api/notifications  {notificationId | markAllAsRead | markByLink}
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from clientlane.core.auth import AuthenticatedUser, get_current_user
from clientlane.core.database import Database, get_database
from clientlane.core.errors import ValidationError
from clientlane.features.notifications import service
from clientlane.models.base import ApiModel

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class MarkReadRequest(ApiModel):
    notification_id: Optional[str] = None
    mark_all_as_read: bool = False
    mark_by_link: Optional[str] = None


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False, alias="unreadOnly"),
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    return service.list_notifications(db, user.user_id, page=page, limit=limit, unread_only=unread_only)


@router.put("")
def mark_read(
    payload: MarkReadRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    if payload.mark_all_as_read:
        updated = service.mark_all_read(db, user.user_id)
    elif payload.notification_id:
        updated = service.mark_read(db, user.user_id, payload.notification_id)
    elif payload.mark_by_link:
        updated = service.mark_read_by_link(db, user.user_id, payload.mark_by_link)
    else:
        raise ValidationError("Provide notificationId, markAllAsRead or markByLink")
    return {"updated": updated}
