from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from clientlane.core.auth import AuthenticatedUser, get_current_user
from clientlane.core.database import Database, get_database
from clientlane.features.activities.service import list_activities

router = APIRouter(prefix="/api/activities", tags=["activities"])


@router.get("")
def get_activities(
    portal_id: str = Query(..., alias="portalId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    """Activity feed for a portal the caller created or is the client of."""
    return list_activities(
        db,
        user.user_id,
        portal_id,
        page=page,
        limit=limit,
        date_from=date_from,
        date_to=date_to,
    )
