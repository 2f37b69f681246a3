from fastapi import APIRouter, Depends, Query

from clientlane.core.auth import AuthenticatedUser, require_client, require_freelancer
from clientlane.core.database import Database, get_database
from clientlane.features.dashboard.service import client_dashboard, freelancer_dashboard

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/freelancer")
def get_freelancer_dashboard(
    top_portals_limit: int = Query(5, ge=1, le=50, alias="topPortalsLimit"),
    activity_limit: int = Query(10, ge=1, le=100, alias="activityLimit"),
    activity_page: int = Query(1, ge=1, alias="activityPage"),
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
):
    return freelancer_dashboard(
        db,
        user.user_id,
        top_portals_limit=top_portals_limit,
        activity_limit=activity_limit,
        activity_page=activity_page,
    )


@router.get("/client")
def get_client_dashboard(
    files_page: int = Query(1, ge=1, alias="filesPage"),
    files_limit: int = Query(20, ge=1, le=100, alias="filesLimit"),
    updates_page: int = Query(1, ge=1, alias="updatesPage"),
    updates_limit: int = Query(10, ge=1, le=100, alias="updatesLimit"),
    activity_page: int = Query(1, ge=1, alias="activityPage"),
    activity_limit: int = Query(10, ge=1, le=100, alias="activityLimit"),
    user: AuthenticatedUser = Depends(require_client),
    db: Database = Depends(get_database),
):
    return client_dashboard(
        db,
        user.user_id,
        files_page=files_page,
        files_limit=files_limit,
        updates_page=updates_page,
        updates_limit=updates_limit,
        activity_page=activity_page,
        activity_limit=activity_limit,
    )
