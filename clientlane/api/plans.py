"""
Plan catalog and plan-limit routes.

- GET  /api/plans
- GET  /api/plan-limits
- GET  /api/plan-limits/check-portal-creation
- POST /api/plan-limits/check-file-upload
- GET  /api/plan-limits/check-over-limits
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from clientlane.core.auth import AuthenticatedUser, get_current_user, require_freelancer
from clientlane.core.database import Database, get_database
from clientlane.core.errors import ValidationError
from clientlane.features.plans.service import list_plans, resolve_plan
from clientlane.features.usage.service import (
    can_create_portal,
    can_upload_file,
    can_upload_file_to_portal,
    check_over_limits,
    get_plan_usage,
    recommend_upgrade,
)
from clientlane.features.portals.access import get_accessible_portal
from clientlane.models.base import ApiModel
from clientlane.models.usage import PlanOverview

router = APIRouter(prefix="/api/plans", tags=["plans"])
limits_router = APIRouter(prefix="/api/plan-limits", tags=["plans"])


class FileUploadCheckRequest(ApiModel):
    file_size: int = Field(ge=0, description="Size in bytes")
    portal_id: Optional[str] = None


@router.get("")
def get_plans():
    return {"plans": [tier.to_api() for tier in list_plans()]}


@limits_router.get("")
def plan_overview(user: AuthenticatedUser = Depends(require_freelancer), db: Database = Depends(get_database)):
    """Plan in effect, usage and upgrade advice in one payload."""
    with db.session() as session:
        plan = resolve_plan(session, user.user_id)
        usage = get_plan_usage(session, user.user_id, plan=plan)
    overview = PlanOverview(plan=plan, usage=usage, recommendation=recommend_upgrade(plan, usage))
    return overview.to_api()


@limits_router.get("/check-portal-creation")
def check_portal_creation(
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
):
    with db.session() as session:
        return can_create_portal(session, user.user_id).to_api(exclude_none=True)


@limits_router.post("/check-file-upload")
def check_file_upload(
    payload: FileUploadCheckRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    with db.session() as session:
        if payload.portal_id:
            get_accessible_portal(session, payload.portal_id, user.user_id)
            return can_upload_file_to_portal(session, payload.portal_id, payload.file_size).to_api(exclude_none=True)
        if not user.is_freelancer:
            raise ValidationError("portalId is required for client uploads")
        return can_upload_file(session, user.user_id, payload.file_size).to_api(exclude_none=True)


@limits_router.get("/check-over-limits")
def over_limits(user: AuthenticatedUser = Depends(get_current_user), db: Database = Depends(get_database)):
    with db.session() as session:
        return check_over_limits(session, user.user_id, user.role).to_api()
