"""
Portal routes.

- POST   /api/portals        (freelancer; admission-checked)
- GET    /api/portals
- GET    /api/portals/{id}
- PATCH  /api/portals/{id}   (creator)
- DELETE /api/portals/{id}   (creator)
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import EmailStr, Field

from clientlane.core.auth import AuthenticatedUser, get_current_user, require_freelancer
from clientlane.core.database import Database, get_database
from clientlane.features.mailer.service import Mailer, get_mailer
from clientlane.features.portals import service
from clientlane.models.base import ApiModel
from clientlane.models.portal import PortalStatus

router = APIRouter(prefix="/api/portals", tags=["portals"])


class CreatePortalRequest(ApiModel):
    name: str = Field(min_length=2, max_length=255)
    client_email: EmailStr
    client_name: str = Field(min_length=1, max_length=255)
    description: str = ""
    status: PortalStatus = PortalStatus.ACTIVE
    welcome_note: Optional[str] = None


class UpdatePortalRequest(ApiModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    description: Optional[str] = None
    status: Optional[PortalStatus] = None


@router.post("", status_code=201)
def create_portal(
    payload: CreatePortalRequest,
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
    mailer: Mailer = Depends(get_mailer),
):
    portal = service.create_portal(
        db,
        mailer,
        user.user_id,
        name=payload.name,
        client_email=payload.client_email,
        client_name=payload.client_name,
        description=payload.description,
        status=payload.status,
        welcome_note=payload.welcome_note,
    )
    return {"portal": portal.to_api()}


@router.get("")
def list_portals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[PortalStatus] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    return service.list_portals(db, user.user_id, user.role, page=page, limit=limit, status=status)


@router.get("/{portal_id}")
def get_portal(
    portal_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    return {"portal": service.get_portal(db, user.user_id, portal_id).to_api()}


@router.patch("/{portal_id}")
def update_portal(
    portal_id: str,
    payload: UpdatePortalRequest,
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
):
    portal = service.update_portal(
        db,
        user.user_id,
        portal_id,
        name=payload.name,
        description=payload.description,
        status=payload.status,
    )
    return {"portal": portal.to_api()}


@router.delete("/{portal_id}")
def delete_portal(
    portal_id: str,
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
):
    service.delete_portal(db, user.user_id, portal_id)
    return {"message": "Portal deleted successfully"}
