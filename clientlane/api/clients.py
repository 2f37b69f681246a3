from typing import Optional

from fastapi import APIRouter, Depends, Query

from clientlane.core.auth import AuthenticatedUser, require_freelancer
from clientlane.core.database import Database, get_database
from clientlane.features.clients.service import ClientStatus, list_clients, resend_invite
from clientlane.features.mailer.service import Mailer, get_mailer
from clientlane.models.base import ApiModel

router = APIRouter(prefix="/api/clients", tags=["clients"])


class ResendInviteRequest(ApiModel):
    client_id: str


@router.get("")
def get_clients(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    status: ClientStatus = ClientStatus.ALL,
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
):
    return list_clients(db, user.user_id, page=page, limit=limit, search=search, status=status)


@router.post("/resend-invite")
def post_resend_invite(
    payload: ResendInviteRequest,
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
    mailer: Mailer = Depends(get_mailer),
):
    message = resend_invite(db, mailer, user.user_id, payload.client_id)
    return {"message": message}
