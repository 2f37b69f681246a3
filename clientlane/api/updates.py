from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from clientlane.core.auth import AuthenticatedUser, get_current_user
from clientlane.core.database import Database, get_database
from clientlane.features.updates import service
from clientlane.models.base import ApiModel

router = APIRouter(prefix="/api/updates", tags=["updates"])
replies_router = APIRouter(prefix="/api/replies", tags=["updates"])


class CreateUpdateRequest(ApiModel):
    portal_id: str
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)


class EditUpdateRequest(ApiModel):
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    files_to_remove: List[str] = Field(default_factory=list)


class ReplyRequest(ApiModel):
    content: str = Field(min_length=1)


class EditReplyRequest(ReplyRequest):
    files_to_remove: List[str] = Field(default_factory=list)


@router.post("", status_code=201)
def create_update(
    payload: CreateUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    created = service.create_update(
        db, user.user_id, portal_id=payload.portal_id, title=payload.title, content=payload.content
    )
    return {"update": created.to_api()}


@router.get("")
def list_updates(
    portal_id: str = Query(..., alias="portalId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    return service.list_updates(db, user.user_id, portal_id, page=page, limit=limit)


@router.get("/{update_id}")
def get_update(
    update_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    return {"update": service.get_update(db, user.user_id, update_id)}


@router.put("/{update_id}")
def edit_update(
    update_id: str,
    payload: EditUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    edited = service.edit_update(
        db,
        user.user_id,
        update_id,
        title=payload.title,
        content=payload.content,
        files_to_remove=payload.files_to_remove,
    )
    return {"update": edited}


@router.post("/{update_id}", status_code=201)
def reply_to_update(
    update_id: str,
    payload: ReplyRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    reply = service.create_reply(db, user.user_id, update_id, content=payload.content)
    return {"reply": reply.to_api()}


@router.delete("/{update_id}")
def delete_update(
    update_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    service.delete_update(db, user.user_id, update_id)
    return {"message": "Update deleted successfully"}


@replies_router.put("/{reply_id}")
def edit_reply(
    reply_id: str,
    payload: EditReplyRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    reply = service.edit_reply(
        db, user.user_id, reply_id, content=payload.content, files_to_remove=payload.files_to_remove
    )
    return {"reply": reply.to_api()}


@replies_router.delete("/{reply_id}")
def delete_reply(
    reply_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    service.delete_reply(db, user.user_id, reply_id)
    return {"message": "Reply deleted successfully"}
