"""
File metadata routes.

- GET    /api/files?portalId&page&limit&search
- POST   /api/files            (admission-checked against the portal owner's plan)
- DELETE /api/files/{fileId}
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from clientlane.core.auth import AuthenticatedUser, get_current_user
from clientlane.core.database import Database, get_database
from clientlane.features.files import service
from clientlane.models.base import ApiModel

router = APIRouter(prefix="/api/files", tags=["files"])


class CreateFileRequest(ApiModel):
    portal_id: str
    file_name: str = Field(min_length=1, max_length=255)
    file_url: str = Field(min_length=1)
    file_type: str = ""
    file_size: int = Field(ge=0, description="Size in bytes")
    update_id: Optional[str] = None


@router.get("")
def list_files(
    portal_id: str = Query(..., alias="portalId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    return service.list_files(db, user.user_id, portal_id, page=page, limit=limit, search=search)


@router.post("", status_code=201)
def create_file(
    payload: CreateFileRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    record = service.create_file(
        db,
        user.user_id,
        portal_id=payload.portal_id,
        file_name=payload.file_name,
        file_url=payload.file_url,
        file_type=payload.file_type,
        file_size=payload.file_size,
        update_id=payload.update_id,
    )
    return {"file": record.to_api()}


@router.delete("/{file_id}")
def delete_file(
    file_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    service.delete_file(db, user.user_id, file_id)
    return {"message": "File deleted successfully"}
