"""
Account settings for the signed-in user.

- GET   /api/user
- PATCH /api/user
- POST  /api/user/update-password
- POST  /api/user/verify-password
"""
from fastapi import APIRouter, Depends
from pydantic import Field

from clientlane.core.auth import AuthenticatedUser, get_current_user
from clientlane.core.database import Database, get_database
from clientlane.core.errors import NotFoundError, ValidationError
from clientlane.features.users.service import check_password, get_user, rename_user, set_password
from clientlane.models.base import ApiModel
from clientlane.models.user import UserPublic

router = APIRouter(prefix="/api/user", tags=["user"])


class ProfileRequest(ApiModel):
    name: str = Field(min_length=2, max_length=255)


class UpdatePasswordRequest(ApiModel):
    new_password: str = Field(min_length=8, max_length=72)
    confirm_password: str = Field(min_length=8, max_length=72)


class VerifyPasswordRequest(ApiModel):
    current_password: str = Field(min_length=1, max_length=72)


@router.get("")
def get_profile(user: AuthenticatedUser = Depends(get_current_user), db: Database = Depends(get_database)):
    with db.session() as session:
        row = get_user(session, user.user_id)
    if row is None:
        raise NotFoundError("User not found")
    return {"user": UserPublic.from_row(row).to_api()}


@router.patch("")
def update_profile(
    payload: ProfileRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    with db.session() as session:
        row = rename_user(session, user.user_id, payload.name)
    return {"message": "Profile updated successfully", "user": UserPublic.from_row(row).to_api()}


@router.post("/update-password")
@router.patch("/update-password")
def update_password(
    payload: UpdatePasswordRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    if payload.new_password != payload.confirm_password:
        raise ValidationError("Passwords do not match")
    with db.session() as session:
        set_password(session, user.user_id, payload.new_password)
    return {"message": "Password updated successfully"}


@router.post("/verify-password")
def verify_password(
    payload: VerifyPasswordRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    with db.session() as session:
        check_password(session, user.user_id, payload.current_password)
    return {"message": "Password verified successfully"}
