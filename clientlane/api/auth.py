"""
Auth API routes.

- POST /api/auth/register
- POST /api/auth/login
- POST /api/auth/send-otp
- POST /api/auth/verify-otp
- POST /api/auth/magic-link
- POST /api/auth/forgot-password
- POST /api/auth/reset-password
- GET  /api/auth/me
"""
from fastapi import APIRouter, Depends
from pydantic import EmailStr, Field

from clientlane.core.auth import AuthenticatedUser, get_current_user
from clientlane.core.database import Database, get_database
from clientlane.features.auth import service
from clientlane.features.mailer.service import Mailer, get_mailer
from clientlane.features.users.service import get_user
from clientlane.models.base import ApiModel
from clientlane.models.user import Role, UserPublic

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(ApiModel):
    name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    # bcrypt only reads the first 72 bytes
    password: str = Field(min_length=8, max_length=72)
    role: Role = Role.FREELANCER


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=72)


class EmailRequest(ApiModel):
    email: EmailStr


class VerifyOtpRequest(ApiModel):
    email: EmailStr
    otp: str = Field(pattern=r"^\d{6}$")


class MagicLinkRequest(ApiModel):
    token: str = Field(min_length=1)


class ResetPasswordRequest(ApiModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=8, max_length=72)


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_database)):
    service.register(db, name=payload.name, email=payload.email, password=payload.password, role=payload.role)
    return {"message": "Registration successful"}


@router.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_database)):
    return service.login(db, email=payload.email, password=payload.password)


@router.post("/send-otp")
def send_otp(
    payload: EmailRequest,
    db: Database = Depends(get_database),
    mailer: Mailer = Depends(get_mailer),
):
    service.send_otp(db, mailer, email=payload.email)
    return {"message": "OTP sent"}


@router.post("/verify-otp")
def verify_otp(payload: VerifyOtpRequest, db: Database = Depends(get_database)):
    service.verify_otp(db, email=payload.email, otp=payload.otp)
    return {"message": "OTP verified successfully"}


@router.post("/magic-link")
def magic_link(payload: MagicLinkRequest, db: Database = Depends(get_database)):
    return service.magic_link_login(db, token=payload.token)


@router.post("/forgot-password")
def forgot_password(
    payload: EmailRequest,
    db: Database = Depends(get_database),
    mailer: Mailer = Depends(get_mailer),
):
    service.forgot_password(db, mailer, email=payload.email)
    return {"message": "If an account exists for that email, a reset link has been sent"}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Database = Depends(get_database)):
    service.reset_password(db, token=payload.token, password=payload.password)
    return {"message": "Password updated"}


@router.get("/me")
def me(user: AuthenticatedUser = Depends(get_current_user), db: Database = Depends(get_database)):
    with db.session() as session:
        row = get_user(session, user.user_id)
    return {"user": UserPublic.from_row(row).to_api()}
