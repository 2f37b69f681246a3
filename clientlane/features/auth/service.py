"""
Authentication flows.

Handles:
- Registration and password login
- Email one-time codes (send / verify)
- Magic-link sign-in for clients via a portal's shared link
- Password reset tokens
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, insert, update, delete
from sqlalchemy.exc import IntegrityError

from clientlane.core.auth import create_session_token
from clientlane.core.config import settings
from clientlane.core.database import (
    Database,
    as_utc,
    new_id,
    otps,
    password_reset_tokens,
    portals,
    shared_links,
    users,
    utc_now,
)
from clientlane.core.errors import ConflictError, UnauthenticatedError, ValidationError
from clientlane.features.mailer.service import EmailMessage, Mailer, deliver
from clientlane.features.users.service import (
    create_user,
    get_user,
    get_user_by_email,
    hash_password,
    normalize_email,
    verify_password,
)
from clientlane.models.user import Role, UserPublic

logger = logging.getLogger("clientlane")

OTP_INCORRECT = "The provided OTP is incorrect. Please try again."
OTP_EXPIRED = "The provided OTP has expired. Please request a new one."
OTP_LOCKED = "Too many incorrect attempts. Please request a new code."
INVALID_CREDENTIALS = "Invalid email or password"
INVALID_MAGIC_LINK = "Invalid or expired link"


def generate_otp() -> str:
    """Six-digit numeric code, zero-padded."""
    return f"{secrets.randbelow(1_000_000):06d}"


def _session_payload(row, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    token = create_session_token(row.id, row.email, Role(row.role), name=row.name, now=now)
    return {"token": token, "user": UserPublic.from_row(row).to_api()}


def register(
    db: Database,
    *,
    name: str,
    email: str,
    password: str,
    role: Role,
) -> str:
    """
    Create an account.

    Raises:
        ConflictError: Email already registered
    """
    email = normalize_email(email)
    try:
        with db.session() as session:
            if get_user_by_email(session, email) is not None:
                raise ConflictError("User already exists")
            user_id = create_user(session, email=email, name=name, role=role, password=password)
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        raise ConflictError("User already exists")

    logger.info("[auth] user registered", extra={"user_id": user_id, "role": Role(role).value})
    return user_id


def login(db: Database, *, email: str, password: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Raises:
        UnauthenticatedError: Unknown email or wrong password
    """
    with db.session() as session:
        row = get_user_by_email(session, email)
        if row is None or not verify_password(password, row.password_hash):
            raise UnauthenticatedError(INVALID_CREDENTIALS)
        session.execute(update(users).where(users.c.id == row.id).values(last_seen_at=now or utc_now()))

    logger.info("[auth] login", extra={"user_id": row.id})
    return _session_payload(row, now=now)


def send_otp(db: Database, mailer: Mailer, *, email: str, now: Optional[datetime] = None) -> None:
    """Replace any previous code for ``email`` with a fresh one and email it."""
    email = normalize_email(email)
    now = now or utc_now()
    code = generate_otp()

    with db.session() as session:
        session.execute(delete(otps).where(otps.c.email == email))
        session.execute(
            insert(otps).values(
                id=new_id(),
                email=email,
                code=code,
                expires_at=now + timedelta(minutes=settings.OTP_TTL_MINUTES),
                created_at=now,
            )
        )

    deliver(
        mailer,
        EmailMessage(
            to=email,
            subject="Your verification code",
            html=(
                f"<p>Your verification code is <strong>{code}</strong>.</p>"
                f"<p>It expires in {settings.OTP_TTL_MINUTES} minutes.</p>"
            ),
        ),
    )


def verify_otp(db: Database, *, email: str, otp: str, now: Optional[datetime] = None) -> None:
    """
    Consume a one-time code and mark the email verified.

    A code survives OTP_MAX_ATTEMPTS wrong guesses; the last one deletes it
    and the user has to request a new code.

    Raises:
        UnauthenticatedError: Missing, mismatched, exhausted or expired code
    """
    email = normalize_email(email)
    now = now or utc_now()
    failure = None

    # Failed attempts must commit, so errors are raised after the session closes
    with db.session() as session:
        row = session.execute(select(otps).where(otps.c.email == email)).first()
        if row is None:
            failure = OTP_INCORRECT
        elif not secrets.compare_digest(row.code, otp.strip()):
            attempts = row.attempts + 1
            if attempts >= settings.OTP_MAX_ATTEMPTS:
                session.execute(delete(otps).where(otps.c.id == row.id))
                failure = OTP_LOCKED
                logger.warning("OTP locked after failed attempts", extra={"attempts": attempts})
            else:
                session.execute(update(otps).where(otps.c.id == row.id).values(attempts=attempts))
                failure = OTP_INCORRECT
        else:
            session.execute(delete(otps).where(otps.c.id == row.id))
            if as_utc(row.expires_at) <= now:
                failure = OTP_EXPIRED
            else:
                session.execute(
                    update(users).where(users.c.email == email).values(email_verified=True, updated_at=now)
                )

    if failure is not None:
        raise UnauthenticatedError(failure)


def magic_link_login(db: Database, *, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Exchange a portal's shared-link token for a client session.

    Raises:
        UnauthenticatedError: Revoked, expired or unknown link, or the
            portal has no client account behind it
    """
    now = now or utc_now()
    with db.session() as session:
        link = session.execute(
            select(shared_links.c.id, shared_links.c.expires_at, portals.c.client_id)
            .join(portals, portals.c.id == shared_links.c.portal_id)
            .where(shared_links.c.token == token)
            .where(shared_links.c.is_revoked.is_(False))
        ).first()
        if link is None or as_utc(link.expires_at) <= now or link.client_id is None:
            raise UnauthenticatedError(INVALID_MAGIC_LINK)

        client = get_user(session, link.client_id)
        if client is None or client.role != Role.CLIENT.value:
            raise UnauthenticatedError(INVALID_MAGIC_LINK)

        session.execute(update(shared_links).where(shared_links.c.id == link.id).values(last_viewed_at=now))
        session.execute(
            update(users)
            .where(users.c.id == client.id)
            .values(email_verified=True, last_seen_at=now, updated_at=now)
        )
        client = get_user(session, client.id)

    logger.info("[auth] magic link sign-in", extra={"user_id": client.id})
    return _session_payload(client, now=now)


def forgot_password(db: Database, mailer: Mailer, *, email: str, now: Optional[datetime] = None) -> None:
    """Issue a reset token when the account exists. Silent either way."""
    now = now or utc_now()
    token = secrets.token_urlsafe(32)

    with db.session() as session:
        row = get_user_by_email(session, email)
        if row is None:
            logger.info("[auth] password reset requested for unknown email")
            return
        session.execute(
            insert(password_reset_tokens).values(
                id=new_id(),
                user_id=row.id,
                token=token,
                expires_at=now + timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES),
                created_at=now,
            )
        )

    reset_url = f"{settings.APP_BASE_URL.rstrip('/')}/reset-password?token={token}"
    deliver(
        mailer,
        EmailMessage(
            to=row.email,
            subject="Reset your password",
            html=(
                f'<p><a href="{reset_url}">Choose a new password</a></p>'
                f"<p>This link expires in {settings.PASSWORD_RESET_TTL_MINUTES} minutes.</p>"
            ),
        ),
    )


def reset_password(db: Database, *, token: str, password: str, now: Optional[datetime] = None) -> None:
    """
    Raises:
        ValidationError: Unknown, used or expired token
    """
    now = now or utc_now()
    with db.session() as session:
        row = session.execute(
            select(password_reset_tokens).where(password_reset_tokens.c.token == token)
        ).first()
        if row is None or row.used_at is not None or as_utc(row.expires_at) <= now:
            raise ValidationError("Invalid or expired reset token")

        session.execute(
            update(users)
            .where(users.c.id == row.user_id)
            .values(password_hash=hash_password(password), updated_at=now)
        )
        session.execute(
            update(password_reset_tokens)
            .where(password_reset_tokens.c.id == row.id)
            .values(used_at=now)
        )

    logger.info("[auth] password reset", extra={"user_id": row.user_id})
