"""
User domain service.
- hash_password / verify_password / generate_password
- get_user / get_user_by_email
- find_or_create_client(session, email, name)
- touch_last_seen(session, user_id)
- rename_user / set_password / check_password
"""

import secrets
import string
from datetime import datetime, timezone
from typing import Optional, Tuple

import bcrypt
from sqlalchemy import select, insert, update
from sqlalchemy.engine import Row
from sqlalchemy.orm import Session

from clientlane.core.database import new_id, users, utc_now
from clientlane.core.errors import NotFoundError, UnauthenticatedError
from clientlane.models.user import Role

BCRYPT_ROUNDS = 10
_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long password
        return False


def generate_password(length: int = 12) -> str:
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user(session: Session, user_id: str) -> Optional[Row]:
    return session.execute(select(users).where(users.c.id == user_id)).first()


def get_user_by_email(session: Session, email: str) -> Optional[Row]:
    return session.execute(select(users).where(users.c.email == normalize_email(email))).first()


def create_user(
    session: Session,
    *,
    email: str,
    name: str,
    role: Role,
    password: Optional[str] = None,
    password_hash: Optional[str] = None,
) -> str:
    user_id = new_id()
    session.execute(
        insert(users).values(
            id=user_id,
            email=normalize_email(email),
            name=name.strip(),
            role=Role(role).value,
            password_hash=password_hash if password_hash is not None else (hash_password(password) if password else None),
            email_verified=False,
        )
    )
    return user_id


def find_or_create_client(session: Session, email: str, name: str) -> Tuple[Row, Optional[str]]:
    """
    Return the user for ``email``, creating a client account if needed.

    Returns:
        (user row, initial plain-text password or None for existing users)
    """
    existing = get_user_by_email(session, email)
    if existing:
        return existing, None

    initial_password = generate_password(12)
    user_id = create_user(session, email=email, name=name, role=Role.CLIENT, password=initial_password)
    return get_user(session, user_id), initial_password


def touch_last_seen(session: Session, user_id: str, now: Optional[datetime] = None) -> None:
    session.execute(
        update(users)
        .where(users.c.id == user_id)
        .values(last_seen_at=now or datetime.now(timezone.utc))
    )


def rename_user(session: Session, user_id: str, name: str, now: Optional[datetime] = None) -> Row:
    session.execute(
        update(users).where(users.c.id == user_id).values(name=name.strip(), updated_at=now or utc_now())
    )
    row = get_user(session, user_id)
    if row is None:
        raise NotFoundError("User not found")
    return row


def set_password(session: Session, user_id: str, password: str, now: Optional[datetime] = None) -> None:
    session.execute(
        update(users)
        .where(users.c.id == user_id)
        .values(password_hash=hash_password(password), updated_at=now or utc_now())
    )


def check_password(session: Session, user_id: str, password: str) -> None:
    """
    Confirm ``password`` belongs to the user.

    Raises:
        UnauthenticatedError: Wrong password, or the account has none
    """
    password_hash = session.execute(
        select(users.c.password_hash).where(users.c.id == user_id)
    ).scalar_one_or_none()
    if not verify_password(password, password_hash):
        raise UnauthenticatedError("Current password is incorrect")
