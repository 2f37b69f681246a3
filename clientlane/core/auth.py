"""
Session tokens and the authorization capability.

Issues and validates HS256 JWT session tokens and resolves the caller into an
AuthenticatedUser. Route handlers declare what they need through a single
dependency, e.g. ``Depends(require_freelancer)``, instead of inspecting roles
themselves.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

import jwt
from fastapi import Depends, Request
from sqlalchemy import select

from clientlane.core.config import settings
from clientlane.core.database import Database, as_utc, get_database, users
from clientlane.core.errors import PermissionError, UnauthenticatedError
from clientlane.features.users.service import touch_last_seen
from clientlane.models.user import Role

logger = logging.getLogger("clientlane")

# Requests closer together than this do not rewrite last_seen_at
LAST_SEEN_RESOLUTION = timedelta(minutes=1)


@dataclass(frozen=True)
class AuthenticatedUser:
    """The verified caller. Only ever built from a valid token and an existing user row."""
    user_id: str
    email: str
    name: str
    role: Role

    @property
    def is_freelancer(self) -> bool:
        return self.role == Role.FREELANCER


def create_session_token(
    user_id: str,
    email: str,
    role: Role,
    *,
    name: Optional[str] = None,
    now: Optional[datetime] = None,
    ttl: Optional[timedelta] = None,
) -> str:
    """
    Issue a signed session token.

    Args:
        user_id: Subject (``sub`` claim)
        email: User email
        role: User role, informational only (the database row is authoritative)
        now: Issue time (defaults to current UTC time)
        ttl: Lifetime (defaults to SESSION_TTL_DAYS)

    Returns:
        Encoded JWT string
    """
    issued = now or datetime.now(timezone.utc)
    lifetime = ttl or timedelta(days=settings.SESSION_TTL_DAYS)
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "role": Role(role).value,
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
        "jti": str(uuid4()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_session_token(token: str) -> str:
    """
    Verify a session token and extract the user id.

    Raises:
        UnauthenticatedError: Invalid, expired or subject-less token
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Session expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthenticatedError("Invalid session token")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthenticatedError("Invalid session token")
    return user_id


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def get_current_user(request: Request, db: Database = Depends(get_database)) -> AuthenticatedUser:
    """
    Resolve the caller from the ``Authorization: Bearer`` header.

    The token names the user; role and existence come from the database so
    a deleted user or changed role takes effect immediately. Each
    authenticated request also refreshes the user's last_seen_at.

    Raises:
        UnauthenticatedError 401: Missing/invalid token or unknown user
    """
    token = _bearer_token(request)
    if not token:
        raise UnauthenticatedError("Missing Authorization (Bearer token) header")

    user_id = decode_session_token(token)
    now = datetime.now(timezone.utc)
    with db.session() as session:
        row = session.execute(
            select(users.c.id, users.c.email, users.c.name, users.c.role, users.c.last_seen_at)
            .where(users.c.id == user_id)
        ).first()
        if row is not None and (
            row.last_seen_at is None or as_utc(row.last_seen_at) <= now - LAST_SEEN_RESOLUTION
        ):
            touch_last_seen(session, row.id, now)

    if row is None:
        raise UnauthenticatedError("Session user no longer exists")

    user = AuthenticatedUser(user_id=row.id, email=row.email, name=row.name, role=Role(row.role))
    request.state.user_id = user.user_id
    return user


def require_role(*roles: Role) -> Callable[..., AuthenticatedUser]:
    """
    Build a dependency that admits only the given roles.

    Usage:
        @router.post("/portals")
        def create(user: AuthenticatedUser = Depends(require_freelancer)): ...
    """
    allowed = frozenset(roles)
    label = " or ".join(sorted(role.value for role in allowed))

    def dependency(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        if user.role not in allowed:
            raise PermissionError(f"This action requires a {label} account")
        return user

    dependency.__name__ = f"require_{'_or_'.join(sorted(role.value for role in allowed))}"
    return dependency


require_freelancer = require_role(Role.FREELANCER)
require_client = require_role(Role.CLIENT)
