"""Portal visibility rules shared by every portal-scoped feature."""

from sqlalchemy import select, or_
from sqlalchemy.engine import Row
from sqlalchemy.orm import Session

from clientlane.core.errors import NotFoundError
from clientlane.core.database import portals


def get_accessible_portal(session: Session, portal_id: str, user_id: str) -> Row:
    """
    Fetch a portal the user created or is the client of.

    A portal the caller cannot see is reported exactly like a missing one.

    Raises:
        NotFoundError: Portal missing or not visible to ``user_id``
    """
    row = session.execute(
        select(portals)
        .where(portals.c.id == portal_id)
        .where(or_(portals.c.created_by == user_id, portals.c.client_id == user_id))
    ).first()
    if row is None:
        raise NotFoundError("Portal not found or access denied")
    return row


def get_owned_portal(session: Session, portal_id: str, user_id: str) -> Row:
    """
    Fetch a portal created by ``user_id``.

    Raises:
        NotFoundError: Portal missing or owned by someone else
    """
    row = session.execute(
        select(portals)
        .where(portals.c.id == portal_id)
        .where(portals.c.created_by == user_id)
    ).first()
    if row is None:
        raise NotFoundError("Portal not found")
    return row
