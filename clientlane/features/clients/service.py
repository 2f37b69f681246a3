"""
Client directory for freelancers.

A freelancer's clients are the client users assigned to any portal the
freelancer created. Also re-sends a client's invitation with fresh access.
"""

import html
import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import select, update, func, or_

from clientlane.core.database import Database, activities, as_utc, portals, shared_links, users, utc_now
from clientlane.core.errors import NotFoundError
from clientlane.features.activities.service import record_activity
from clientlane.features.mailer.service import EmailMessage, Mailer, deliver
from clientlane.features.portals.service import create_shared_link, magic_link_url
from clientlane.features.users.service import generate_password, set_password
from clientlane.models.activity import ActivityType
from clientlane.models.user import Role

logger = logging.getLogger("clientlane")

ACTIVE_WINDOW = timedelta(days=30)


class ClientStatus(str, Enum):
    ALL = "all"
    INVITED = "invited"
    ACTIVE = "active"
    INACTIVE = "inactive"


def client_status(
    last_seen_at: Optional[datetime],
    now: datetime,
    latest_activity: Optional[datetime] = None,
) -> ClientStatus:
    """
    invited: never signed in and no portal activity; active: last seen (or,
    when never seen, last active in a portal) within 30 days; inactive otherwise.
    """
    last_active = last_seen_at or latest_activity
    if last_active is None:
        return ClientStatus.INVITED
    if as_utc(last_active) >= now - ACTIVE_WINDOW:
        return ClientStatus.ACTIVE
    return ClientStatus.INACTIVE


def _latest_activity(freelancer_id: str):
    """Most recent activity per user across the freelancer's portals."""
    return (
        select(
            activities.c.user_id.label("user_id"),
            func.max(activities.c.created_at).label("latest_activity"),
        )
        .join(portals, portals.c.id == activities.c.portal_id)
        .where(portals.c.created_by == freelancer_id)
        .group_by(activities.c.user_id)
        .subquery()
    )


def list_clients(
    db: Database,
    user_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    status: ClientStatus = ClientStatus.ALL,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utc_now()
    offset = (page - 1) * limit
    cutoff = now - ACTIVE_WINDOW

    latest = _latest_activity(user_id)
    last_active = func.coalesce(users.c.last_seen_at, latest.c.latest_activity)

    conditions = [portals.c.created_by == user_id, users.c.role == Role.CLIENT.value]
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(or_(users.c.name.ilike(pattern), users.c.email.ilike(pattern)))

    status = ClientStatus(status)
    if status == ClientStatus.INVITED:
        conditions.append(last_active.is_(None))
    elif status == ClientStatus.ACTIVE:
        conditions.append(last_active >= cutoff)
    elif status == ClientStatus.INACTIVE:
        conditions.append(last_active < cutoff)

    grouped = (
        select(
            users.c.id,
            users.c.name,
            users.c.email,
            users.c.last_seen_at,
            users.c.created_at,
            latest.c.latest_activity,
            func.count(portals.c.id).label("portal_count"),
        )
        .join(portals, portals.c.client_id == users.c.id)
        .outerjoin(latest, latest.c.user_id == users.c.id)
        .where(*conditions)
        .group_by(
            users.c.id,
            users.c.name,
            users.c.email,
            users.c.last_seen_at,
            users.c.created_at,
            latest.c.latest_activity,
        )
    )

    with db.session() as session:
        total = session.execute(select(func.count()).select_from(grouped.subquery())).scalar_one()
        rows = session.execute(
            grouped.order_by(users.c.name.asc()).offset(offset).limit(limit)
        ).all()

    clients = []
    for row in rows:
        seen = as_utc(row.last_seen_at)
        active = seen or as_utc(row.latest_activity)
        clients.append(
            {
                "id": row.id,
                "name": row.name,
                "email": row.email,
                "status": client_status(row.last_seen_at, now, row.latest_activity).value,
                "lastSeenAt": seen.isoformat() if seen else None,
                "lastActive": active.isoformat() if active else None,
                "createdAt": as_utc(row.created_at).isoformat(),
                "portalCount": row.portal_count,
            }
        )

    return {
        "clients": clients,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }


INVITE_RESENT = "Fresh invitation sent successfully with updated access"
INVITE_SENT = "Invitation sent successfully"


def _invite_email(
    *,
    client_email: str,
    client_name: str,
    freelancer_name: str,
    portal_name: str,
    link_url: str,
    password: str,
    fresh: bool,
) -> EmailMessage:
    if fresh:
        subject = f"Updated invitation: Access your {freelancer_name} client portal"
        intro = (
            f"<p>{html.escape(freelancer_name)} has sent you a fresh invitation to "
            f"<strong>{html.escape(portal_name)}</strong>. Your previous access has been reset.</p>"
        )
    else:
        subject = f"Invitation to join {freelancer_name}'s client portal"
        intro = (
            f"<p>{html.escape(freelancer_name)} has invited you to "
            f"<strong>{html.escape(portal_name)}</strong>.</p>"
        )
    parts = [
        f"<p>Hi {html.escape(client_name)},</p>",
        intro,
        f'<p><a href="{html.escape(link_url)}">Open your portal</a></p>',
        f"<p>Your temporary password is <code>{html.escape(password)}</code>.</p>",
    ]
    return EmailMessage(to=client_email, subject=subject, html="\n".join(parts))


def resend_invite(
    db: Database,
    mailer: Mailer,
    user_id: str,
    client_id: str,
    *,
    now: Optional[datetime] = None,
) -> str:
    """
    Send a client a new way in to the freelancer's most recent portal for them.

    Earlier shared links on that portal are revoked, a new link is issued
    and the client's password is replaced with a new temporary one. The
    email goes out after commit.

    Returns:
        The confirmation message for the caller

    Raises:
        NotFoundError: No client with that id on any of the caller's portals
    """
    now = now or utc_now()
    with db.session() as session:
        target = session.execute(
            select(
                users.c.id,
                users.c.name,
                users.c.email,
                users.c.password_hash,
                portals.c.id.label("portal_id"),
                portals.c.name.label("portal_name"),
            )
            .join(portals, portals.c.client_id == users.c.id)
            .where(users.c.id == client_id)
            .where(users.c.role == Role.CLIENT.value)
            .where(portals.c.created_by == user_id)
            .order_by(portals.c.created_at.desc())
            .limit(1)
        ).first()
        if target is None:
            raise NotFoundError("Client not found or you don't have permission to access this client")

        fresh = target.password_hash is not None
        password = generate_password(12)
        set_password(session, target.id, password, now)
        session.execute(
            update(shared_links)
            .where(shared_links.c.portal_id == target.portal_id)
            .where(shared_links.c.is_revoked.is_(False))
            .values(is_revoked=True)
        )
        link = create_shared_link(session, target.portal_id, now=now)
        record_activity(
            session,
            target.portal_id,
            user_id,
            ActivityType.SHARED_LINK_CREATED,
            {"clientEmail": target.email, "reason": "invite_resent"},
            now=now,
        )
        freelancer_name = session.execute(select(users.c.name).where(users.c.id == user_id)).scalar_one()

    logger.info(
        "[clients] invitation resent",
        extra={"user_id": user_id, "client_id": target.id, "portal_id": target.portal_id},
    )
    deliver(
        mailer,
        _invite_email(
            client_email=target.email,
            client_name=target.name,
            freelancer_name=freelancer_name,
            portal_name=target.portal_name,
            link_url=magic_link_url(link["token"]),
            password=password,
            fresh=fresh,
        ),
    )
    return INVITE_RESENT if fresh else INVITE_SENT
