"""
Portal service.

Handles:
- Portal creation inside an admission transaction (plan limit checked
  against the same snapshot the insert commits to)
- Listing and detail views for freelancers and their clients
- Updates and deletion by the creator
- The welcome email carrying the client's magic link
"""

import html
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, insert, update, delete, func
from sqlalchemy.orm import Session

from clientlane.core.config import settings
from clientlane.core.database import (
    Database,
    activities,
    as_utc,
    files,
    new_id,
    notifications,
    portals,
    shared_links,
    updates,
    users,
    utc_now,
)
from clientlane.core.errors import QuotaExceededError, ValidationError
from clientlane.features.activities.service import record_activity
from clientlane.features.mailer.service import EmailMessage, Mailer, deliver
from clientlane.features.notifications.service import notify_portal_members
from clientlane.features.portals.access import get_accessible_portal, get_owned_portal
from clientlane.features.usage.service import can_create_portal, lock_account
from clientlane.features.users.service import find_or_create_client
from clientlane.models.activity import ActivityType
from clientlane.models.portal import (
    Portal,
    PortalClient,
    PortalDetail,
    PortalStatus,
    SharedLink,
    portal_initials,
)
from clientlane.models.user import Role

logger = logging.getLogger("clientlane")


def new_link_token() -> str:
    return secrets.token_urlsafe(32)


def magic_link_url(token: str) -> str:
    return f"{settings.APP_BASE_URL.rstrip('/')}/magic-link?token={token}"


def create_shared_link(session: Session, portal_id: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Insert a shared link valid for MAGIC_LINK_TTL_HOURS."""
    now = now or utc_now()
    link = {
        "id": new_id(),
        "portal_id": portal_id,
        "token": new_link_token(),
        "is_revoked": False,
        "expires_at": now + timedelta(hours=settings.MAGIC_LINK_TTL_HOURS),
        "created_at": now,
    }
    session.execute(insert(shared_links).values(**link))
    return link


def _welcome_email(
    *,
    client_email: str,
    client_name: str,
    freelancer_name: str,
    portal_name: str,
    link_url: str,
    welcome_note: Optional[str],
    initial_password: Optional[str],
) -> EmailMessage:
    parts = [
        f"<p>Hi {html.escape(client_name)},</p>",
        f"<p>{html.escape(freelancer_name)} has invited you to the portal "
        f"<strong>{html.escape(portal_name)}</strong>.</p>",
    ]
    if welcome_note:
        parts.append(f"<blockquote>{html.escape(welcome_note)}</blockquote>")
    parts.append(f'<p><a href="{html.escape(link_url)}">Open your portal</a></p>')
    if initial_password:
        parts.append(f"<p>Your temporary password is <code>{html.escape(initial_password)}</code>.</p>")
    return EmailMessage(
        to=client_email,
        subject=f"You've been invited to {portal_name}",
        html="\n".join(parts),
    )


def _portal_from_row(row) -> Portal:
    return Portal(
        id=row.id,
        name=row.name,
        description=row.description or "",
        status=row.status,
        created_by=row.created_by,
        client_id=row.client_id,
        client_name=getattr(row, "client_name", None) or "",
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def create_portal(
    db: Database,
    mailer: Mailer,
    user_id: str,
    *,
    name: str,
    client_email: str,
    client_name: str,
    description: str = "",
    status: PortalStatus = PortalStatus.ACTIVE,
    welcome_note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PortalDetail:
    """
    Create a client portal for a freelancer.

    The limit check, client lookup, portal insert, shared link and
    activity all commit together at the admission isolation level; two
    concurrent creations cannot both pass the check on the same count.
    The welcome email goes out only after the commit.

    Raises:
        QuotaExceededError: The plan's client limit denies another portal
        ValidationError: ``client_email`` belongs to a freelancer account
    """
    now = now or utc_now()

    with db.session(isolation_level=db.admission_isolation) as session:
        lock_account(session, user_id)
        decision = can_create_portal(session, user_id, now=now)
        if not decision.allowed:
            raise QuotaExceededError(
                decision.reason or "Plan limit reached",
                details={
                    "upgradeRequired": decision.upgrade_required,
                    "currentUsage": decision.current_usage,
                    "limit": decision.limit,
                },
            )

        client, initial_password = find_or_create_client(session, client_email, client_name)
        if client.role != Role.CLIENT.value:
            raise ValidationError("Client email belongs to a freelancer account")

        portal_id = new_id()
        session.execute(
            insert(portals).values(
                id=portal_id,
                name=name.strip(),
                description=description or "",
                status=PortalStatus(status).value,
                created_by=user_id,
                client_id=client.id,
                created_at=now,
                updated_at=now,
            )
        )
        link = create_shared_link(session, portal_id, now=now)
        record_activity(
            session,
            portal_id,
            user_id,
            ActivityType.PORTAL_CREATED,
            {"portalName": name.strip(), "clientEmail": client.email},
            now=now,
        )
        freelancer_name = session.execute(
            select(users.c.name).where(users.c.id == user_id)
        ).scalar_one()

    logger.info(
        "[portals] portal created",
        extra={"user_id": user_id, "portal_id": portal_id, "client_id": client.id},
    )

    deliver(
        mailer,
        _welcome_email(
            client_email=client.email,
            client_name=client.name,
            freelancer_name=freelancer_name,
            portal_name=name.strip(),
            link_url=magic_link_url(link["token"]),
            welcome_note=welcome_note,
            initial_password=initial_password,
        ),
    )
    return get_portal(db, user_id, portal_id)


def list_portals(
    db: Database,
    user_id: str,
    role: Role,
    *,
    page: int = 1,
    limit: int = 20,
    status: Optional[PortalStatus] = None,
) -> Dict[str, Any]:
    """Freelancers see portals they created; clients see portals assigned to them."""
    offset = (page - 1) * limit
    if Role(role) == Role.FREELANCER:
        conditions = [portals.c.created_by == user_id]
    else:
        conditions = [portals.c.client_id == user_id]
    if status is not None:
        conditions.append(portals.c.status == PortalStatus(status).value)

    with db.session() as session:
        total = session.execute(
            select(func.count()).select_from(portals).where(*conditions)
        ).scalar_one()
        rows = session.execute(
            select(portals, users.c.name.label("client_name"))
            .outerjoin(users, users.c.id == portals.c.client_id)
            .where(*conditions)
            .order_by(portals.c.updated_at.desc())
            .offset(offset)
            .limit(limit)
        ).all()

    items: List[Portal] = [_portal_from_row(row) for row in rows]
    return {
        "portals": [item.to_api() for item in items],
        "total": total,
        "page": page,
        "limit": limit,
        "hasMore": offset + len(items) < total,
    }


def _portal_detail(session: Session, row) -> PortalDetail:
    client = None
    if row.client_id:
        client_row = session.execute(
            select(users.c.id, users.c.name, users.c.email).where(users.c.id == row.client_id)
        ).first()
        if client_row:
            client = PortalClient(id=client_row.id, name=client_row.name, email=client_row.email)

    link_rows = session.execute(
        select(shared_links)
        .where(shared_links.c.portal_id == row.id)
        .order_by(shared_links.c.created_at.desc())
    ).all()

    fields = _portal_from_row(row).model_dump()
    fields["client_name"] = client.name if client else ""
    return PortalDetail(
        **fields,
        client=client,
        shared_links=[
            SharedLink(
                id=link.id,
                token=link.token,
                is_revoked=bool(link.is_revoked),
                expires_at=as_utc(link.expires_at),
                last_viewed_at=as_utc(link.last_viewed_at),
                created_at=as_utc(link.created_at),
            )
            for link in link_rows
        ],
        initials=portal_initials(row.name),
    )


def get_portal(db: Database, user_id: str, portal_id: str) -> PortalDetail:
    """
    Raises:
        NotFoundError: Portal missing or not visible to the caller
    """
    with db.session() as session:
        row = get_accessible_portal(session, portal_id, user_id)
        return _portal_detail(session, row)


def update_portal(
    db: Database,
    user_id: str,
    portal_id: str,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[PortalStatus] = None,
    now: Optional[datetime] = None,
) -> PortalDetail:
    now = now or utc_now()
    values: Dict[str, Any] = {}
    if name is not None:
        values["name"] = name.strip()
    if description is not None:
        values["description"] = description
    if status is not None:
        values["status"] = PortalStatus(status).value
    if not values:
        raise ValidationError("No portal fields to update")
    values["updated_at"] = now

    with db.session() as session:
        current = get_owned_portal(session, portal_id, user_id)
        session.execute(update(portals).where(portals.c.id == portal_id).values(**values))
        changes = sorted(key for key in values if key != "updated_at")
        meta = {"portalName": values.get("name", current.name), "changes": changes}
        record_activity(session, portal_id, user_id, ActivityType.PORTAL_UPDATED, meta, now=now)
        notify_portal_members(session, portal_id, user_id, ActivityType.PORTAL_UPDATED, meta, now=now)

    logger.info("[portals] portal updated", extra={"user_id": user_id, "portal_id": portal_id})
    return get_portal(db, user_id, portal_id)


def delete_portal(db: Database, user_id: str, portal_id: str) -> None:
    """Delete a portal and every row that references it. Creator only."""
    with db.session() as session:
        get_owned_portal(session, portal_id, user_id)
        for table in (notifications, activities, files, updates, shared_links):
            session.execute(delete(table).where(table.c.portal_id == portal_id))
        session.execute(delete(portals).where(portals.c.id == portal_id))

    logger.info("[portals] portal deleted", extra={"user_id": user_id, "portal_id": portal_id})

