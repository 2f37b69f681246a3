"""
Tests for the freelancer's client directory.
"""
import html
import re
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from clientlane.core.database import shared_links, users
from clientlane.features.activities.service import record_activity
from clientlane.features.clients.service import ClientStatus, client_status, list_clients
from clientlane.features.portals.service import create_shared_link
from clientlane.models.activity import ActivityType
from clientlane.models.user import Role

TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture
def roster(db, freelancer, make_user, make_portal, now):
    """Three clients: never signed in, seen yesterday, seen two months ago."""
    invited = make_user("invited@acme.co", Role.CLIENT, name="Ivy Invited")
    active = make_user("active@globex.co", Role.CLIENT, name="Ada Active")
    dormant = make_user("dormant@initech.co", Role.CLIENT, name="Dan Dormant")
    for person in (invited, active, dormant):
        make_portal(freelancer["id"], person["id"])
    make_portal(freelancer["id"], active["id"], name="Second project")

    with db.session() as session:
        session.execute(update(users).where(users.c.id == active["id"]).values(last_seen_at=now - timedelta(days=1)))
        session.execute(update(users).where(users.c.id == dormant["id"]).values(last_seen_at=now - timedelta(days=60)))
    return {"invited": invited, "active": active, "dormant": dormant}


def test_client_status_rules(now):
    assert client_status(None, now) == ClientStatus.INVITED
    assert client_status(now - timedelta(days=30), now) == ClientStatus.ACTIVE
    assert client_status(now - timedelta(days=31), now) == ClientStatus.INACTIVE


def test_list_clients_reports_status_and_portal_count(db, freelancer, roster, now):
    result = list_clients(db, freelancer["id"], now=now)
    assert result["total"] == 3
    by_email = {item["email"]: item for item in result["clients"]}
    assert by_email["invited@acme.co"]["status"] == "invited"
    assert by_email["active@globex.co"]["status"] == "active"
    assert by_email["active@globex.co"]["portalCount"] == 2
    assert by_email["dormant@initech.co"]["status"] == "inactive"
    assert [item["name"] for item in result["clients"]] == ["Ada Active", "Dan Dormant", "Ivy Invited"]


@pytest.mark.parametrize(
    "status,expected",
    [
        (ClientStatus.INVITED, ["invited@acme.co"]),
        (ClientStatus.ACTIVE, ["active@globex.co"]),
        (ClientStatus.INACTIVE, ["dormant@initech.co"]),
    ],
)
def test_list_clients_status_filter(db, freelancer, roster, now, status, expected):
    result = list_clients(db, freelancer["id"], status=status, now=now)
    assert [item["email"] for item in result["clients"]] == expected


def test_clients_endpoint_search(client, freelancer, roster):
    resp = client.get("/api/clients", params={"search": "globex"}, headers=freelancer["headers"])
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    assert body["clients"][0]["name"] == "Ada Active"


def test_clients_endpoint_is_freelancer_only(client, roster):
    resp = client.get("/api/clients", headers=roster["active"]["headers"])
    assert resp.status_code == 403


def test_other_freelancers_clients_are_not_listed(db, make_user, roster, now):
    other = make_user("rival@studio.io")
    assert list_clients(db, other["id"], now=now)["total"] == 0


def test_client_status_falls_back_to_portal_activity(now):
    assert client_status(None, now, now - timedelta(days=2)) == ClientStatus.ACTIVE
    assert client_status(None, now, now - timedelta(days=45)) == ClientStatus.INACTIVE
    assert client_status(now - timedelta(days=45), now, now - timedelta(days=2)) == ClientStatus.INACTIVE


def test_recent_portal_activity_makes_unseen_client_active(db, freelancer, make_portal, roster, now):
    portal_id = make_portal(freelancer["id"], roster["invited"]["id"], name="Brand refresh")
    with db.session() as session:
        record_activity(
            session,
            portal_id,
            roster["invited"]["id"],
            ActivityType.FILE_UPLOADED,
            {"fileName": "brief.pdf"},
            now=now - timedelta(days=2),
        )

    active = list_clients(db, freelancer["id"], status=ClientStatus.ACTIVE, now=now)
    assert sorted(item["email"] for item in active["clients"]) == ["active@globex.co", "invited@acme.co"]
    assert list_clients(db, freelancer["id"], status=ClientStatus.INVITED, now=now)["total"] == 0

    listed = {item["email"]: item for item in list_clients(db, freelancer["id"], now=now)["clients"]}
    assert listed["invited@acme.co"]["status"] == "active"
    assert listed["invited@acme.co"]["lastSeenAt"] is None
    assert listed["invited@acme.co"]["lastActive"] is not None


def test_activity_in_another_freelancers_portal_is_ignored(db, make_user, make_portal, freelancer, roster, now):
    rival = make_user("rival@studio.io")
    rival_portal = make_portal(rival["id"], roster["invited"]["id"], name="Rival project")
    with db.session() as session:
        record_activity(
            session, rival_portal, roster["invited"]["id"], ActivityType.FILE_UPLOADED, now=now - timedelta(days=2)
        )

    listed = {item["email"]: item for item in list_clients(db, freelancer["id"], now=now)["clients"]}
    assert listed["invited@acme.co"]["status"] == "invited"


def test_signed_in_client_shows_as_active(client, freelancer, make_user, make_portal):
    acme = make_user("cli@acme.co", Role.CLIENT, name="Acme Ops")
    portal_id = make_portal(freelancer["id"], acme["id"])

    upload = client.post(
        "/api/files",
        json={
            "portalId": portal_id,
            "fileName": "brief.pdf",
            "fileUrl": "https://cdn.example.com/brief.pdf",
            "fileType": "application/pdf",
            "fileSize": 1024,
        },
        headers=acme["headers"],
    )
    assert upload.status_code == 201
    assert client.get("/api/files", params={"portalId": portal_id}, headers=acme["headers"]).status_code == 200

    body = client.get("/api/clients", headers=freelancer["headers"]).json()
    assert [(item["email"], item["status"]) for item in body["clients"]] == [("cli@acme.co", "active")]
    assert body["clients"][0]["lastSeenAt"] is not None


def test_authenticated_request_records_last_seen(client, db, freelancer):
    with db.session() as session:
        assert session.execute(select(users.c.last_seen_at).where(users.c.id == freelancer["id"])).scalar_one() is None

    assert client.get("/api/auth/me", headers=freelancer["headers"]).status_code == 200

    with db.session() as session:
        seen = session.execute(select(users.c.last_seen_at).where(users.c.id == freelancer["id"])).scalar_one()
    assert seen is not None


def _temporary_password(message):
    return html.unescape(re.search(r"<code>(.+?)</code>", message.html).group(1))


def test_resend_invite_resets_access(client, db, mailer, freelancer, make_user, make_portal):
    acme = make_user("ops@acme.co", Role.CLIENT, name="Acme <Ops>")
    portal_id = make_portal(freelancer["id"], acme["id"], name="Website Redesign")
    with db.session() as session:
        old_link = create_shared_link(session, portal_id)

    resp = client.post("/api/clients/resend-invite", json={"clientId": acme["id"]}, headers=freelancer["headers"])
    assert resp.status_code == 200
    assert resp.json()["message"] == "Fresh invitation sent successfully with updated access"

    message = mailer.last_to("ops@acme.co")
    assert "Acme &lt;Ops&gt;" in message.html
    assert "Website Redesign" in message.html
    password = _temporary_password(message)
    assert client.post("/api/auth/login", json={"email": "ops@acme.co", "password": password}).status_code == 200
    assert client.post("/api/auth/login", json={"email": "ops@acme.co", "password": TEST_PASSWORD}).status_code == 401

    with db.session() as session:
        links = session.execute(
            select(shared_links.c.token, shared_links.c.is_revoked).where(shared_links.c.portal_id == portal_id)
        ).all()
    live = [row.token for row in links if not row.is_revoked]
    assert old_link["token"] not in live
    assert len(live) == 1
    assert f"token={live[0]}" in message.html


def test_resend_invite_only_for_own_clients(client, mailer, freelancer, make_user, make_portal):
    rival = make_user("rival@studio.io")
    theirs = make_user("theirs@acme.co", Role.CLIENT)
    make_portal(rival["id"], theirs["id"])

    resp = client.post("/api/clients/resend-invite", json={"clientId": theirs["id"]}, headers=freelancer["headers"])
    assert resp.status_code == 404
    assert resp.json()["error"]["message"] == "Client not found or you don't have permission to access this client"
    assert mailer.sent == []


def test_resend_invite_is_freelancer_only(client, freelancer, make_user, make_portal):
    acme = make_user("ops@acme.co", Role.CLIENT)
    make_portal(freelancer["id"], acme["id"])
    resp = client.post("/api/clients/resend-invite", json={"clientId": acme["id"]}, headers=acme["headers"])
    assert resp.status_code == 403
