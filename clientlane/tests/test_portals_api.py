"""
End-to-end tests for portal creation, visibility and lifecycle.
"""
from sqlalchemy import select, func

from clientlane.core.database import activities, notifications, portals, shared_links, users
from clientlane.features.plans.service import PRO_PLAN_ID
from clientlane.models.user import Role


def _create(client, headers, **overrides):
    payload = {
        "name": "Website Redesign",
        "clientEmail": "ops@acme.co",
        "clientName": "Acme Ops",
        "description": "Marketing site refresh",
    }
    payload.update(overrides)
    return client.post("/api/portals", json=payload, headers=headers)


def test_create_portal_invites_new_client(client, db, freelancer, mailer):
    resp = _create(client, freelancer["headers"], welcomeNote="Looking forward to it!")
    assert resp.status_code == 201
    portal = resp.json()["portal"]
    assert portal["name"] == "Website Redesign"
    assert portal["createdBy"] == freelancer["id"]
    assert portal["client"]["email"] == "ops@acme.co"
    assert portal["initials"] == "WR"
    assert len(portal["sharedLinks"]) == 1

    with db.session() as session:
        client_row = session.execute(select(users).where(users.c.email == "ops@acme.co")).first()
        kinds = session.execute(
            select(activities.c.type).where(activities.c.portal_id == portal["id"])
        ).scalars().all()
    assert client_row.role == "client"
    assert client_row.password_hash
    assert kinds == ["portal_created"]

    email = mailer.last_to("ops@acme.co")
    assert "Website Redesign" in email.subject
    assert portal["sharedLinks"][0]["token"] in email.html
    assert "Looking forward to it!" in email.html
    assert "temporary password" in email.html


def test_welcome_email_escapes_user_supplied_text(client, freelancer, mailer):
    resp = _create(
        client,
        freelancer["headers"],
        name="Q3 <script>alert(1)</script>",
        clientName="Ops & Co",
        welcomeNote="<b>See you</b>",
    )
    assert resp.status_code == 201

    body = mailer.last_to("ops@acme.co").html
    assert "<script>" not in body
    assert "Q3 &lt;script&gt;alert(1)&lt;/script&gt;" in body
    assert "Ops &amp; Co" in body
    assert "&lt;b&gt;See you&lt;/b&gt;" in body


def test_existing_client_is_reused_without_new_password(client, db, freelancer, subscribe, make_user, mailer):
    subscribe(freelancer["id"], PRO_PLAN_ID)
    make_user("ops@acme.co", Role.CLIENT, name="Acme Ops")

    resp = _create(client, freelancer["headers"])
    assert resp.status_code == 201
    with db.session() as session:
        count = session.execute(
            select(func.count()).select_from(users).where(users.c.email == "ops@acme.co")
        ).scalar_one()
    assert count == 1
    assert "temporary password" not in mailer.last_to("ops@acme.co").html


def test_second_client_portal_on_free_plan_is_rejected(client, db, freelancer, mailer):
    assert _create(client, freelancer["headers"]).status_code == 201
    check = client.get("/api/plan-limits/check-portal-creation", headers=freelancer["headers"])
    assert check.json()["allowed"] is False

    resp = _create(client, freelancer["headers"], name="Brand Refresh", clientEmail="hello@globex.co")
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["code"] == "quota_exceeded"
    assert body["error"]["details"]["upgradeRequired"] is True
    assert body["error"]["details"]["limit"] == 1

    with db.session() as session:
        total = session.execute(select(func.count()).select_from(portals)).scalar_one()
        invited = session.execute(
            select(func.count()).select_from(users).where(users.c.email == "hello@globex.co")
        ).scalar_one()
    assert total == 1
    assert invited == 0
    assert [message.to for message in mailer.sent] == ["ops@acme.co"]


def test_clients_cannot_create_portals(client, make_user):
    acme = make_user("ops@acme.co", Role.CLIENT)
    resp = _create(client, acme["headers"], clientEmail="someone@globex.co")
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"


def test_freelancer_email_cannot_be_invited_as_client(client, freelancer, make_user):
    make_user("peer@studio.io", Role.FREELANCER)
    resp = _create(client, freelancer["headers"], clientEmail="peer@studio.io")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_unauthenticated_request_is_rejected(client):
    resp = client.get("/api/portals")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_list_and_get_respect_visibility(client, freelancer, make_user, make_portal):
    acme = make_user("ops@acme.co", Role.CLIENT)
    stranger = make_user("nosy@globex.co", Role.CLIENT)
    portal_id = make_portal(freelancer["id"], acme["id"], name="Website Redesign")

    owned = client.get("/api/portals", headers=freelancer["headers"]).json()
    assert [p["id"] for p in owned["portals"]] == [portal_id]
    assert owned["portals"][0]["clientName"] == "Test User"

    assigned = client.get("/api/portals", headers=acme["headers"]).json()
    assert assigned["total"] == 1

    assert client.get(f"/api/portals/{portal_id}", headers=acme["headers"]).status_code == 200
    hidden = client.get(f"/api/portals/{portal_id}", headers=stranger["headers"])
    assert hidden.status_code == 404
    assert hidden.json()["error"]["code"] == "not_found"


def test_list_filters_by_status(client, freelancer, subscribe):
    subscribe(freelancer["id"], PRO_PLAN_ID)
    _create(client, freelancer["headers"], status="pending")
    _create(client, freelancer["headers"], name="Brand Refresh", clientEmail="hello@globex.co")

    pending = client.get("/api/portals", params={"status": "pending"}, headers=freelancer["headers"]).json()
    assert pending["total"] == 1
    assert pending["portals"][0]["status"] == "pending"


def test_update_portal_notifies_client(client, db, freelancer, make_user, make_portal):
    acme = make_user("ops@acme.co", Role.CLIENT)
    portal_id = make_portal(freelancer["id"], acme["id"])

    resp = client.patch(
        f"/api/portals/{portal_id}",
        json={"name": "Website Relaunch", "status": "archived"},
        headers=freelancer["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["portal"]["status"] == "archived"

    with db.session() as session:
        rows = session.execute(select(notifications).where(notifications.c.user_id == acme["id"])).all()
    assert len(rows) == 1
    assert rows[0].type == "portal_updated"
    assert rows[0].message == 'Portal "Website Relaunch" was updated'


def test_only_creator_can_update_or_delete(client, freelancer, make_user, make_portal):
    other = make_user("rival@studio.io", Role.FREELANCER)
    portal_id = make_portal(freelancer["id"])
    assert client.patch(f"/api/portals/{portal_id}", json={"name": "Mine now"}, headers=other["headers"]).status_code == 404
    assert client.delete(f"/api/portals/{portal_id}", headers=other["headers"]).status_code == 404


def test_delete_portal_removes_dependents(client, db, freelancer):
    created = _create(client, freelancer["headers"]).json()["portal"]
    resp = client.delete(f"/api/portals/{created['id']}", headers=freelancer["headers"])
    assert resp.status_code == 200

    with db.session() as session:
        remaining = [
            session.execute(select(func.count()).select_from(table)).scalar_one()
            for table in (portals, shared_links, activities)
        ]
    assert remaining == [0, 0, 0]
    # Freed slot: a new client portal is admitted again
    assert _create(client, freelancer["headers"], clientEmail="hello@globex.co").status_code == 201
