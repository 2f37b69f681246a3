"""
Tests for the portal activity feed.
"""
from datetime import datetime, timezone

from clientlane.features.activities.service import record_activity
from clientlane.models.activity import ActivityType
from clientlane.models.user import Role


def _seed(db, portal_id, user_id):
    moments = [
        datetime(2025, 5, 30, 9, 0, tzinfo=timezone.utc),
        datetime(2025, 5, 31, 23, 59, 30, tzinfo=timezone.utc),
        datetime(2025, 6, 1, 0, 0, 1, tzinfo=timezone.utc),
    ]
    with db.session() as session:
        for index, moment in enumerate(moments):
            record_activity(
                session,
                portal_id,
                user_id,
                ActivityType.FILE_UPLOADED,
                {"fileName": f"file-{index}.pdf"},
                now=moment,
            )


def test_feed_is_newest_first(client, db, freelancer, make_portal):
    portal_id = make_portal(freelancer["id"])
    _seed(db, portal_id, freelancer["id"])

    body = client.get("/api/activities", params={"portalId": portal_id}, headers=freelancer["headers"]).json()
    assert body["total"] == 3
    assert [item["details"]["fileName"] for item in body["activities"]] == [
        "file-2.pdf",
        "file-1.pdf",
        "file-0.pdf",
    ]
    assert body["activities"][0]["user"]["name"] == "Fran Lancer"


def test_date_to_includes_the_whole_day(client, db, freelancer, make_portal):
    portal_id = make_portal(freelancer["id"])
    _seed(db, portal_id, freelancer["id"])

    body = client.get(
        "/api/activities",
        params={"portalId": portal_id, "dateFrom": "2025-05-31", "dateTo": "2025-05-31"},
        headers=freelancer["headers"],
    ).json()
    assert [item["details"]["fileName"] for item in body["activities"]] == ["file-1.pdf"]


def test_client_sees_feed_outsider_does_not(client, db, freelancer, make_user, make_portal):
    acme = make_user("ops@acme.co", Role.CLIENT)
    outsider = make_user("nosy@globex.co", Role.CLIENT)
    portal_id = make_portal(freelancer["id"], acme["id"])
    _seed(db, portal_id, freelancer["id"])

    assert client.get("/api/activities", params={"portalId": portal_id}, headers=acme["headers"]).json()["total"] == 3
    hidden = client.get("/api/activities", params={"portalId": portal_id}, headers=outsider["headers"])
    assert hidden.status_code == 404
