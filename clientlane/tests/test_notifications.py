"""
Tests for notification links, messages, fan-out and the inbox routes.
"""
import pytest

from clientlane.features.notifications.service import (
    notification_link,
    notification_message,
    notify_portal_members,
)
from clientlane.models.activity import ActivityType, NotificationType
from clientlane.models.user import Role


@pytest.mark.parametrize(
    "kind,meta,expected",
    [
        (NotificationType.NEW_COMMENT, {"updateId": "u1", "replyId": "r9"}, "/portal/p1/update/u1#reply-r9"),
        (NotificationType.NEW_COMMENT, {"updateId": "u1"}, "/portal/p1/update/u1"),
        (NotificationType.NEW_COMMENT, {}, "/portal/p1"),
        (NotificationType.FILE_UPLOADED, {"updateId": "u1"}, "/portal/p1/update/u1"),
        (NotificationType.FILE_UPLOADED, {}, "/portal/p1/files"),
        (NotificationType.NEW_UPDATE, {"updateId": "u1"}, "/portal/p1/update/u1"),
        (NotificationType.PORTAL_UPDATED, {}, "/portal/p1"),
        (NotificationType.DEADLINE_REMINDER, None, "/portal/p1"),
    ],
)
def test_notification_link(kind, meta, expected):
    assert notification_link("p1", kind, meta) == expected


def test_notification_messages():
    assert notification_message(NotificationType.NEW_COMMENT, {"parentUpdateTitle": "Logo"}, "Ana") == 'Ana replied to "Logo"'
    assert notification_message(NotificationType.NEW_COMMENT, {}, "Ana") == "Ana left a new comment"
    assert notification_message(NotificationType.FILE_UPLOADED) == "Someone uploaded a new file"
    assert notification_message(NotificationType.NEW_UPDATE, {}, "Ana") == "Ana posted a new update"
    assert notification_message(NotificationType.PORTAL_UPDATED) == "Portal was updated"
    assert notification_message(NotificationType.DEADLINE_REMINDER, {"portalName": "Site"}) == (
        "Reminder: The deadline for project 'Site' is in 7 days."
    )


def test_fan_out_skips_actor_and_unmapped_types(db, freelancer, make_user, make_portal):
    acme = make_user("ops@acme.co", Role.CLIENT)
    portal_id = make_portal(freelancer["id"], acme["id"])
    with db.session() as session:
        recipients = notify_portal_members(
            session, portal_id, acme["id"], ActivityType.FILE_UPLOADED, {"fileName": "a.pdf"}
        )
        ignored = notify_portal_members(session, portal_id, acme["id"], ActivityType.FILE_DELETED)
    assert recipients == [freelancer["id"]]
    assert ignored == []


def test_fan_out_without_client(db, freelancer, make_portal):
    portal_id = make_portal(freelancer["id"])
    with db.session() as session:
        assert notify_portal_members(session, portal_id, freelancer["id"], ActivityType.UPDATE_CREATED) == []


def _seed_inbox(db, freelancer, acme, portal_id):
    with db.session() as session:
        notify_portal_members(session, portal_id, acme["id"], ActivityType.FILE_UPLOADED, {"fileName": "a.pdf"})
        notify_portal_members(
            session, portal_id, acme["id"], ActivityType.UPDATE_CREATED, {"updateId": "u1", "updateTitle": "Hi"}
        )


def test_inbox_listing_and_mark_one(client, db, freelancer, make_user, make_portal):
    acme = make_user("ops@acme.co", Role.CLIENT)
    portal_id = make_portal(freelancer["id"], acme["id"], name="Website Redesign")
    _seed_inbox(db, freelancer, acme, portal_id)

    inbox = client.get("/api/notifications", headers=freelancer["headers"]).json()
    assert inbox["total"] == 2
    assert inbox["unreadCount"] == 2
    assert inbox["notifications"][0]["portal"] == {"id": portal_id, "name": "Website Redesign"}

    target = inbox["notifications"][0]["id"]
    # Another user cannot mark it
    assert client.put("/api/notifications", json={"notificationId": target}, headers=acme["headers"]).json() == {"updated": 0}
    assert client.put("/api/notifications", json={"notificationId": target}, headers=freelancer["headers"]).json() == {"updated": 1}

    unread = client.get("/api/notifications", params={"unreadOnly": "true"}, headers=freelancer["headers"]).json()
    assert unread["total"] == 1
    assert unread["unreadCount"] == 1


def test_mark_by_link_and_mark_all(client, db, freelancer, make_user, make_portal):
    acme = make_user("ops@acme.co", Role.CLIENT)
    portal_id = make_portal(freelancer["id"], acme["id"])
    _seed_inbox(db, freelancer, acme, portal_id)

    by_link = client.put("/api/notifications", json={"markByLink": "/update/u1"}, headers=freelancer["headers"])
    assert by_link.json() == {"updated": 1}

    remaining = client.put("/api/notifications", json={"markAllAsRead": True}, headers=freelancer["headers"])
    assert remaining.json() == {"updated": 1}
    assert client.get("/api/notifications", headers=freelancer["headers"]).json()["unreadCount"] == 0


def test_mark_read_requires_a_target(client, freelancer):
    resp = client.put("/api/notifications", json={}, headers=freelancer["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"
