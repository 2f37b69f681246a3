"""
Tests for account settings: profile and password changes.
"""
from sqlalchemy import select

from clientlane.core.database import users
from clientlane.features.users.service import verify_password
from clientlane.models.user import Role

TEST_PASSWORD = "correct-horse-battery"


def test_get_profile(client, freelancer):
    resp = client.get("/api/user", headers=freelancer["headers"])
    assert resp.status_code == 200
    profile = resp.json()["user"]
    assert (profile["id"], profile["name"], profile["email"]) == (
        freelancer["id"],
        "Fran Lancer",
        "freelancer@studio.io",
    )


def test_rename(client, db, freelancer):
    resp = client.patch("/api/user", json={"name": "  Francesca Lancer "}, headers=freelancer["headers"])
    assert resp.status_code == 200
    assert resp.json()["user"]["name"] == "Francesca Lancer"
    with db.session() as session:
        assert session.execute(select(users.c.name).where(users.c.id == freelancer["id"])).scalar_one() == "Francesca Lancer"


def test_rename_rejects_short_names(client, freelancer):
    assert client.patch("/api/user", json={"name": "F"}, headers=freelancer["headers"]).status_code == 422


def test_update_password_then_login(client, freelancer):
    resp = client.post(
        "/api/user/update-password",
        json={"newPassword": "new-horse-battery", "confirmPassword": "new-horse-battery"},
        headers=freelancer["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["message"] == "Password updated successfully"

    old = client.post("/api/auth/login", json={"email": freelancer["email"], "password": TEST_PASSWORD})
    assert old.status_code == 401
    new = client.post("/api/auth/login", json={"email": freelancer["email"], "password": "new-horse-battery"})
    assert new.status_code == 200


def test_update_password_requires_matching_confirmation(client, db, freelancer):
    resp = client.post(
        "/api/user/update-password",
        json={"newPassword": "new-horse-battery", "confirmPassword": "new-horse-batterz"},
        headers=freelancer["headers"],
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Passwords do not match"
    with db.session() as session:
        stored = session.execute(select(users.c.password_hash).where(users.c.id == freelancer["id"])).scalar_one()
    assert verify_password(TEST_PASSWORD, stored)


def test_verify_password(client, make_user):
    acme = make_user("ops@acme.co", Role.CLIENT)
    ok = client.post("/api/user/verify-password", json={"currentPassword": TEST_PASSWORD}, headers=acme["headers"])
    assert ok.status_code == 200
    assert ok.json()["message"] == "Password verified successfully"

    wrong = client.post("/api/user/verify-password", json={"currentPassword": "guess"}, headers=acme["headers"])
    assert wrong.status_code == 401
    assert wrong.json()["error"]["message"] == "Current password is incorrect"


def test_user_routes_require_a_session(client):
    assert client.get("/api/user").status_code == 401
