"""
Tests for subscription checkout and idempotent webhook processing.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from sqlalchemy import select

from clientlane.core.config import settings
from clientlane.core.database import billing_customers, billing_events, subscriptions
from clientlane.core.errors import ServiceUnavailableError
from clientlane.features.billing.provider import BillingWebhookError, BillingWebhookResult
from clientlane.features.billing.service import apply_webhook_event, process_webhook_event
from clientlane.features.plans.service import PRO_PLAN_ID


def _period():
    start = datetime.now(timezone.utc) - timedelta(hours=1)
    return start, start + timedelta(days=30)


def _checkout_event(user_id, event_id="evt_checkout", plan_id=PRO_PLAN_ID):
    start, end = _period()
    return BillingWebhookResult(
        event_id=event_id,
        event_type="checkout.session.completed",
        user_id=user_id,
        plan_id=plan_id,
        subscription_id="sub_123",
        status="active",
        period_start=start,
        period_end=end,
    )


@pytest.fixture
def billing():
    provider = Mock()
    provider.ensure_customer.return_value = "cus_123"
    provider.create_checkout_session.return_value = "https://checkout.stripe.test/session"
    provider.create_portal_session.return_value = "https://billing.stripe.test/portal"
    return provider


@pytest.fixture
def prices(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_PRO_PRICE_ID", "price_pro")
    monkeypatch.setattr(settings, "STRIPE_AGENCY_PRICE_ID", "price_agency")


def _subscription_rows(db, user_id):
    with db.session() as session:
        return session.execute(select(subscriptions).where(subscriptions.c.user_id == user_id)).all()


def test_checkout_event_activates_plan(client, db, freelancer, billing):
    billing.handle_webhook.return_value = _checkout_event(freelancer["id"])

    resp = client.post("/api/subscriptions/webhook", content=b'{"id": "evt_checkout"}', headers={"stripe-signature": "t=1,v1=x"})
    assert resp.status_code == 200
    assert resp.json() == {"received": True}

    rows = _subscription_rows(db, freelancer["id"])
    assert len(rows) == 1
    assert rows[0].plan_id == PRO_PLAN_ID
    assert rows[0].stripe_subscription_id == "sub_123"

    current = client.get("/api/subscriptions/current", headers=freelancer["headers"]).json()
    assert current["plan"]["id"] == PRO_PLAN_ID
    assert current["subscription"]["planName"] == "Pro Plan"


def test_duplicate_event_is_processed_once(db, freelancer, billing):
    billing.handle_webhook.return_value = _checkout_event(freelancer["id"])

    process_webhook_event(db, billing, {}, b"payload")
    process_webhook_event(db, billing, {}, b"payload")

    assert len(_subscription_rows(db, freelancer["id"])) == 1
    with db.session() as session:
        event = session.execute(select(billing_events)).one()
    assert event.processed is True
    assert event.error is None


def test_failed_event_is_recorded_then_retried(db, freelancer, billing, monkeypatch):
    from clientlane.features.billing import service as billing_service

    billing.handle_webhook.return_value = _checkout_event(freelancer["id"])
    monkeypatch.setitem(
        billing_service.WEBHOOK_HANDLERS,
        "checkout.session.completed",
        Mock(side_effect=RuntimeError("boom")),
    )
    with pytest.raises(RuntimeError):
        process_webhook_event(db, billing, {}, b"payload")

    with db.session() as session:
        event = session.execute(select(billing_events)).one()
    assert event.processed is False
    assert event.error == "boom"

    monkeypatch.undo()
    process_webhook_event(db, billing, {}, b"payload")
    assert len(_subscription_rows(db, freelancer["id"])) == 1


def test_subscription_deleted_deactivates(db, freelancer, billing):
    apply_webhook_event(db, _checkout_event(freelancer["id"]))
    deleted = BillingWebhookResult(
        event_id="evt_deleted",
        event_type="customer.subscription.deleted",
        user_id=freelancer["id"],
        subscription_id="sub_123",
        status="canceled",
    )
    assert apply_webhook_event(db, deleted) is True

    rows = _subscription_rows(db, freelancer["id"])
    assert rows[0].is_active is False
    assert rows[0].canceled_at is not None


def test_subscription_updated_to_past_due_deactivates(db, freelancer):
    apply_webhook_event(db, _checkout_event(freelancer["id"]))
    start, end = _period()
    updated = BillingWebhookResult(
        event_id="evt_updated",
        event_type="customer.subscription.updated",
        user_id=freelancer["id"],
        status="past_due",
        period_start=start,
        period_end=end,
    )
    apply_webhook_event(db, updated)
    rows = _subscription_rows(db, freelancer["id"])
    assert rows[0].is_active is False
    assert rows[0].canceled_at is None


def test_events_without_user_or_handler_are_ignored(db):
    assert apply_webhook_event(db, BillingWebhookResult(event_id="e1", event_type="customer.created")) is False
    assert apply_webhook_event(db, BillingWebhookResult(event_id="e2", event_type="invoice.paid")) is False


def test_unknown_plan_in_checkout_is_not_stored(db, freelancer):
    apply_webhook_event(db, _checkout_event(freelancer["id"], plan_id="enterprise"))
    assert _subscription_rows(db, freelancer["id"]) == []


def test_bad_signature_is_rejected(client, billing):
    billing.handle_webhook.side_effect = BillingWebhookError("Invalid signature: mismatch")
    resp = client.post("/api/subscriptions/webhook", content=b"{}", headers={"stripe-signature": "bad"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_signature"


def test_checkout_creates_session(client, db, freelancer, billing, prices):
    resp = client.post("/api/subscriptions/checkout", json={"planId": PRO_PLAN_ID}, headers=freelancer["headers"])
    assert resp.status_code == 200
    assert resp.json() == {"url": "https://checkout.stripe.test/session"}

    kwargs = billing.create_checkout_session.call_args.kwargs
    assert kwargs["price_id"] == "price_pro"
    assert kwargs["metadata"] == {"userId": freelancer["id"], "planId": PRO_PLAN_ID}
    with db.session() as session:
        stored = session.execute(select(billing_customers.c.stripe_customer_id)).scalar_one()
    assert stored == "cus_123"


@pytest.mark.parametrize(
    "plan_id,message",
    [
        ("free", "Free plan doesn't require checkout"),
        ("enterprise", "Invalid plan ID"),
    ],
)
def test_checkout_rejects_invalid_plans(client, freelancer, prices, plan_id, message):
    resp = client.post("/api/subscriptions/checkout", json={"planId": plan_id}, headers=freelancer["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == message


def test_checkout_requires_configured_price(client, freelancer, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_PRO_PRICE_ID", None)
    resp = client.post("/api/subscriptions/checkout", json={"planId": PRO_PLAN_ID}, headers=freelancer["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Plan price ID not configured"


def test_checkout_with_current_subscription_conflicts(client, freelancer, subscribe, prices):
    subscribe(freelancer["id"], PRO_PLAN_ID)
    resp = client.post("/api/subscriptions/checkout", json={"planId": "agency"}, headers=freelancer["headers"])
    assert resp.status_code == 409


def test_portal_requires_billing_account(client, freelancer):
    resp = client.post("/api/subscriptions/portal", headers=freelancer["headers"])
    assert resp.status_code == 404


def test_billing_disabled(db, freelancer):
    with pytest.raises(ServiceUnavailableError):
        process_webhook_event(db, None, {}, b"{}")


@pytest.mark.parametrize("billing", [None])
def test_billing_disabled_endpoints(client, freelancer, billing):
    resp = client.post("/api/subscriptions/checkout", json={"planId": PRO_PLAN_ID}, headers=freelancer["headers"])
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "billing_disabled"
