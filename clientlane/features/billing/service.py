"""
Billing service orchestrator.

Coordinates:
- Customer management
- Checkout and customer-portal sessions
- Webhook processing (idempotent via billing_events)
- Subscription rows that plan resolution reads

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clientlane.core.config import settings
from clientlane.core.database import (
    Database,
    as_utc,
    billing_customers,
    billing_events,
    new_id,
    subscriptions,
    utc_now,
)
from clientlane.core.errors import ConflictError, NotFoundError, ServiceUnavailableError, ValidationError
from clientlane.core.logging import log_event
from clientlane.features.billing.provider import BillingProvider, BillingWebhookResult
from clientlane.features.plans.service import (
    AGENCY_PLAN_ID,
    FREE_PLAN_ID,
    PRO_PLAN_ID,
    get_current_subscription,
    get_plan_tier,
    resolve_plan,
)

logger = logging.getLogger("clientlane")


def get_billing_provider(request: Request) -> Optional[BillingProvider]:
    """FastAPI dependency: the provider configured on the app, or None when billing is off."""
    return getattr(request.app.state, "billing", None)


def require_provider(provider: Optional[BillingProvider]) -> BillingProvider:
    if provider is None:
        raise ServiceUnavailableError(
            "Stripe is not configured. Set STRIPE_SECRET_KEY to enable billing.",
            code="billing_disabled",
        )
    return provider


def get_stripe_price_for_plan(plan_id: str) -> Optional[str]:
    """Map a catalog plan id to its Stripe price id."""
    price_map = {
        PRO_PLAN_ID: settings.STRIPE_PRO_PRICE_ID,
        AGENCY_PLAN_ID: settings.STRIPE_AGENCY_PRICE_ID,
    }
    return price_map.get(plan_id)


def _subscription_view(row) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {
        "id": row.id,
        "planId": row.plan_id,
        "planName": row.plan_name,
        "stripeSubscriptionId": row.stripe_subscription_id,
        "startsAt": as_utc(row.starts_at).isoformat(),
        "endsAt": as_utc(row.ends_at).isoformat(),
        "isActive": bool(row.is_active),
        "canceledAt": as_utc(row.canceled_at).isoformat() if row.canceled_at else None,
    }


def get_current_billing(db: Database, user_id: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Resolved plan plus the raw current subscription (None on the Free plan)."""
    with db.session() as session:
        plan = resolve_plan(session, user_id, now=now)
        row = get_current_subscription(session, user_id, now=now)
    return {"plan": plan.to_api(), "subscription": _subscription_view(row)}


def ensure_customer_for_user(
    db: Database,
    provider: BillingProvider,
    user_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
) -> str:
    """
    Return the user's Stripe customer id, creating the customer on first use.

    Raises:
        BillingProviderError: If customer creation fails
    """
    with db.session() as session:
        existing = session.execute(
            select(billing_customers.c.stripe_customer_id).where(billing_customers.c.user_id == user_id)
        ).scalar_one_or_none()
    if existing:
        return existing

    stripe_customer_id = provider.ensure_customer(user_id, email, name)
    try:
        with db.session() as session:
            session.execute(
                insert(billing_customers).values(user_id=user_id, stripe_customer_id=stripe_customer_id)
            )
    except IntegrityError:
        # A concurrent request stored the customer first
        logger.info("[billing] customer already stored", extra={"user_id": user_id})
    return stripe_customer_id


def start_checkout(
    db: Database,
    provider: Optional[BillingProvider],
    *,
    user_id: str,
    email: str,
    name: str,
    plan_id: str,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Start a subscription checkout.

    Raises:
        ServiceUnavailableError: Billing disabled
        ValidationError: Free, unknown or unpriced plan
        ConflictError: A subscription is already current
        BillingProviderError: Stripe call failed
    """
    provider = require_provider(provider)

    if plan_id == FREE_PLAN_ID:
        raise ValidationError("Free plan doesn't require checkout")
    if get_plan_tier(plan_id) is None:
        raise ValidationError("Invalid plan ID")
    price_id = get_stripe_price_for_plan(plan_id)
    if not price_id:
        raise ValidationError("Plan price ID not configured")

    with db.session() as session:
        if get_current_subscription(session, user_id, now=now) is not None:
            raise ConflictError("You already have an active subscription. Manage it from the billing portal.")

    customer_id = ensure_customer_for_user(db, provider, user_id, email, name)
    base_url = settings.APP_BASE_URL.rstrip("/")
    url = provider.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=success_url or f"{base_url}/subscriptions?success=true",
        cancel_url=cancel_url or f"{base_url}/subscriptions?canceled=true",
        metadata={"userId": user_id, "planId": plan_id},
    )
    logger.info("[billing] checkout started", extra={"user_id": user_id, "plan_id": plan_id})
    return url


def start_portal(
    db: Database,
    provider: Optional[BillingProvider],
    *,
    user_id: str,
    return_url: Optional[str] = None,
) -> str:
    """
    Raises:
        ServiceUnavailableError: Billing disabled
        NotFoundError: The user never went through checkout
    """
    provider = require_provider(provider)
    with db.session() as session:
        customer_id = session.execute(
            select(billing_customers.c.stripe_customer_id).where(billing_customers.c.user_id == user_id)
        ).scalar_one_or_none()
    if not customer_id:
        raise NotFoundError("No billing account found. Complete checkout first.")

    return provider.create_portal_session(
        customer_id=customer_id,
        return_url=return_url or f"{settings.APP_BASE_URL.rstrip('/')}/subscriptions",
    )


# ---------------------------------------------------------------------------
# Webhook state changes
# ---------------------------------------------------------------------------

def _active_rows(user_id: str):
    return (
        update(subscriptions)
        .where(subscriptions.c.user_id == user_id)
        .where(subscriptions.c.is_active.is_(True))
    )


def _on_checkout_completed(session: Session, result: BillingWebhookResult, now: datetime) -> None:
    if get_plan_tier(result.plan_id or "") is None:
        logger.error(
            "[billing] checkout completed for unknown plan",
            extra={"user_id": result.user_id, "plan_id": result.plan_id},
        )
        return
    session.execute(
        insert(subscriptions).values(
            id=new_id(),
            user_id=result.user_id,
            plan_id=result.plan_id,
            stripe_subscription_id=result.subscription_id,
            starts_at=result.period_start or now,
            ends_at=result.period_end or now,
            is_active=result.is_active,
            created_at=now,
        )
    )


def _on_subscription_updated(session: Session, result: BillingWebhookResult, now: datetime) -> None:
    session.execute(
        _active_rows(result.user_id).values(
            starts_at=result.period_start or now,
            ends_at=result.period_end or now,
            is_active=result.is_active,
            canceled_at=now if result.status == "canceled" else None,
        )
    )


def _on_subscription_deleted(session: Session, result: BillingWebhookResult, now: datetime) -> None:
    session.execute(_active_rows(result.user_id).values(is_active=False, canceled_at=now))


def _on_invoice_paid(session: Session, result: BillingWebhookResult, now: datetime) -> None:
    session.execute(_active_rows(result.user_id).values(is_active=True, ends_at=result.period_end or now))


def _on_payment_failed(session: Session, result: BillingWebhookResult, now: datetime) -> None:
    logger.warning(
        "[billing] invoice payment failed",
        extra={"user_id": result.user_id, "subscription_id": result.subscription_id},
    )


WEBHOOK_HANDLERS = {
    "checkout.session.completed": _on_checkout_completed,
    "customer.subscription.updated": _on_subscription_updated,
    "customer.subscription.deleted": _on_subscription_deleted,
    "invoice.paid": _on_invoice_paid,
    "invoice.payment_failed": _on_payment_failed,
}


def apply_webhook_event(db: Database, result: BillingWebhookResult, *, now: Optional[datetime] = None) -> bool:
    """
    Apply a verified event to subscription rows.

    Returns:
        True if a handler ran, False for ignored events
    """
    handler = WEBHOOK_HANDLERS.get(result.event_type)
    if handler is None:
        logger.info("[billing] unhandled event type", extra={"event_type": result.event_type})
        return False
    if not result.user_id:
        logger.error(
            "[billing] event without userId metadata",
            extra={"event_type": result.event_type, "stripe_event_id": result.event_id},
        )
        return False

    with db.session() as session:
        handler(session, result, now or utc_now())
    log_event(
        "info",
        "[billing] event applied",
        request_id=None,
        user_id=result.user_id,
        event_type=result.event_type,
        extra={"plan_id": result.plan_id, "stripe_event_id": result.event_id},
    )
    return True


def _claim_event(db: Database, result: BillingWebhookResult, payload_hash: str) -> bool:
    """
    Record the event in billing_events.

    Returns:
        False when the event was already processed successfully
    """
    with db.session() as session:
        existing = session.execute(
            select(billing_events.c.id, billing_events.c.processed)
            .where(billing_events.c.stripe_event_id == result.event_id)
        ).first()
        if existing is not None:
            if existing.processed:
                return False
            # Earlier delivery failed; Stripe is retrying
            session.execute(
                update(billing_events)
                .where(billing_events.c.id == existing.id)
                .values(payload_hash=payload_hash, error=None)
            )
            return True
        session.execute(
            insert(billing_events).values(
                stripe_event_id=result.event_id,
                event_type=result.event_type,
                payload_hash=payload_hash,
                processed=False,
            )
        )
    return True


def process_webhook_event(
    db: Database,
    provider: Optional[BillingProvider],
    headers: Dict[str, str],
    body: bytes,
    *,
    now: Optional[datetime] = None,
) -> BillingWebhookResult:
    """
    Process a billing webhook (idempotent).

    1. Verify signature
    2. Claim the event id (skip if already processed)
    3. Apply state changes
    4. Mark as processed, or store the error and re-raise

    Raises:
        ServiceUnavailableError: Billing disabled
        BillingWebhookError: Signature invalid or payload malformed
    """
    provider = require_provider(provider)
    result = provider.handle_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()

    try:
        claimed = _claim_event(db, result, payload_hash)
    except IntegrityError:
        # Another delivery of the same event inserted it first
        claimed = False
    if not claimed:
        logger.info("[billing] duplicate event skipped", extra={"stripe_event_id": result.event_id})
        return result

    try:
        apply_webhook_event(db, result, now=now)
    except Exception as e:
        with db.session() as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == result.event_id)
                .values(error=str(e))
            )
        raise

    with db.session() as session:
        session.execute(
            update(billing_events)
            .where(billing_events.c.stripe_event_id == result.event_id)
            .values(processed=True, processed_at=now or utc_now())
        )
    return result
