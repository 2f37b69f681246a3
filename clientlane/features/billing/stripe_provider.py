"""
Stripe billing provider.

Implements the BillingProvider protocol with the Stripe API and maps
Stripe events onto BillingWebhookResult.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from clientlane.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
)
from clientlane.features.plans.service import AGENCY_PLAN_ID, PRO_PLAN_ID

logger = logging.getLogger("clientlane")

SUBSCRIPTION_EVENTS = ("customer.subscription.updated", "customer.subscription.deleted")
INVOICE_EVENTS = ("invoice.paid", "invoice.payment_failed")


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def subscription_period(subscription: Dict[str, Any]):
    """
    (start, end) of a subscription's current period.

    Trialing subscriptions carry trial dates instead; newer API versions
    keep the period on the first item.
    """
    items = (subscription.get("items") or {}).get("data") or [{}]
    start = (
        subscription.get("current_period_start")
        or subscription.get("trial_start")
        or subscription.get("start_date")
        or items[0].get("current_period_start")
    )
    end = (
        subscription.get("current_period_end")
        or subscription.get("trial_end")
        or items[0].get("current_period_end")
    )
    return _timestamp(start), _timestamp(end)


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        price_ids: Optional[Dict[str, Optional[str]]] = None,
    ):
        if not secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.price_ids = {plan: price for plan, price in (price_ids or {}).items() if price}
        stripe.api_key = secret_key

    @classmethod
    def from_settings(cls, settings_obj) -> "StripeProvider":
        return cls(
            settings_obj.STRIPE_SECRET_KEY,
            settings_obj.STRIPE_WEBHOOK_SECRET,
            {
                PRO_PLAN_ID: settings_obj.STRIPE_PRO_PRICE_ID,
                AGENCY_PLAN_ID: settings_obj.STRIPE_AGENCY_PRICE_ID,
            },
        )

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Find the customer by email, or create one tagged with the user id."""
        try:
            if email:
                customers = stripe.Customer.list(email=email, limit=1)
                if customers.data:
                    return customers.data[0].id

            customer_data: Dict[str, Any] = {"metadata": {"userId": user_id, "role": "freelancer"}}
            if email:
                customer_data["email"] = email
            if name:
                customer_data["name"] = name
            return stripe.Customer.create(**customer_data).id
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}")

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata or {},
                subscription_data={"metadata": metadata or {}},
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}")

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingProviderError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("No signature provided")

        try:
            event = stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        return self._parse_event(event.to_dict())

    def _retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        try:
            return stripe.Subscription.retrieve(subscription_id).to_dict()
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}")

    def _parse_event(self, event: Dict[str, Any]) -> BillingWebhookResult:
        """Parse a Stripe event into a normalized BillingWebhookResult."""
        event_type = event["type"]
        data = (event.get("data") or {}).get("object") or {}
        result = BillingWebhookResult(event_id=event["id"], event_type=event_type)

        subscription: Optional[Dict[str, Any]] = None
        if event_type == "checkout.session.completed":
            result.metadata = data.get("metadata") or {}
            result.user_id = result.metadata.get("userId")
            result.plan_id = result.metadata.get("planId")
            if data.get("subscription"):
                subscription = self._retrieve_subscription(data["subscription"])
        elif event_type in SUBSCRIPTION_EVENTS:
            subscription = data
        elif event_type in INVOICE_EVENTS:
            if data.get("subscription"):
                subscription = self._retrieve_subscription(data["subscription"])
        else:
            return result

        if subscription:
            metadata = subscription.get("metadata") or {}
            result.subscription_id = subscription.get("id")
            result.status = subscription.get("status")
            result.user_id = result.user_id or metadata.get("userId")
            result.plan_id = self._plan_for_subscription(subscription) or result.plan_id or metadata.get("planId")
            result.period_start, result.period_end = subscription_period(subscription)
            result.metadata = {**metadata, **result.metadata}
        return result

    def _plan_for_subscription(self, subscription: Dict[str, Any]) -> Optional[str]:
        items = (subscription.get("items") or {}).get("data") or []
        if not items:
            return None
        price_id = (items[0].get("price") or {}).get("id")
        for plan_id, configured in self.price_ids.items():
            if configured == price_id:
                return plan_id
        return None
