"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.).
Subscription bookkeeping in service.py only ever sees normalized
BillingWebhookResult objects, never raw provider payloads.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol


@dataclass
class BillingWebhookResult:
    """A verified webhook event, normalized."""
    event_id: str
    event_type: str
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: Optional[str] = None  # active, trialing, canceled, past_due, ...
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status in ("active", "trialing")


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer creation
    - Checkout and customer-portal sessions
    - Webhook signature verification and parsing
    """

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """
        Ensure a billing customer exists for the user.

        Returns:
            Provider customer ID (e.g., Stripe customer ID)

        Raises:
            BillingProviderError: If customer creation fails
        """
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Create a subscription checkout session.

        Returns:
            Checkout session URL
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a customer self-service portal session.

        Returns:
            Portal session URL
        """
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """
        Verify the webhook signature and parse the event.

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook verification errors."""
    pass
