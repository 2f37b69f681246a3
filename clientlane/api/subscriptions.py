"""
Subscription and billing routes.

- GET  /api/subscriptions/current
- POST /api/subscriptions/checkout
- POST /api/subscriptions/portal
- POST /api/subscriptions/webhook   (Stripe; signature-verified, idempotent)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from clientlane.core.auth import AuthenticatedUser, require_freelancer
from clientlane.core.database import Database, get_database
from clientlane.core.errors import AppError, ValidationError
from clientlane.features.billing.provider import BillingProvider, BillingProviderError, BillingWebhookError
from clientlane.features.billing.service import (
    get_billing_provider,
    get_current_billing,
    process_webhook_event,
    start_checkout,
    start_portal,
)
from clientlane.models.base import ApiModel

logger = logging.getLogger("clientlane")

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


class CheckoutRequest(ApiModel):
    plan_id: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class PortalRequest(ApiModel):
    return_url: Optional[str] = None


def _provider_failure(exc: BillingProviderError) -> AppError:
    logger.error("[billing] provider call failed", extra={"error_message": str(exc)})
    return AppError("Billing provider error", code="billing_error", status_code=500)


@router.get("/current")
def current_subscription(
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
):
    return get_current_billing(db, user.user_id)


@router.post("/checkout")
def create_checkout(
    payload: CheckoutRequest,
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    """
    Errors:
        503: Billing disabled (STRIPE_SECRET_KEY not set)
        400: Free, unknown or unpriced plan
        409: A subscription is already current
    """
    try:
        url = start_checkout(
            db,
            provider,
            user_id=user.user_id,
            email=user.email,
            name=user.name,
            plan_id=payload.plan_id,
            success_url=payload.success_url,
            cancel_url=payload.cancel_url,
        )
    except BillingProviderError as e:
        raise _provider_failure(e)
    return {"url": url}


@router.post("/portal")
def create_portal_session(
    payload: Optional[PortalRequest] = None,
    user: AuthenticatedUser = Depends(require_freelancer),
    db: Database = Depends(get_database),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    try:
        url = start_portal(
            db,
            provider,
            user_id=user.user_id,
            return_url=payload.return_url if payload else None,
        )
    except BillingProviderError as e:
        raise _provider_failure(e)
    return {"url": url}


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    db: Database = Depends(get_database),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    """
    Handle Stripe webhook events.

    Returns:
        {"received": true}

    Errors:
        400: Invalid signature or payload
        503: Billing disabled
        500: Handler failed (stored on the billing_events row)
    """
    # Raw body is required for signature verification
    body = await request.body()
    headers = dict(request.headers)

    try:
        process_webhook_event(db, provider, headers, body)
    except BillingWebhookError as e:
        raise ValidationError(str(e), code="invalid_signature")
    except AppError:
        raise
    except Exception:
        logger.exception("[billing] webhook handler failed")
        raise AppError("Webhook handler failed", code="webhook_failed", status_code=500)
    return {"received": True}
