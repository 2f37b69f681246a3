import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from clientlane/.env before settings are read
backend_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(backend_dir, ".env"))

from clientlane.core.config import Settings, settings, validate_config
from clientlane.core.database import Database
from clientlane.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from clientlane.core.logging import configure_logging
from clientlane.core.middleware.request_id import RequestIdMiddleware
from clientlane.api import (
    activities,
    auth,
    clients,
    dashboard,
    files,
    health,
    notifications,
    plans,
    portals,
    subscriptions,
    updates,
    user,
)
from clientlane.features.billing.provider import BillingProvider, BillingProviderError
from clientlane.features.billing.stripe_provider import StripeProvider
from clientlane.features.mailer.service import LogMailer, Mailer
from clientlane.features.plans.service import seed_plans

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

logger = logging.getLogger("clientlane")


def _billing_from_settings(cfg: Settings) -> Optional[BillingProvider]:
    if not cfg.STRIPE_SECRET_KEY:
        return None
    try:
        return StripeProvider.from_settings(cfg)
    except BillingProviderError as e:
        logger.warning("Billing disabled", extra={"error_message": str(e)})
        return None


def create_app(
    settings_obj: Optional[Settings] = None,
    database: Optional[Database] = None,
    mailer: Optional[Mailer] = None,
    billing: Optional[BillingProvider] = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators default to what settings describe; tests pass their own
    (in-memory database, recording mailer, fake billing provider).
    """
    cfg = settings_obj or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Clientlane backend...")
        owns_db = database is None
        db = database or Database.from_settings(cfg)
        if cfg.DB_AUTO_CREATE:
            db.create_all()
        seed_plans(db)

        app.state.db = db
        app.state.mailer = mailer or LogMailer()
        app.state.billing = billing if billing is not None else _billing_from_settings(cfg)
        try:
            yield
        finally:
            logger.info("Stopping Clientlane backend...")
            if owns_db:
                db.dispose()
            app.state.db = None

    app = FastAPI(title="Clientlane API", lifespan=lifespan)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(plans.router)
    app.include_router(plans.limits_router)
    app.include_router(portals.router)
    app.include_router(files.router)
    app.include_router(updates.router)
    app.include_router(updates.replies_router)
    app.include_router(notifications.router)
    app.include_router(activities.router)
    app.include_router(clients.router)
    app.include_router(dashboard.router)
    app.include_router(user.router)
    app.include_router(subscriptions.router)
    return app


app = create_app()
