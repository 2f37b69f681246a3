"""
Database handle and schema.

This module provides:
- The Database handle (engine + session factory) owned by the app lifecycle
- Connection pooling with sane defaults
- Transactions at elevated isolation for admission-checked writes
- SQLAlchemy Core table definitions
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional
from uuid import uuid4

from sqlalchemy import (
    create_engine,
    event,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    MetaData,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from starlette.requests import Request

logger = logging.getLogger("clientlane")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Seconds a SQLite writer waits for another writer to commit
SQLITE_BUSY_TIMEOUT = 30


def utc_now() -> datetime:
    """Timezone-aware UTC now for column defaults."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def _is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    return parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:")


def _engine_options(url: str) -> Dict[str, Any]:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}}
        if _is_memory_sqlite(url):
            # A single shared connection keeps in-memory data alive across sessions
            options["poolclass"] = StaticPool
        return options
    return {
        "poolclass": QueuePool,
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_timeout": POOL_TIMEOUT,
        "pool_recycle": POOL_RECYCLE,
        "pool_pre_ping": True,
    }


def _take_over_sqlite_begin(engine: Engine) -> None:
    """
    Emit BEGIN ourselves instead of letting pysqlite defer it.

    pysqlite only opens a transaction at the first INSERT/UPDATE, so the
    SELECTs of an admission check would run unlocked. With the driver's
    handling off, a connection carrying the ``sqlite_begin`` execution
    option starts with that statement (BEGIN IMMEDIATE takes the write
    lock before the first read).
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql(conn.get_execution_options().get("sqlite_begin", "BEGIN"))


class Database:
    """
    Persistence handle owned by the application lifecycle.

    Created once at startup (see main.lifespan), shared through
    ``app.state.db`` and disposed at shutdown. Services receive it
    explicitly instead of reaching for module-level state.

    Usage:
        with db.session() as session:
            session.execute(...)

        with db.session(isolation_level=db.admission_isolation) as session:
            check_then_insert(session)
    """

    def __init__(self, url: str, *, echo: bool = False, admission_isolation: Optional[str] = "SERIALIZABLE"):
        if not url:
            raise ValueError(
                "DATABASE_URL is not configured. "
                "Set DATABASE_URL in environment or .env file."
            )
        self.url = url
        self.admission_isolation = admission_isolation
        self.engine: Engine = create_engine(url, echo=echo, **_engine_options(url))
        # The shared in-memory connection keeps pysqlite's default handling
        self._controls_begin = self.engine.dialect.name == "sqlite" and not _is_memory_sqlite(url)
        if self._controls_begin:
            _take_over_sqlite_begin(self.engine)
        self._session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings_obj) -> "Database":
        return cls(
            settings_obj.DATABASE_URL,
            echo=settings_obj.DB_ECHO,
            admission_isolation=settings_obj.DB_ISOLATION_LEVEL or None,
        )

    @contextmanager
    def session(self, isolation_level: Optional[str] = None) -> Iterator[Session]:
        """
        Open a session bound to one transaction.

        Commits when the block exits cleanly, rolls back on any exception
        and always closes. ``isolation_level`` must be applied before the
        first statement, so it is set on the connection up front. On a
        SQLite file the transaction instead opens with BEGIN IMMEDIATE,
        which serialises admission transactions from their first read.
        """
        session = self._session_factory()
        try:
            if isolation_level:
                session.connection(execution_options=self._transaction_options(isolation_level))
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _transaction_options(self, isolation_level: str) -> Dict[str, Any]:
        if self._controls_begin:
            return {"sqlite_begin": "BEGIN IMMEDIATE"}
        return {"isolation_level": isolation_level}

    def create_all(self) -> None:
        """Create all tables defined in metadata (idempotent)."""
        metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        """
        Drop all tables defined in metadata.

        WARNING: This is destructive! Only use in tests or development.
        """
        metadata.drop_all(bind=self.engine)

    def check_connection(self) -> bool:
        """
        Check if database connection is available.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning("Database connection check failed", extra={"error_message": str(e)})
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def get_database(request: Request) -> Database:
    """FastAPI dependency returning the handle created at startup.

    Use this with `Depends(get_database)`; tests swap the handle through
    `create_app(database=...)` or `app.dependency_overrides`.
    """
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise RuntimeError("Database handle is not initialised; the app lifespan has not run")
    return db


# Users (freelancers and clients)
users = Table(
    'users',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('email', String(255), nullable=False, unique=True),
    Column('name', String(255), nullable=False),
    Column('password_hash', String(255), nullable=True),
    Column('role', String(20), nullable=False),
    Column('email_verified', Boolean, nullable=False, default=False),
    Column('last_seen_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False),
    Index('idx_users_role', 'role'),
)

# Plan rows referenced by subscriptions; limits live in the plan catalog
plans = Table(
    'plans',
    metadata,
    Column('id', String(50), primary_key=True),
    Column('name', String(100), nullable=False, unique=True),
    Column('price_cents', Integer, nullable=False, default=0),
    Column('currency', String(3), nullable=False, default='USD'),
    Column('billing_cycle', String(20), nullable=False, default='monthly'),
    Column('is_active', Boolean, nullable=False, default=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
)

subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(36), ForeignKey('users.id'), nullable=False),
    Column('plan_id', String(50), ForeignKey('plans.id'), nullable=False),
    Column('stripe_subscription_id', String(255), nullable=True, index=True),
    Column('starts_at', DateTime(timezone=True), nullable=False),
    Column('ends_at', DateTime(timezone=True), nullable=False),
    Column('is_active', Boolean, nullable=False, default=True),
    Column('canceled_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    # Composite index for current-plan lookups: (user_id, is_active, ends_at)
    Index('idx_subscriptions_user_active_ends', 'user_id', 'is_active', 'ends_at'),
)

portals = Table(
    'portals',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('name', String(255), nullable=False),
    Column('description', Text, nullable=False, default=''),
    Column('status', String(20), nullable=False, default='active'),
    Column('created_by', String(36), ForeignKey('users.id'), nullable=False),
    Column('client_id', String(36), ForeignKey('users.id'), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False),
    Index('idx_portals_created_by', 'created_by', 'updated_at'),
    Index('idx_portals_client_id', 'client_id'),
)

updates = Table(
    'updates',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('portal_id', String(36), ForeignKey('portals.id'), nullable=False),
    Column('user_id', String(36), ForeignKey('users.id'), nullable=False),
    Column('parent_update_id', String(36), ForeignKey('updates.id'), nullable=True),
    Column('title', String(255), nullable=False),
    Column('content', Text, nullable=False),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False),
    Index('idx_updates_portal_created', 'portal_id', 'created_at'),
    Index('idx_updates_parent', 'parent_update_id'),
)

files = Table(
    'files',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('portal_id', String(36), ForeignKey('portals.id'), nullable=False),
    Column('user_id', String(36), ForeignKey('users.id'), nullable=False),
    Column('update_id', String(36), ForeignKey('updates.id'), nullable=True),
    Column('file_name', String(255), nullable=False),
    Column('file_url', Text, nullable=False),
    Column('file_type', String(255), nullable=False, default=''),
    Column('file_size', BigInteger, nullable=False, default=0),
    Column('uploaded_at', DateTime(timezone=True), default=utc_now, nullable=False),
    # Composite index for file listings: (portal_id, uploaded_at)
    Index('idx_files_portal_uploaded', 'portal_id', 'uploaded_at'),
)

activities = Table(
    'activities',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('portal_id', String(36), ForeignKey('portals.id'), nullable=False),
    Column('user_id', String(36), ForeignKey('users.id'), nullable=False),
    Column('type', String(50), nullable=False),
    Column('details', JSON, nullable=False, default=dict),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Index('idx_activities_portal_created', 'portal_id', 'created_at'),
)

notifications = Table(
    'notifications',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(36), ForeignKey('users.id'), nullable=False),
    Column('portal_id', String(36), ForeignKey('portals.id'), nullable=True),
    Column('type', String(50), nullable=False),
    Column('message', Text, nullable=False),
    Column('link', Text, nullable=False, default=''),
    Column('is_read', Boolean, nullable=False, default=False),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    # Composite index for inbox queries: (user_id, is_read)
    Index('idx_notifications_user_read', 'user_id', 'is_read'),
)

otps = Table(
    'otps',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('email', String(255), nullable=False, unique=True),
    Column('code', String(6), nullable=False),
    Column('expires_at', DateTime(timezone=True), nullable=False),
    Column('attempts', Integer, default=0, nullable=False),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
)

shared_links = Table(
    'shared_links',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('portal_id', String(36), ForeignKey('portals.id'), nullable=False, index=True),
    Column('token', String(255), nullable=False, unique=True),
    Column('is_revoked', Boolean, nullable=False, default=False),
    Column('expires_at', DateTime(timezone=True), nullable=False),
    Column('last_viewed_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
)

password_reset_tokens = Table(
    'password_reset_tokens',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(36), ForeignKey('users.id'), nullable=False, index=True),
    Column('token', String(255), nullable=False, unique=True),
    Column('expires_at', DateTime(timezone=True), nullable=False),
    Column('used_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
)

billing_customers = Table(
    'billing_customers',
    metadata,
    Column('user_id', String(36), ForeignKey('users.id'), primary_key=True),
    Column('stripe_customer_id', String(255), nullable=False, unique=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
)

# Processed payment-provider webhooks (idempotency ledger)
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(255), nullable=False, unique=True),
    Column('event_type', String(100), nullable=False, index=True),
    Column('payload_hash', String(64), nullable=False),
    Column('processed', Boolean, nullable=False, default=False),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
)
