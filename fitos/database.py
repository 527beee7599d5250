"""
Database Configuration and Session Management

SQLAlchemy setup with connection pooling. Every tenant shares the same
database; isolation is enforced by tenant_id filters in the API layer.

PostgreSQL is the production target. SQLite is accepted for local
development and the test suite (no pool sizing, no per-thread check).
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool
from fitos.config import get_settings
import logging

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_pre_ping": True,  # Verify connections before using (handles stale connections)
    }


engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,  # Log SQL in debug mode
    **_engine_kwargs(settings.DATABASE_URL),
)

# expire_on_commit=False so attributes stay readable after commit
# (the tenant loaded by the middleware outlives its session).
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)

# Base class for all models
Base = declarative_base()


@event.listens_for(engine, "connect")
def set_connection_defaults(dbapi_connection, connection_record):
    """Set connection-level configuration on new connections."""
    cursor = dbapi_connection.cursor()
    if settings.DATABASE_URL.startswith("postgresql"):
        cursor.execute("SET TIME ZONE 'UTC'")
    elif settings.DATABASE_URL.startswith("sqlite"):
        cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    logger.debug("New database connection established")


def get_db() -> Session:
    """
    Dependency function that provides a database session.

    The session is closed after the request completes.
    Tenant isolation is enforced by the API layer, not here.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Create all tables.

    Used by the development server and `fitos-admin init-db`.
    """
    import fitos.models  # noqa: F401  # register models on Base.metadata

    logger.warning("init_db() called - creating tables from ORM metadata")
    Base.metadata.create_all(bind=engine)


def drop_db():
    """Drop every table known to the ORM."""
    import fitos.models  # noqa: F401

    logger.warning("drop_db() called - dropping all tables")
    Base.metadata.drop_all(bind=engine)
