"""
Proof Engine - Database Configuration
PostgreSQL connection using SQLAlchemy (SQLite supported for tests/local runs)
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL


def build_engine(url: str):
    """
    Create an engine for the given URL.

    SQLite needs the pysqlite transaction workaround so that SAVEPOINTs
    (used by the attachment unit of work) behave like they do on PostgreSQL.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False, pool_pre_ping=True)

    sqlite_engine = create_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        if ":memory:" not in url:
            # Background-task sessions write while request sessions read
            dbapi_connection.execute("PRAGMA journal_mode=WAL")

    @event.listens_for(sqlite_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


# Create engine
engine = build_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def get_db():
    """Dependency for FastAPI - yields database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database - create all tables."""
    from .models import db_models  # noqa: F401  (registers tables on Base)

    Base.metadata.create_all(bind=engine)
