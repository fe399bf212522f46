from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.models.orm.base import Base
from .settings import config_settings

DATABASE_URL = config_settings.DATABASE_URL

# 1. SQLAlchemy Engine
# Owns the connection pool. The assignments table's unique constraint is what
# arbitrates concurrent first-time assignment, so every instance must point at
# the same database.
engine = create_engine(
    DATABASE_URL,
    # Only needed for SQLite to handle concurrent requests
    connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {},
    pool_pre_ping=True,
)

# 2. SessionLocal
# Each request gets its own session (a unit of work).
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=engine):
    """Creates all tables known to the ORM metadata. Intended for local runs."""
    # Registers every ORM model on Base.metadata
    from app.models.orm import assignment, experiment, feature_flag  # noqa: F401

    Base.metadata.create_all(bind=bind)


def get_db():
    """
    Dependency that yields a database session for a single request,
    and ensures the session is closed afterward.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
