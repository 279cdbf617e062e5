"""Database engine and session management for the registry's key-value and audit tables."""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from token_registry.config import DATABASE_URL

SQLALCHEMY_DATABASE_URL = DATABASE_URL

# SQLAlchemy only accepts the postgresql:// scheme
if SQLALCHEMY_DATABASE_URL.startswith("postgres://"):
    SQLALCHEMY_DATABASE_URL = SQLALCHEMY_DATABASE_URL.replace("postgres://", "postgresql://", 1)

if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    # Sessions are handed to FastAPI's worker threads
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False}
    )
else:
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency yielding one session per request; registry operations commit on it."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
