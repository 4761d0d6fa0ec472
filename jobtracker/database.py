from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from jobtracker import config

DATABASE_URL = config.DATABASE_URL

# SQLite connections are shared between the request thread and sweep workers
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    echo=False,  # Set True for SQL debugging
    pool_pre_ping=True,
    connect_args=connect_args
)

# One factory for request sessions and for each sweep worker
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False
)


class Base(DeclarativeBase):
    """Declarative base for the emails, rollups, cursor and credential tables."""
    pass


def init_db() -> None:
    """Create any missing tables."""
    import jobtracker.models  # noqa: F401  (register tables)
    Base.metadata.create_all(bind=engine)


def get_db():
    """
    FastAPI dependency yielding a session that is closed after the request.

    The sync engine and the endpoints share this session for a request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
