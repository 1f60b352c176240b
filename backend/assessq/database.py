"""SQLite database setup and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import settings, DATA_DIR


def _default_url() -> str:
    DATA_DIR.mkdir(exist_ok=True)
    return f"sqlite:///{DATA_DIR / 'assessq.db'}"


DATABASE_URL = settings.database_url or _default_url()


def create_db_engine(url: str):
    """Create an engine, applying SQLite-specific settings where needed."""
    connect_args = {}
    if url.startswith("sqlite"):
        # Workers share the engine across threads
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, echo=False)


engine = create_db_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database tables."""
    # Import all models to ensure they're registered with Base
    from .models import candidate, assessment, queue  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
