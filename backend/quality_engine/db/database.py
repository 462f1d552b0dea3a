import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from quality_engine.config import get_settings

logger = logging.getLogger(__name__)

# Export variables for use in other modules
__all__ = ['DATABASE_URL', 'build_engine', 'build_session_factory', 'init_db', 'check_db_connection']

DATABASE_URL = get_settings().database_url


def build_engine(url: str = DATABASE_URL) -> Engine:
    """Create an engine; SQLite gets a thread-shareable connection, servers get a pool."""
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return create_engine(url, **options)

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False
    )


# Create SQLAlchemy engine and sessionmaker (connects lazily)
engine = build_engine()
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine = engine) -> None:
    """Initialize database tables."""
    from quality_engine.db.models import Base
    Base.metadata.create_all(bind=bind)


def check_db_connection(session_factory: sessionmaker = SessionLocal) -> bool:
    """Check if database connection is working."""
    try:
        db = session_factory()
        try:
            db.execute(text("SELECT 1"))
            return True
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Database connection error: {str(e)}")
        return False
