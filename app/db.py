from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings


class Base(DeclarativeBase):
    pass


_engine = None


def get_engine():
    global _engine
    if _engine is None:
        url = make_url(settings.database_url)
        if url.drivername.startswith("sqlite"):
            # SQLite pools do not accept sizing arguments.
            _engine = create_engine(
                settings.database_url,
                connect_args={"check_same_thread": False},
            )
        else:
            _engine = create_engine(
                settings.database_url,
                pool_pre_ping=True,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
                pool_recycle=settings.db_pool_recycle,
            )
    return _engine


SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)


def create_all() -> None:
    """Create every OmniBridge table on the configured engine."""
    import app.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def get_db():
    """Database session dependency for FastAPI routes.

    Yields a session and closes it once the request finishes.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
