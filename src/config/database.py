"""
Database Configuration
SQLAlchemy engine, session factory and declarative base
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from src.config.settings import settings


def _engine_kwargs(url: str) -> dict:
    """SQLite needs check_same_thread disabled for the threaded test client"""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    **_engine_kwargs(settings.DATABASE_URL)
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    FastAPI dependency yielding a database session

    Yields:
        Session: SQLAlchemy session, closed after the request
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Import every model so the mappers resolve, then create missing tables"""
    from src.models import user, expense_report, approval, school_admin, audit_log  # noqa: F401

    Base.metadata.create_all(bind=engine)
