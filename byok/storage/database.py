"""Database connection and session management."""
from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from byok.config import settings
from byok.storage.models import Base


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine for the configured database."""
    return create_engine(database_url or settings.database_url, echo=False)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)
