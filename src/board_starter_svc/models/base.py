from typing import Iterator, Optional

from fastapi import HTTPException, Request, status
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from board_starter_svc.config import DatabaseOption, Settings

Base = declarative_base()


def build_engine(settings: Settings) -> Optional[Engine]:
    """
    Create the SQLAlchemy engine for the configured database backend.

    Returns None when the service runs without a database.
    """
    url = settings.database_url()
    if settings.database == DatabaseOption.NONE:
        return None
    if settings.database == DatabaseOption.MEMORY:
        # One shared connection, otherwise every checkout sees an empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if settings.database == DatabaseOption.SQLITE:
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def build_session_factory(engine: Optional[Engine]) -> Optional[sessionmaker]:
    if engine is None:
        return None
    return sessionmaker(autoflush=False, bind=engine)


def get_db(request: Request) -> Iterator[Session]:
    """
    Yield a request-scoped database session.
    """
    factory = request.app.state.session_factory
    if factory is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail="No database configured")
    db = factory()
    try:
        yield db
    finally:
        db.close()
