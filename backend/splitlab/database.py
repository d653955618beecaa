"""Database connection and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator

from splitlab.config import get_settings

settings = get_settings()


def build_engine(database_url: str, echo: bool = False):
    """Create an engine; SQLite connections are shared with the request threadpool."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        pool_pre_ping=True,
        echo=echo,
        connect_args=connect_args
    )


# Create database engine
engine = build_engine(settings.database_url, echo=settings.debug)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get a request-scoped database session.

    Every split test operation loads the aggregate through this session,
    mutates it, and commits; nothing is cached between requests.

    Usage:
        @router.get("/split-tests/{split_test_id}")
        def read(split_test_id: str, db: Session = Depends(get_db)):
            return SplitTestStore(db).get(split_test_id)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
