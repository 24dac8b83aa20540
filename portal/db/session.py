"""
Database session management
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from portal.config import settings
from portal.models.base import Base  # Import Base from models

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    # Sessions are opened from the event loop thread and the threadpool
    connect_args["check_same_thread"] = False

# Create SQLAlchemy engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DATABASE_ECHO,
    connect_args=connect_args
)

# Create SessionLocal class
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


def init_db(bind=None) -> None:
    """
    Create the documents table if it does not exist yet
    """
    import portal.models  # noqa: F401  (registers models on Base.metadata)

    Base.metadata.create_all(bind=bind or engine)
