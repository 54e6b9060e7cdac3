import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from app.core.config import settings
from app.models.video import Base
from app.models.view_snapshot import ViewSnapshot  # noqa: F401  Import to ensure table is created
from app.models.comment import Comment  # noqa: F401

logger = logging.getLogger(__name__)

# Database setup (lazy initialization)
_engine = None
_SessionLocal = None


def get_engine():
    global _engine
    if _engine is None:
        connect_args = {}
        if settings.db_url.startswith("sqlite"):
            # Worker, scheduler and API threads share the engine
            connect_args["check_same_thread"] = False
        _engine = create_engine(settings.db_url, connect_args=connect_args, pool_pre_ping=True)
    return _engine


def get_session_local():
    """Get database session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def init_db(engine=None):
    """Create all tables if they don't exist."""
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")


def get_db():
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
