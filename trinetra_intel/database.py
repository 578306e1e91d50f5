from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from trinetra_intel.config import settings
import logging

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    # SQLite has no connection pool to size and is shared across request threads
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


# Engine is lazy: nothing connects until the database cache backend is used
engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def get_db():
    """Dependency for FastAPI routes"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """Initialize database tables"""
    # Models must be imported so they register with 'Base'
    import trinetra_intel.models  # noqa: F401
    
    logger.info("🔄 Creating verdict cache tables...")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("✓ Tables created successfully")
