"""
Database connection and session management
Supports PostgreSQL with SQLite for local development and tests
"""
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()

# Database configuration
DATABASE_AVAILABLE = False
engine = None
SessionLocal = None


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def init_database():
    """Initialize database connection"""
    global engine, SessionLocal, DATABASE_AVAILABLE

    url = settings.DATABASE_URL
    try:
        if url.startswith("postgresql"):
            engine = create_engine(
                url,
                pool_pre_ping=True,  # Verify connections before using
                pool_recycle=3600,   # Recycle connections after 1 hour
                pool_size=5,
                max_overflow=10,
                echo=settings.DEBUG,
                connect_args={"connect_timeout": 10},
            )
            # Test connection
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("PostgreSQL connection established")
        elif _is_memory_sqlite(url):
            # One shared connection so every session sees the same in-memory database
            engine = create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=settings.DEBUG,
            )
            logger.info("Using in-memory SQLite database")
        else:
            engine = create_engine(
                url,
                connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
                echo=settings.DEBUG,
            )
            logger.info(f"Using database: {engine.url.render_as_string(hide_password=True)}")

        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        DATABASE_AVAILABLE = True

    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        logger.warning("Running without database - persistence endpoints will return 503")
        DATABASE_AVAILABLE = False


# Initialize on module load
init_database()


def get_db():
    """Dependency to get database session"""
    if not DATABASE_AVAILABLE or SessionLocal is None:
        yield None
        return

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables"""
    if DATABASE_AVAILABLE and engine is not None:
        import models  # noqa: F401  (registers tables on Base.metadata)
        Base.metadata.create_all(bind=engine)
