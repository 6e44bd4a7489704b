from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import logging
import os
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Check if running in serverless environment (Vercel)
IS_SERVERLESS = os.getenv("VERCEL") == "1" or os.getenv("AWS_LAMBDA_FUNCTION_NAME") is not None

# Priority: Hosted Postgres > DATABASE_URL (Postgres or SQLite) > in-memory SQLite (serverless) > SQLite file
POSTGRES_URL = os.getenv("POSTGRES_URL")
DATABASE_URL = os.getenv("DATABASE_URL")

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))


def normalize_database_url(url: str) -> str:
    # SQLAlchemy only accepts the postgresql:// scheme
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


if POSTGRES_URL or (DATABASE_URL and DATABASE_URL.startswith("postgres")):
    SQLALCHEMY_DATABASE_URL = normalize_database_url(POSTGRES_URL or DATABASE_URL)
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        echo=False,
        pool_size=DB_POOL_SIZE,
        pool_pre_ping=True,  # Verify connections before using them
        pool_recycle=DB_POOL_RECYCLE,
    )
    logger.info("Using PostgreSQL database")
elif (DATABASE_URL and is_memory_sqlite(DATABASE_URL)) or (IS_SERVERLESS and not DATABASE_URL):
    SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
    # StaticPool makes every session share the one in-memory database
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    logger.warning("Using in-memory SQLite (data will not persist)")
else:
    SQLALCHEMY_DATABASE_URL = DATABASE_URL or "sqlite:///./noteearly.db"
    connect_args = {}
    if "sqlite" in SQLALCHEMY_DATABASE_URL:
        connect_args = {"check_same_thread": False}
    engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args)
    logger.info("Using SQLite database (local development)")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create any missing tables for the registered models."""
    # Importing the models registers them on Base.metadata
    from noteearly.models import schema  # noqa: F401

    Base.metadata.create_all(bind=engine)
