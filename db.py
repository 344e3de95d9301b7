import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from config import settings

from utils.structured_logging import get_logger, LogCategory

logger = get_logger("database")

# Test-friendly engine: use SQLite when NODE_ENV=test
if os.getenv("NODE_ENV", settings.NODE_ENV) == "test":
    engine = create_engine(settings.SQLALCHEMY_TEST_DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        settings.POSTGRES_URL,
        poolclass=QueuePool,
        pool_size=20,  # Number of connections to maintain in the pool
        max_overflow=30,  # Additional connections beyond pool_size
        pool_pre_ping=True,  # Validate connections before use
        pool_recycle=3600,  # Recycle connections every hour
        pool_timeout=30,  # Timeout for getting connection from pool
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "application_name": "quiz_mastery_api",
        },
    )


@event.listens_for(engine, "connect")
def set_postgresql_settings(dbapi_connection, connection_record):
    """Configure connection-level settings"""
    if engine.dialect.name != "postgresql":
        return
    cursor = dbapi_connection.cursor()
    try:
        # Stop runaway analytics queries
        cursor.execute("SET statement_timeout = '30s'")
    except Exception as e:
        # Log but don't fail if the setting can't be applied
        logger.warning(f"Could not apply PostgreSQL settings: {e}", category=LogCategory.DATABASE)
    finally:
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create any missing tables (local development and scripts; production uses alembic)"""
    from models import Base

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ensured", category=LogCategory.DATABASE)
