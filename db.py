import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from config import settings

from utils.structured_logging import get_logger, LogCategory

logger = get_logger("database")

# Test-friendly engine: use SQLite when NODE_ENV=test
if settings.NODE_ENV == "test":
    test_db_url = os.getenv("SQLALCHEMY_TEST_DATABASE_URL", "sqlite:///./test.db")
    engine = create_engine(test_db_url, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        """SQLite only enforces ON DELETE clauses when asked to"""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

else:
    engine = create_engine(
        settings.POSTGRES_URL,
        poolclass=QueuePool,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Validate connections before use
        pool_recycle=3600,
        pool_timeout=30,
        connect_args={
            "connect_timeout": 10,
            "application_name": "course_portal_api",
        },
    )

    @event.listens_for(engine, "connect")
    def set_postgresql_settings(dbapi_connection, connection_record):
        """Configure connection-level settings"""
        try:
            with dbapi_connection.cursor() as cursor:
                # Set statement timeout to prevent runaway queries
                cursor.execute("SET statement_timeout = '30s'")
        except Exception as e:
            # Log but don't fail if PostgreSQL-specific settings can't be applied
            logger.warning(f"Could not apply PostgreSQL settings: {e}", category=LogCategory.DATABASE)


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
