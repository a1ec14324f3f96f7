"""
Database configuration and session management
"""
import logging
import time
from typing import Generator, Optional

from sqlalchemy import JSON, create_engine, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from bizflow.core.config import get_settings
from bizflow.core.logging_config import LoggingConfig
from bizflow.core.metrics import db_queries_total, db_query_duration_seconds

# Lazy initialization - don't create engine at module level
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None

Base = declarative_base()

# JSON everywhere, JSONB on PostgreSQL
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _setup_db_metrics(engine: Engine):
    """Setup SQLAlchemy event listeners for database metrics"""

    @event.listens_for(engine, "before_cursor_execute")
    def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.time())

    @event.listens_for(engine, "after_cursor_execute")
    def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        if not conn.info.get("query_start_time"):
            return
        duration = time.time() - conn.info["query_start_time"].pop()
        words = statement.strip().split(None, 1)
        operation = words[0].lower() if words else "unknown"
        if operation not in ("select", "insert", "update", "delete"):
            operation = "other"
        db_queries_total.labels(operation=operation).inc()
        db_query_duration_seconds.labels(operation=operation).observe(duration)


def get_engine() -> Engine:
    """Get or create database engine (lazy initialization)"""
    global _engine
    if _engine is None:
        settings = get_settings()
        LoggingConfig.configure()
        url = settings.database_url

        if url.startswith("sqlite"):
            _engine = create_engine(
                url,
                echo=settings.log_sqlalchemy,
                connect_args={"check_same_thread": False, "timeout": 5},
            )

            # ON DELETE CASCADE needs foreign keys switched on per connection
            @event.listens_for(_engine, "connect")
            def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
        else:
            _engine = create_engine(
                url,
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_pre_ping=True,
                echo=settings.log_sqlalchemy,
                connect_args={
                    "connect_timeout": 5,
                    "options": "-c statement_timeout=5000"
                } if url.startswith("postgresql") else {},
            )

        if not settings.log_sqlalchemy:
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

        _setup_db_metrics(_engine)

    return _engine


def get_session_local() -> sessionmaker:
    """Get or create session factory (lazy initialization)"""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def init_db():
    """Create all tables (development and tests; production uses alembic)"""
    import bizflow.models  # noqa: F401
    Base.metadata.create_all(bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
