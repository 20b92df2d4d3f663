import logging
import time
import urllib.parse
from datetime import datetime, timezone

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from cleannft.config import settings


logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url
if DATABASE_URL and DATABASE_URL.startswith("postgres"):
    try:
        parsed = urllib.parse.urlparse(DATABASE_URL)
        DATABASE_URL = urllib.parse.urlunparse(parsed)
    except ValueError:
        DATABASE_URL = DATABASE_URL.encode("utf-8", errors="replace").decode("utf-8")

connect_args = None
engine_kwargs = {}
if DATABASE_URL and DATABASE_URL.startswith("postgres"):
    connect_args = {
        "options": f"-c timezone=utc -c statement_timeout={settings.db_statement_timeout_ms}",
    }
    engine_kwargs["pool_timeout"] = settings.db_pool_timeout_seconds
elif DATABASE_URL and DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False, "timeout": settings.db_pool_timeout_seconds}

engine = create_engine(DATABASE_URL, connect_args=connect_args or {}, **engine_kwargs)

if engine.dialect.name == "sqlite":
    # pysqlite's own transaction handling breaks SAVEPOINT; take the write lock at BEGIN instead.
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    # Naive UTC, matching the TIMESTAMP columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def with_transaction(db: Session, fn, *, retries: int = 3, base_delay_seconds: float = 0.1):
    """
    Run fn(db) and commit.

    Transient database failures (lock timeouts, serialization errors, dropped
    connections) are retried with exponential backoff. Anything else rolls
    back and propagates to the caller.
    """
    attempt = 0
    while True:
        try:
            result = fn(db)
            db.commit()
            return result
        except OperationalError:
            db.rollback()
            attempt += 1
            if attempt >= retries:
                logger.exception("transaction failed after retries", extra={"attempts": attempt})
                raise
            delay = base_delay_seconds * (2 ** attempt)
            logger.warning(
                "transient database error; retrying transaction",
                extra={"attempt": attempt, "delay_seconds": delay},
            )
            time.sleep(delay)
        except Exception:
            db.rollback()
            raise


def check_database_health(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except OperationalError:
        logger.exception("database health check failed")
        db.rollback()
        return False
