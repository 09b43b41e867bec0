import logging
import os
from typing import Callable, TypeVar

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from splitledger.errors import ConflictError

load_dotenv()

logger = logging.getLogger("splitledger")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./splitledger.db")

# Handle Render's postgres:// -> postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "3"))

engine = create_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

T = TypeVar("T")


def get_db() -> Session:  # type: ignore[misc]
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# SQLSTATEs worth re-running: unique_violation, serialization_failure, deadlock_detected
RETRYABLE_PGCODES = {"23505", "40001", "40P01"}
# Backends without SQLSTATEs (SQLite) only tell us through the message
RETRYABLE_MESSAGES = ("unique constraint", "duplicate key", "could not serialize", "deadlock", "database is locked")


def is_conflict(exc: DBAPIError) -> bool:
    """True if exc is a lost race that a fresh attempt could win.

    Check, foreign-key and not-null violations fail the same way every time
    and are not conflicts.
    """
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode:
        return pgcode in RETRYABLE_PGCODES
    message = str(exc.orig).lower()
    return any(fragment in message for fragment in RETRYABLE_MESSAGES)


def run_in_transaction(db: Session, operation: Callable[[], T], retries: int | None = None) -> T:
    """Run operation and commit, retrying the whole thing on conflicts.

    A conflict is a serialization failure, a deadlock, or a lost race on a
    unique key. Each attempt starts from a rolled-back session so nothing
    decided by a failed attempt survives. Any other error rolls back and
    propagates.
    """
    attempts = (MAX_RETRIES if retries is None else retries) + 1

    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            db.commit()
            return result
        except (IntegrityError, OperationalError) as exc:
            db.rollback()
            if not is_conflict(exc):
                raise
            logger.warning(
                "Transaction conflict, retrying",
                extra={"extra_data": {"attempt": attempt, "error": str(exc.orig)}},
            )
        except Exception:
            db.rollback()
            raise

    raise ConflictError("Could not apply the change because of concurrent updates, please retry")
