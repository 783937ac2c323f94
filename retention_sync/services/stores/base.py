"""
Shared plumbing for the record stores.

Stores open one session per operation from a session factory; sessions are
never shared between worker threads. Constraint violations are classified by
SQLSTATE where the driver exposes one, with a message match fallback that
also covers SQLite.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from retention_sync.services.errors import ParentMissingError, PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"

_UNIQUE_MARKERS = ("duplicate key", "unique constraint", "already exists")
_FOREIGN_KEY_MARKERS = ("foreign key", "violates foreign key constraint")


class Violation(str, Enum):
    UNIQUE = "unique"
    FOREIGN_KEY = "foreign_key"
    OTHER = "other"


def classify_integrity_error(error: Exception) -> Violation:
    """Classify a constraint violation as unique, foreign key, or other."""
    orig = getattr(error, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == UNIQUE_VIOLATION:
        return Violation.UNIQUE
    if code == FOREIGN_KEY_VIOLATION:
        return Violation.FOREIGN_KEY

    message = str(orig if orig is not None else error).lower()
    if any(marker in message for marker in _FOREIGN_KEY_MARKERS):
        return Violation.FOREIGN_KEY
    if any(marker in message for marker in _UNIQUE_MARKERS):
        return Violation.UNIQUE
    return Violation.OTHER


class BaseStore:
    """Holds the session factory and opens a fresh session per call."""

    def __init__(self, session_factory: sessionmaker | None = None):
        if session_factory is None:
            from retention_sync.database import get_session_factory

            session_factory = get_session_factory()
        self.session_factory = session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def write(self, apply: Callable[[Session], T], entity_id: str | None = None) -> T:
        """
        Run `apply` in a fresh session and commit.

        A unique violation means a concurrent writer inserted the same row
        between our read and our insert; the whole unit is replayed once, and
        the replay sees the row and updates it.

        Raises:
            ParentMissingError: foreign key violation
            PersistenceError: anything else
        """
        for attempt in (1, 2):
            db = self.session_factory()
            try:
                result = apply(db)
                db.commit()
                return result
            except IntegrityError as e:
                db.rollback()
                violation = classify_integrity_error(e)
                if violation == Violation.UNIQUE and attempt == 1:
                    logger.debug(f"Unique conflict on {entity_id}, retrying as update")
                    continue
                if violation == Violation.FOREIGN_KEY:
                    raise ParentMissingError(f"referenced parent row missing: {e.orig}", entity_id=entity_id) from e
                raise PersistenceError(f"constraint violation: {e.orig}", entity_id=entity_id) from e
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"database error: {e}", entity_id=entity_id) from e
            finally:
                db.close()

        raise PersistenceError("write failed without exception", entity_id=entity_id)

