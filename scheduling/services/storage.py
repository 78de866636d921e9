import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling.core.errors import TransientStorageError

logger = logging.getLogger(__name__)

STORAGE_UNAVAILABLE = 'Booking store unavailable. Please retry.'


@contextmanager
def storage_guard(db: Session, action: str) -> Iterator[None]:
    """Roll back and translate storage failures for one operation."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Storage failure while trying to %s', action)
        raise TransientStorageError(STORAGE_UNAVAILABLE) from exc
