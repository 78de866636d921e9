from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from scheduling.core.clock import system_clock
from scheduling.core.errors import (
    ConflictError,
    NotFoundError,
    PinLockedError,
    PolicyViolation,
    SchedulingError,
    TransientStorageError,
    ValidationError,
)
from scheduling.database import SessionLocal, ensure_scheduling_schema
from scheduling.services.collaborators import default_payment_initiator, default_provider_management

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock():
    return system_clock


def get_payment_initiator():
    return default_payment_initiator


def get_provider_management():
    return default_provider_management


def to_http_exception(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, PinLockedError):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=exc.message,
            headers={'X-Locked-Until': exc.locked_until.isoformat()},
        )
    if isinstance(exc, (ValidationError, PolicyViolation)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    if isinstance(exc, TransientStorageError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)
