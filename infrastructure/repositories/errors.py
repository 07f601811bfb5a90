"""
Translation of driver-level failures into domain storage errors.
"""
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from core.logging_config import get_logger
from domain.common.exceptions import StorageException


logger = get_logger(__name__)


@contextmanager
def storage_errors(operation: str, **context):
    """Log a SQLAlchemy failure and re-raise it as StorageException."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("storage_operation_failed", operation=operation, error=str(exc), **context)
        raise StorageException(operation, type(exc).__name__) from exc
