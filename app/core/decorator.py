import logging
from functools import wraps

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import ConflictError, TransactionError

logger = logging.getLogger(__name__)


def db_exception(func):
    """Roll back and translate driver errors raised by a service write."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except IntegrityError:
            self.db.rollback()
            # almost always a duplicate slug
            raise ConflictError("Duplicate entry: already exists", 409)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error in {func.__name__}: {e}", exc_info=True)
            raise TransactionError("Database error occurred")

    return wrapper
