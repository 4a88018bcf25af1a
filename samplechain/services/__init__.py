# samplechain/services/__init__.py
"""Business operations on shipments, supplies and the custody ledger.

Every mutating operation runs inside ``atomic``: the whole unit of work
commits together or is rolled back in full.
"""

from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from samplechain.errors import ConflictError, InternalError, SampleChainError


@contextmanager
def atomic(session, operation, **details):
    """Commit the block's writes, or roll all of them back.

    Args:
        session: SQLAlchemy session the block writes through
        operation: short description used in errors and logs
        details: entity identifiers attached to any error raised
    """
    try:
        yield session
        session.commit()
    except IntegrityError as e:
        session.rollback()
        current_app.logger.warning(f"Integrity error during {operation}: {e.orig}")
        raise ConflictError(f'{operation} conflicts with an existing record', **details) from e
    except StaleDataError as e:
        session.rollback()
        current_app.logger.warning(f"Concurrent update during {operation}: {e}")
        raise ConflictError(f'{operation} lost a concurrent update, retry', **details) from e
    except SampleChainError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        current_app.logger.exception(f"DB error during {operation}: {e}")
        raise InternalError(f'{operation} failed', **details) from e
