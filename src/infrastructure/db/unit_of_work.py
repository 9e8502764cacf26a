# src/infrastructure/db/unit_of_work.py

import logging

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from src.domain.exceptions import ConflictError, MarketplaceError, TransactionFailureError

logger = logging.getLogger(__name__)


def _translate(exc: Exception) -> MarketplaceError | None:
    # Constraint violations are permanent; lock and serialization failures are not.
    if isinstance(exc, IntegrityError):
        logger.warning("Transaction rejected by a constraint: %s", exc)
        return ConflictError("The operation conflicts with existing data.")
    if isinstance(exc, OperationalError):
        logger.warning("Transaction aborted by the database: %s", exc)
        return TransactionFailureError("The operation could not be committed. Please retry.")
    return None


class UnitOfWork:
    """
    One atomic unit against the store: commits on clean exit,
    rolls back on any exception. Reservations and booking inserts
    made through ``session`` either all land or none do.
    """

    def __init__(self, db: Session):
        self.session = db

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.session.rollback()
            translated = _translate(exc)
            if translated is not None:
                raise translated from exc
            return False

        try:
            self.session.commit()
        except (OperationalError, IntegrityError) as commit_exc:
            self.session.rollback()
            raise _translate(commit_exc) from commit_exc
        return False
