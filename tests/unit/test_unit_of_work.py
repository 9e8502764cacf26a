# tests/unit/test_unit_of_work.py

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from src.domain.exceptions import ConflictError, NotFoundError, TransactionFailureError
from src.infrastructure.db.unit_of_work import UnitOfWork


class FakeSession:
    def __init__(self, commit_error: Exception | None = None):
        self.commit_error = commit_error
        self.committed = False
        self.rolled_back = False

    def commit(self):
        if self.commit_error is not None:
            raise self.commit_error
        self.committed = True

    def rollback(self):
        self.rolled_back = True


def _integrity_error():
    return IntegrityError("INSERT INTO bookings ...", {}, Exception("FOREIGN KEY constraint failed"))


def _operational_error():
    return OperationalError("UPDATE card_templates ...", {}, Exception("database is locked"))


# ---------------------
# CLEAN EXIT
# ---------------------

def test_clean_exit_commits():
    session = FakeSession()

    with UnitOfWork(session):
        pass

    assert session.committed is True
    assert session.rolled_back is False


# ---------------------
# FAILURES
# ---------------------

def test_domain_error_rolls_back_and_propagates_unchanged():
    session = FakeSession()

    with pytest.raises(NotFoundError):
        with UnitOfWork(session):
            raise NotFoundError("Card template missing not found")

    assert session.rolled_back is True
    assert session.committed is False


def test_constraint_violation_is_a_conflict_not_a_retry():
    session = FakeSession()

    with pytest.raises(ConflictError) as exc_info:
        with UnitOfWork(session):
            raise _integrity_error()

    assert not isinstance(exc_info.value, TransactionFailureError)
    assert session.rolled_back is True


def test_lock_failure_at_commit_is_retryable():
    session = FakeSession(commit_error=_operational_error())

    with pytest.raises(TransactionFailureError):
        with UnitOfWork(session):
            pass

    assert session.rolled_back is True


def test_constraint_violation_at_commit_is_a_conflict():
    session = FakeSession(commit_error=_integrity_error())

    with pytest.raises(ConflictError):
        with UnitOfWork(session):
            pass

    assert session.rolled_back is True
