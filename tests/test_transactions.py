"""Write transactions: retry on transient contention, propagate the rest."""

import pytest
from sqlalchemy.exc import OperationalError

from helpdesk.core.errors import ConflictError, ValidationError
from helpdesk.core.transactions import is_retryable, run_in_transaction
from helpdesk.db.models import Agent


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__(f"pg error {pgcode}")
        self.pgcode = pgcode


def _operational(orig) -> OperationalError:
    return OperationalError("UPDATE tickets", {}, orig)


@pytest.mark.parametrize(
    "exc,expected",
    [
        (ConflictError("race"), True),
        (_operational(_PgError("40001")), True),
        (_operational(_PgError("40P01")), True),
        (_operational(_PgError("55P03")), True),
        (_operational(Exception("database is locked")), True),
        (_operational(_PgError("53300")), False),
        (ValidationError("bad input"), False),
        (RuntimeError("boom"), False),
    ],
)
def test_is_retryable(exc, expected):
    assert is_retryable(exc) is expected


def test_commits_result(db):
    def work(session):
        agent = Agent(name="Carol", email="carol@support.example")
        session.add(agent)
        session.flush()
        return agent.id

    agent_id = run_in_transaction(db, work)

    db.expire_all()
    assert db.get(Agent, agent_id).name == "Carol"


def test_retries_conflicts_then_succeeds(db):
    attempts = []
    sleeps = []

    def work(session):
        attempts.append(1)
        session.add(Agent(name=f"Try {len(attempts)}", email=None))
        if len(attempts) < 3:
            raise ConflictError("lost race")
        return "done"

    assert run_in_transaction(db, work, max_attempts=4, sleep=sleeps.append) == "done"
    assert len(attempts) == 3
    assert len(sleeps) == 2
    # Rolled-back attempts leave nothing behind.
    assert [a.name for a in db.query(Agent).all()] == ["Try 3"]


def test_gives_up_after_max_attempts(db):
    sleeps = []

    def work(session):
        raise ConflictError("always")

    with pytest.raises(ConflictError):
        run_in_transaction(db, work, max_attempts=3, sleep=sleeps.append)
    assert len(sleeps) == 2


def test_non_retryable_error_propagates_immediately(db):
    attempts = []

    def work(session):
        attempts.append(1)
        session.add(Agent(name="Never", email="never@support.example"))
        raise ValidationError("bad")

    with pytest.raises(ValidationError):
        run_in_transaction(db, work, sleep=lambda _: None)
    assert len(attempts) == 1
    assert db.query(Agent).count() == 0
