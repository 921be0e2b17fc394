# Overview: Service-layer operations for per-scope sequence allocation.

"""
Sequence Allocator

Deposit identifiers ("<folder>-<seq>") are read by humans and must be
unique per folder even when several members submit at the same moment.

RULES:
- One atomic UPDATE ... SET last_value = last_value + 1 per allocation,
  followed by a read-back inside the same transaction.
- First use of a scope inserts the counter row; a concurrent insert loses on
  the unique constraint and is retried, never skipped.
- Retries are bounded; exhaustion surfaces AllocationFailed.
"""

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import SequenceCounter
from ..validation import ValidationError
from stashbook.time_utils import utcnow
from .concurrency import RETRYABLE_ERRORS, run_with_retry


DEFAULT_FOLDER_NUMBER = "00"


class SequenceConflict(Exception):
    """Transient write conflict while creating or bumping a counter."""
    pass


class AllocationFailed(Exception):
    """Raised when a sequence could not be allocated within the retry bound."""
    pass


def normalize_folder_number(value) -> str:
    """Digits only, left-padded to two characters; "00" when nothing usable."""
    if value is None:
        return DEFAULT_FOLDER_NUMBER
    digits = re.sub(r"\D", "", str(value))
    if not digits:
        return DEFAULT_FOLDER_NUMBER
    return digits.zfill(2)


def format_deposit_identifier(scope_key: str, seq: int, pad: int = 2) -> str:
    return f"{scope_key}-{seq:0{pad}d}"


def allocate_sequence(scope_key: str) -> int:
    """
    Bump the counter for scope_key and return the new value.

    Runs inside the caller's transaction and does not commit. Callers must
    run it under run_allocating (or an equivalent retry loop) so conflicts
    roll back and restart the whole unit of work.
    """
    if not scope_key:
        raise ValidationError("scope_key is required")

    stmt = (
        update(SequenceCounter)
        .where(SequenceCounter.scope_key == scope_key)
        .values(last_value=SequenceCounter.last_value + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return int(
            db.session.query(SequenceCounter.last_value)
            .filter_by(scope_key=scope_key)
            .scalar()
        )

    counter = SequenceCounter(scope_key=scope_key, last_value=1)
    db.session.add(counter)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise SequenceConflict(f"Counter for scope {scope_key!r} was created concurrently") from exc
    return 1


def run_allocating(func, *, attempts: int | None = None):
    """
    Run a unit of work that allocates a sequence, with the allocator's retry
    policy. The unit of work is expected to commit on its own.
    """
    if attempts is None:
        attempts = current_app.config.get("SEQUENCE_MAX_ATTEMPTS", 8)
    try:
        return run_with_retry(
            func,
            attempts=attempts,
            backoff_base=0.05,
            retry_on=(SequenceConflict,),
        )
    except (SequenceConflict,) + RETRYABLE_ERRORS as exc:
        raise AllocationFailed(
            f"Could not allocate a sequence after {attempts} attempts; retry the request"
        ) from exc


def allocate(scope_key: str, *, attempts: int | None = None) -> int:
    """Allocate and commit the next integer for scope_key."""
    def _op() -> int:
        value = allocate_sequence(scope_key)
        db.session.commit()
        return value

    return run_allocating(_op, attempts=attempts)


def current_value(scope_key: str) -> int:
    """Last integer handed out for scope_key (0 when never used)."""
    value = (
        db.session.query(SequenceCounter.last_value)
        .filter_by(scope_key=scope_key)
        .scalar()
    )
    return int(value or 0)


def list_counters() -> list[SequenceCounter]:
    return db.session.query(SequenceCounter).order_by(SequenceCounter.scope_key).all()
