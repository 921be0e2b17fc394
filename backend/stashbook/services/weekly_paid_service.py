# Overview: Weekly paid totals per member and ISO week; written only by the deposit state machine.

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import WeeklyPaidAggregate, WeeklyPaidEntry
from stashbook.time_utils import to_utc_naive, utcnow


# (DepositRecord attribute, persisted resource key)
RESOURCE_FIELDS = (
    ("efedrina", "efedrina"),
    ("po_aluminio", "poAluminio"),
    ("embalagem_plastica", "embalagemPlastica"),
    ("folhas_papel", "folhaPapel"),
    ("valor_dinheiro", "dinheiro"),
)


class AggregateConflict(Exception):
    """Concurrent creation of the same aggregate or entry row; retry."""
    pass


def iso_week_key(value: datetime | date) -> str:
    """ISO 8601 week id, e.g. "2025-W03" (Monday start, Thursday-anchored year)."""
    if isinstance(value, datetime):
        value = to_utc_naive(value)
    year, week, _weekday = value.isocalendar()
    return f"{year}-W{week:02d}"


def aggregate_key(user_uid: str, iso_week: str) -> str:
    return f"{user_uid}_{iso_week}"


def paid_totals_for(record) -> dict[str, int]:
    """Resource totals a deposit contributes: every field above zero."""
    totals = {}
    for attr, resource_key in RESOURCE_FIELDS:
        amount = int(getattr(record, attr) or 0)
        if amount > 0:
            totals[resource_key] = amount
    return totals


def apply_paid_delta(user_uid: str, iso_week: str, totals: dict[str, int], sign: int) -> WeeklyPaidAggregate | None:
    """
    Add (sign=+1) or remove (sign=-1) totals from the member's week.

    Each entry is bumped with a single UPDATE ... SET quantity = quantity + n.
    Entries that land on zero are removed so a credit followed by its debit
    leaves the week exactly as it was. Flushes only; the caller commits
    together with the flag change that triggered it.
    """
    if sign not in (1, -1):
        raise ValueError("sign must be +1 or -1")
    totals = {k: int(v) for k, v in totals.items() if int(v) > 0}
    if not totals:
        return None

    key = aggregate_key(user_uid, iso_week)
    aggregate = db.session.get(WeeklyPaidAggregate, key)
    if aggregate is None:
        aggregate = WeeklyPaidAggregate(id=key, user_uid=user_uid, iso_week=iso_week)
        db.session.add(aggregate)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise AggregateConflict(f"Aggregate {key} was created concurrently") from exc
    else:
        aggregate.updated_at = utcnow()

    for resource_key, amount in totals.items():
        stmt = (
            update(WeeklyPaidEntry)
            .where(
                WeeklyPaidEntry.aggregate_id == key,
                WeeklyPaidEntry.resource_key == resource_key,
            )
            .values(quantity=WeeklyPaidEntry.quantity + sign * amount)
            .execution_options(synchronize_session=False)
        )
        if not db.session.execute(stmt).rowcount:
            db.session.add(WeeklyPaidEntry(aggregate_id=key, resource_key=resource_key, quantity=sign * amount))
            try:
                db.session.flush()
            except IntegrityError as exc:
                raise AggregateConflict(f"Entry {key}/{resource_key} was created concurrently") from exc

    db.session.execute(
        delete(WeeklyPaidEntry)
        .where(WeeklyPaidEntry.aggregate_id == key, WeeklyPaidEntry.quantity == 0)
        .execution_options(synchronize_session=False)
    )
    db.session.flush()
    db.session.expire(aggregate, ["entries"])
    return aggregate


def get_weekly_totals(user_uid: str, iso_week: str) -> dict[str, int]:
    aggregate = db.session.get(WeeklyPaidAggregate, aggregate_key(user_uid, iso_week))
    if aggregate is None:
        return {}
    return aggregate.totals()


def get_aggregate(user_uid: str, iso_week: str) -> WeeklyPaidAggregate | None:
    return db.session.get(WeeklyPaidAggregate, aggregate_key(user_uid, iso_week))


def list_weekly_totals(user_uid: str) -> list[WeeklyPaidAggregate]:
    return (
        db.session.query(WeeklyPaidAggregate)
        .filter_by(user_uid=user_uid)
        .order_by(WeeklyPaidAggregate.iso_week.desc())
        .all()
    )
