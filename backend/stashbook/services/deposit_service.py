# Overview: Service-layer operations for deposit records and their approval flags.

"""
Deposit Workflow

CREATE:
- Quantities are validated (non-negative, at least one positive)
- The "<folder>-<seq>" identifier is allocated inside the same transaction
  as the insert, so a failed insert never burns a sequence value
- All flags start false; a "submitted" notification is sent after commit

TOGGLE:
1. Lock the record row (FOR UPDATE where supported, version_id otherwise)
2. Ask deposit_policy what the transition implies
3. Write the flag, mirror legacy `confirmed`, stamp last_status_*
4. Apply the ledger movement and weekly aggregate delta, same transaction
5. Commit, then notify; relay failures become warnings, never rollbacks
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import and_, not_, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..identity import Actor
from ..models import DepositRecord, Product, StockMovement, WeeklyPaidAggregate
from ..validation import (
    NotFoundError,
    ValidationError,
    coerce_bool,
    optional_datetime,
    optional_text,
    require_non_negative,
    require_text,
)
from stashbook.time_utils import utcnow
from . import notification_service
from .concurrency import lock_for_update, run_with_retry
from .container_service import ensure_default_container
from .deposit_policy import (
    FLAG_COLUMNS,
    FLAGS,
    SEVERITY_SUBMITTED,
    STATUS_CONFIRMED,
    STATUS_MANUFACTURED,
    STATUS_META_PAID,
    STATUS_PENDING,
    STATUS_REFUSED,
    TransitionPlan,
    flags_of,
    plan_transition,
)
from .ledger_service import append_movement, find_by_idempotency_key
from .sequence_service import (
    allocate_sequence,
    format_deposit_identifier,
    normalize_folder_number,
    run_allocating,
)
from .weekly_paid_service import AggregateConflict, apply_paid_delta, iso_week_key, paid_totals_for


QUANTITY_FIELDS = (
    "quantity",
    "efedrina",
    "po_aluminio",
    "embalagem_plastica",
    "folhas_papel",
    "valor_dinheiro",
)

STATUSES = (STATUS_PENDING, STATUS_META_PAID, STATUS_MANUFACTURED, STATUS_CONFIRMED, STATUS_REFUSED)


@dataclass
class ToggleResult:
    deposit: DepositRecord
    plan: TransitionPlan
    movement: StockMovement | None = None
    aggregate: WeeklyPaidAggregate | None = None
    notified: bool = False
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "deposit": self.deposit.to_dict(),
            "changed": self.plan.changed,
            "movement": self.movement.to_dict() if self.movement else None,
            "weekly_paid": self.aggregate.to_dict() if self.aggregate else None,
            "notified": self.notified,
            "warnings": list(self.warnings),
        }


def deposit_idempotency_key(deposit_id: int) -> str:
    return f"deposit:{deposit_id}:confirmed"


def _clean_quantities(quantities: dict) -> dict[str, int]:
    unknown = set(quantities or {}) - set(QUANTITY_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown quantity field(s): {', '.join(sorted(unknown))}")
    clean = {name: require_non_negative((quantities or {}).get(name), name) for name in QUANTITY_FIELDS}
    if not any(value > 0 for value in clean.values()):
        raise ValidationError("At least one quantity must be greater than zero")
    return clean


def _send(record: DepositRecord, flags, severity: str, warnings: list[str]) -> bool:
    payload = notification_service.build_deposit_payload(record, flags, severity)
    try:
        outcome = notification_service.notify_deposit_event(record.created_by_uid, payload)
    except notification_service.NotificationDeliveryError as exc:
        current_app.logger.warning(
            "Notification for deposit %s failed: %s", record.deposit_identifier, exc
        )
        warnings.append(f"Notification not delivered: {exc}")
        return False
    return outcome.delivered


def create_deposit(
    creator: Actor,
    *,
    product_id: int,
    quantities: dict,
    folder_number: str | None = None,
    note: str | None = None,
    proof_url: str | None = None,
    proof_expires_at=None,
    send_notification: bool = True,
) -> tuple[DepositRecord, list[str]]:
    """
    Submit a deposit for review.

    Returns the committed record and any notification warnings.
    """
    clean = _clean_quantities(quantities)
    folder = normalize_folder_number(folder_number if folder_number is not None else creator.folder_number)
    note = optional_text(note, "note", max_length=500)
    proof_url = optional_text(proof_url, "proof_url", max_length=1024)
    proof_expires_at = optional_datetime(proof_expires_at, "proof_expires_at")

    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")

    def _op() -> DepositRecord:
        seq = allocate_sequence(folder)
        record = DepositRecord(
            deposit_identifier=format_deposit_identifier(folder, seq),
            deposit_seq=seq,
            folder_number=folder,
            created_by_uid=creator.uid,
            created_by_name=creator.display_name,
            product_id=product_id,
            note=note,
            proof_url=proof_url,
            proof_expires_at=proof_expires_at,
            meta_paid=False,
            manufactured=False,
            confirmed_flag=False,
            refused=False,
            confirmed=False,
            **clean,
        )
        db.session.add(record)
        db.session.commit()
        return record

    record = run_allocating(_op)

    warnings: list[str] = []
    if send_notification:
        _send(record, flags_of(record), SEVERITY_SUBMITTED, warnings)
    return record, warnings


def toggle_flag(
    deposit_id: int,
    flag: str,
    value,
    actor: Actor,
    *,
    send_notification: bool = True,
) -> ToggleResult:
    """
    Set one approval flag and apply exactly the side effects it implies.

    Setting a flag to its current value only re-stamps the audit fields.
    """
    if flag not in FLAGS:
        raise ValidationError(f"flag must be one of {', '.join(FLAGS)}")
    value = coerce_bool(value, "value")

    def _op() -> ToggleResult:
        record = lock_for_update(db.session.query(DepositRecord).filter_by(id=deposit_id)).first()
        if record is None:
            raise NotFoundError(f"Deposit {deposit_id} not found")

        plan = plan_transition(
            flags_of(record),
            flag,
            value,
            has_quantity=(record.quantity or 0) > 0,
        )

        for name, column in FLAG_COLUMNS.items():
            setattr(record, column, getattr(plan.next, name))
        record.confirmed = plan.next.confirmed
        record.last_status_by_uid = actor.uid
        record.last_status_by_name = actor.display_name
        record.last_status_at = utcnow()

        movement = None
        if plan.ledger_effect:
            key = deposit_idempotency_key(record.id)
            if find_by_idempotency_key(key) is None:
                container = ensure_default_container()
                movement = append_movement(
                    type="in",
                    reason="deposit",
                    quantity=record.quantity,
                    product_id=record.product_id,
                    container_id=container.id,
                    actor=actor,
                    note=f"Depósito confirmado de {record.created_by_name or record.created_by_uid} • Id {record.deposit_identifier}",
                    deposit_record_id=record.id,
                    idempotency_key=key,
                )

        aggregate = None
        if plan.aggregate_sign:
            if plan.aggregate_sign > 0:
                week = iso_week_key(record.created_at)
                record.meta_paid_week = week
            else:
                # Debit the week that was credited
                week = record.meta_paid_week or iso_week_key(record.created_at)
            aggregate = apply_paid_delta(record.created_by_uid, week, paid_totals_for(record), plan.aggregate_sign)

        db.session.commit()
        return ToggleResult(deposit=record, plan=plan, movement=movement, aggregate=aggregate)

    # IntegrityError: a concurrent toggle won the idempotency key; the retry sees it
    result = run_with_retry(_op, retry_on=(AggregateConflict, IntegrityError))

    if send_notification and result.plan.notification.send:
        result.notified = _send(
            result.deposit,
            result.plan.next,
            result.plan.notification.severity,
            result.warnings,
        )
    return result


def get_deposit(deposit_id: int) -> DepositRecord:
    record = db.session.get(DepositRecord, deposit_id)
    if record is None:
        raise NotFoundError(f"Deposit {deposit_id} not found")
    return record


def _status_clause(status: str):
    confirmed = or_(DepositRecord.confirmed_flag.is_(True), DepositRecord.confirmed.is_(True))
    refused = DepositRecord.refused.is_(True)
    manufactured = DepositRecord.manufactured.is_(True)
    meta_paid = DepositRecord.meta_paid.is_(True)

    if status == STATUS_REFUSED:
        return refused
    if status == STATUS_CONFIRMED:
        return and_(not_(refused), confirmed)
    if status == STATUS_MANUFACTURED:
        return and_(not_(refused), not_(confirmed), manufactured)
    if status == STATUS_META_PAID:
        return and_(not_(refused), not_(confirmed), not_(manufactured), meta_paid)
    return and_(not_(refused), not_(confirmed), not_(manufactured), not_(meta_paid))


def list_deposits(
    *,
    status: str | None = None,
    created_by_uid: str | None = None,
    product_id: int | None = None,
    folder_number: str | None = None,
    limit: int = 100,
) -> list[DepositRecord]:
    """Deposits newest first, filtered by derived status and/or owner."""
    if status is not None and status not in STATUSES:
        raise ValidationError(f"status must be one of {', '.join(STATUSES)}")
    if limit <= 0:
        raise ValidationError("limit must be > 0")

    q = db.session.query(DepositRecord)
    if status is not None:
        q = q.filter(_status_clause(status))
    if created_by_uid:
        q = q.filter(DepositRecord.created_by_uid == created_by_uid)
    if product_id is not None:
        q = q.filter(DepositRecord.product_id == product_id)
    if folder_number is not None:
        q = q.filter(DepositRecord.folder_number == normalize_folder_number(folder_number))

    return (
        q.order_by(DepositRecord.created_at.desc(), DepositRecord.id.desc())
        .limit(limit)
        .all()
    )


def attach_proof(deposit_id: int, url, expires_at=None) -> DepositRecord:
    """Store the proof-of-payment link handed back by the attachment store."""
    clean_url = require_text(url, "proof_url", max_length=1024)
    expires = optional_datetime(expires_at, "proof_expires_at")

    def _op() -> DepositRecord:
        record = lock_for_update(db.session.query(DepositRecord).filter_by(id=deposit_id)).first()
        if record is None:
            raise NotFoundError(f"Deposit {deposit_id} not found")
        record.proof_url = clean_url
        record.proof_expires_at = expires
        db.session.commit()
        return record

    return run_with_retry(_op)


def delete_deposit(deposit_id: int) -> str:
    """
    Remove the record only. Ledger movements and weekly aggregate entries
    it already produced stay as they are.

    Returns the deleted record's identifier.
    """
    def _op() -> str:
        record = lock_for_update(db.session.query(DepositRecord).filter_by(id=deposit_id)).first()
        if record is None:
            raise NotFoundError(f"Deposit {deposit_id} not found")
        identifier = record.deposit_identifier
        db.session.delete(record)
        db.session.commit()
        return identifier

    return run_with_retry(_op)
