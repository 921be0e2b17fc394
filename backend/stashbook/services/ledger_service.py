# Overview: Service-layer operations for the stock movement ledger; append, query, reverse.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func

from ..extensions import db
from ..identity import Actor
from ..models import (
    Container,
    LedgerImmutableError,
    MOVEMENT_REASONS,
    MOVEMENT_TYPES,
    Product,
    StockMovement,
)
from ..validation import NotFoundError, ValidationError, require_positive_quantity
from .balance_service import InsufficientBalance, balance_of
from stashbook.time_utils import utcnow
"""
Stashbook Ledger Invariants (authoritative)

- stock_movements is append-only: no updates, no deletes (enforced by ORM events).
- quantity > 0 always; sign comes from type ('in' adds, 'out' subtracts).
- reason is one of deposit, production, sale, admin_withdrawal, transfer.
- Movements are written inside the same DB transaction as the operation that
  produced them; this module only flushes, callers commit.
- created_at orders movements for display only; balances are order-independent.
"""

__all__ = [
    "LedgerImmutableError",
    "append_movement",
    "get_movement",
    "container_has_movements",
    "list_movements",
    "reverse_movement",
]


def _resolve_container(container_id: int | None) -> Container | None:
    if container_id is None:
        return None
    container = db.session.get(Container, container_id)
    if container is None:
        raise NotFoundError(f"Container {container_id} not found")
    return container


def append_movement(
    *,
    type: str,
    reason: str,
    quantity,
    product_id: int,
    actor: Actor,
    container_id: int | None = None,
    note: Optional[str] = None,
    deposit_record_id: int | None = None,
    transfer_ref: str | None = None,
    paired_movement_id: int | None = None,
    reverses_movement_id: int | None = None,
    idempotency_key: str | None = None,
    created_at: Optional[datetime] = None,
) -> StockMovement:
    """
    Append one movement to the ledger.

    - Validates quantity > 0 and the closed type/reason sets.
    - Product must exist; container must exist when given (None = global).
    - Flushes so the id is assigned; never commits.
    """
    if type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(MOVEMENT_TYPES)}")
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"reason must be one of {', '.join(MOVEMENT_REASONS)}")
    qty = require_positive_quantity(quantity)

    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")
    container = _resolve_container(container_id)

    mov = StockMovement(
        type=type,
        reason=reason,
        quantity=qty,
        product_id=product_id,
        container_id=container.id if container else None,
        container_name=container.name if container else None,
        actor_uid=actor.uid,
        actor_name=actor.display_name,
        actor_role_level=actor.role_level,
        note=note,
        deposit_record_id=deposit_record_id,
        transfer_ref=transfer_ref,
        paired_movement_id=paired_movement_id,
        reverses_movement_id=reverses_movement_id,
        idempotency_key=idempotency_key,
        created_at=created_at or utcnow(),
    )
    db.session.add(mov)
    db.session.flush()  # ensures mov.id is assigned without committing
    return mov


def get_movement(movement_id: int) -> StockMovement:
    mov = db.session.get(StockMovement, movement_id)
    if mov is None:
        raise NotFoundError(f"Movement {movement_id} not found")
    return mov


def find_by_idempotency_key(key: str) -> StockMovement | None:
    return db.session.query(StockMovement).filter_by(idempotency_key=key).first()


def container_has_movements(container_id: int) -> bool:
    count = (
        db.session.query(func.count(StockMovement.id))
        .filter(StockMovement.container_id == container_id)
        .scalar()
    )
    return bool(count)


def list_movements(
    *,
    product_id: int | None = None,
    container_id: int | None = None,
    reason: str | None = None,
    type: str | None = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    actor_text: str | None = None,
    limit: int = 20,
) -> list[StockMovement]:
    """
    Movement history, newest first.

    Date filters are inclusive on both ends. actor_text matches a substring
    of the actor name, case-insensitively.
    """
    if reason is not None and reason not in MOVEMENT_REASONS:
        raise ValidationError(f"reason must be one of {', '.join(MOVEMENT_REASONS)}")
    if type is not None and type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(MOVEMENT_TYPES)}")
    if limit <= 0:
        raise ValidationError("limit must be > 0")

    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if container_id is not None:
        q = q.filter(StockMovement.container_id == container_id)
    if reason is not None:
        q = q.filter(StockMovement.reason == reason)
    if type is not None:
        q = q.filter(StockMovement.type == type)
    if since is not None:
        q = q.filter(StockMovement.created_at >= since)
    if until is not None:
        q = q.filter(StockMovement.created_at <= until)
    if actor_text:
        q = q.filter(func.lower(StockMovement.actor_name).contains(actor_text.lower()))

    return (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def reverse_movement(movement_id: int, actor: Actor, note: str | None = None) -> StockMovement:
    """
    Append the offsetting movement for movement_id.

    Reversing an 'in' takes stock back out, so the resulting balance of the
    same product/container must stay non-negative. A movement can be
    reversed once (idempotency key reversal:<id>); reversals themselves
    cannot be reversed.
    """
    original = get_movement(movement_id)
    if original.reverses_movement_id is not None:
        raise ValidationError("A reversal cannot itself be reversed")

    key = f"reversal:{original.id}"
    if find_by_idempotency_key(key) is not None:
        raise ValidationError(f"Movement {original.id} was already reversed")

    if original.type == "in":
        available = balance_of(original.product_id, original.container_id)
        if original.quantity > available:
            raise InsufficientBalance(available=available, requested=original.quantity)

    return append_movement(
        type="out" if original.type == "in" else "in",
        reason=original.reason,
        quantity=original.quantity,
        product_id=original.product_id,
        container_id=original.container_id,
        actor=actor,
        note=note or f"Estorno do movimento #{original.id}",
        deposit_record_id=original.deposit_record_id,
        transfer_ref=original.transfer_ref,
        reverses_movement_id=original.id,
        idempotency_key=key,
    )
