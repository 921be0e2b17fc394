# backend/stashbook/services/transfer_service.py
"""
Stock transfer, sale, production and administrative withdrawal.

Every user-initiated stock change goes through here so debits are
checked against the ledger-derived balance immediately before the append,
inside the same DB transaction as the append.

TRANSFER:
1. Claim the source container row; the write lock is held until commit
2. Re-read BalanceOf(product, source); reject if quantity exceeds it
3. Append OUT at source and IN at destination, sharing one transfer_ref
4. Verify both legs are present before commit; otherwise roll back and
   raise PartialTransferFailure
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import func

from ..extensions import db
from ..identity import Actor
from ..models import Container, Product, StockMovement
from ..validation import NotFoundError, ValidationError, optional_text, require_positive_quantity
from .balance_service import require_available
from .concurrency import claim_row, run_with_retry
from .container_service import get_container
from .ledger_service import (
    append_movement,
    find_by_idempotency_key,
    reverse_movement,
)


class PartialTransferFailure(Exception):
    """Raised when only one leg of a transfer would be (or was) recorded."""
    pass


@dataclass
class TransferResult:
    transfer_ref: str
    out_movement: StockMovement
    in_movement: StockMovement

    def to_dict(self) -> dict:
        return {
            "transfer_ref": self.transfer_ref,
            "out": self.out_movement.to_dict(),
            "in": self.in_movement.to_dict(),
        }


def _lock_container(container_id: int) -> Container:
    if not claim_row(Container, container_id):
        raise NotFoundError(f"Container {container_id} not found")
    return db.session.get(Container, container_id)


def _lock_product(product_id: int) -> Product:
    if not claim_row(Product, product_id):
        raise NotFoundError(f"Product {product_id} not found")
    return db.session.get(Product, product_id)


def _verify_transfer_legs(transfer_ref: str, quantity: int) -> None:
    legs = (
        db.session.query(StockMovement)
        .filter(
            StockMovement.transfer_ref == transfer_ref,
            StockMovement.reverses_movement_id.is_(None),
        )
        .all()
    )
    types = sorted(leg.type for leg in legs)
    if types != ["in", "out"] or any(leg.quantity != quantity for leg in legs):
        raise PartialTransferFailure(
            f"Transfer {transfer_ref} is one-sided ({len(legs)} leg(s) recorded)"
        )


def transfer_stock(
    *,
    product_id: int,
    from_container_id: int,
    to_container_id: int,
    quantity,
    actor: Actor,
) -> TransferResult:
    """
    Move quantity of product_id between two containers.

    Raises:
        ValidationError: same container or non-positive quantity
        InsufficientBalance: quantity exceeds the source balance
        PartialTransferFailure: the two legs could not both be recorded
    """
    qty = require_positive_quantity(quantity)
    if from_container_id == to_container_id:
        raise ValidationError("Source and destination containers must be different")

    def _op():
        source = _lock_container(from_container_id)
        dest = get_container(to_container_id)
        if db.session.get(Product, product_id) is None:
            raise NotFoundError(f"Product {product_id} not found")

        # Authoritative check, same transaction as the appends
        require_available(product_id, source.id, qty)

        ref = uuid.uuid4().hex
        out_mov = append_movement(
            type="out",
            reason="transfer",
            quantity=qty,
            product_id=product_id,
            container_id=source.id,
            actor=actor,
            note=f"Transferência para: {dest.name}",
            transfer_ref=ref,
        )
        in_mov = append_movement(
            type="in",
            reason="transfer",
            quantity=qty,
            product_id=product_id,
            container_id=dest.id,
            actor=actor,
            note=f"Transferência de: {source.name}",
            transfer_ref=ref,
            paired_movement_id=out_mov.id,
        )

        _verify_transfer_legs(ref, qty)
        db.session.commit()
        return TransferResult(transfer_ref=ref, out_movement=out_mov, in_movement=in_mov)

    try:
        return run_with_retry(_op)
    except PartialTransferFailure:
        db.session.rollback()
        raise


def record_sale(
    *,
    product_id: int,
    container_id: int,
    quantity,
    actor: Actor,
    customer: str | None = None,
) -> StockMovement:
    """Single OUT movement with reason=sale, checked against the container balance."""
    qty = require_positive_quantity(quantity)
    customer = optional_text(customer, "customer")

    def _op():
        container = _lock_container(container_id)
        if db.session.get(Product, product_id) is None:
            raise NotFoundError(f"Product {product_id} not found")
        require_available(product_id, container.id, qty)

        mov = append_movement(
            type="out",
            reason="sale",
            quantity=qty,
            product_id=product_id,
            container_id=container.id,
            actor=actor,
            note=f"Venda para: {customer}" if customer else None,
        )
        db.session.commit()
        return mov

    return run_with_retry(_op)


def record_production(
    *,
    product_id: int,
    container_id: int,
    quantity,
    actor: Actor,
    note: str | None = None,
) -> StockMovement:
    """Single IN movement with reason=production."""
    qty = require_positive_quantity(quantity)
    note = optional_text(note, "note", max_length=500)

    def _op():
        mov = append_movement(
            type="in",
            reason="production",
            quantity=qty,
            product_id=product_id,
            container_id=container_id,
            actor=actor,
            note=note,
        )
        db.session.commit()
        return mov

    return run_with_retry(_op)


def record_admin_withdrawal(
    *,
    product_id: int,
    quantity,
    actor: Actor,
    container_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """
    Single OUT movement with reason=admin_withdrawal.

    With a container the debit is checked against that container; without
    one it is a global withdrawal checked against the product total.
    """
    qty = require_positive_quantity(quantity)
    note = optional_text(note, "note", max_length=500)

    def _op():
        if container_id is not None:
            _lock_container(container_id)
            if db.session.get(Product, product_id) is None:
                raise NotFoundError(f"Product {product_id} not found")
        else:
            _lock_product(product_id)
        require_available(product_id, container_id, qty)

        mov = append_movement(
            type="out",
            reason="admin_withdrawal",
            quantity=qty,
            product_id=product_id,
            container_id=container_id,
            actor=actor,
            note=note,
        )
        db.session.commit()
        return mov

    return run_with_retry(_op)


def record_reversal(movement_id: int, actor: Actor, note: str | None = None) -> StockMovement:
    """Reverse one movement and commit, holding the container lock while the balance is checked."""
    note = optional_text(note, "note", max_length=500)

    def _op():
        original = db.session.get(StockMovement, movement_id)
        if original is None:
            raise NotFoundError(f"Movement {movement_id} not found")
        if original.container_id is not None:
            _lock_container(original.container_id)
        else:
            _lock_product(original.product_id)
        mov = reverse_movement(movement_id, actor, note=note)
        db.session.commit()
        return mov

    return run_with_retry(_op)


def find_unpaired_transfers() -> list[dict]:
    """
    Transfers whose two legs are not both present and that have not been
    compensated yet.
    """
    refs = (
        db.session.query(StockMovement.transfer_ref)
        .filter(
            StockMovement.reason == "transfer",
            StockMovement.transfer_ref.isnot(None),
            StockMovement.reverses_movement_id.is_(None),
        )
        .group_by(StockMovement.transfer_ref)
        .having(func.count(StockMovement.id) != 2)
        .all()
    )

    unpaired = []
    for (ref,) in refs:
        legs = (
            db.session.query(StockMovement)
            .filter(
                StockMovement.transfer_ref == ref,
                StockMovement.reverses_movement_id.is_(None),
            )
            .order_by(StockMovement.id)
            .all()
        )
        open_legs = [leg for leg in legs if find_by_idempotency_key(f"reversal:{leg.id}") is None]
        if open_legs:
            unpaired.append({
                "transfer_ref": ref,
                "legs": [leg.to_dict() for leg in open_legs],
            })
    return unpaired


def repair_unpaired_transfer(transfer_ref: str, actor: Actor) -> list[StockMovement]:
    """
    Compensate a one-sided transfer by reversing its recorded leg(s).

    Returns the compensating movements.
    """
    def _op():
        legs = (
            db.session.query(StockMovement)
            .filter(
                StockMovement.transfer_ref == transfer_ref,
                StockMovement.reverses_movement_id.is_(None),
            )
            .order_by(StockMovement.id)
            .all()
        )
        if not legs:
            raise NotFoundError(f"Transfer {transfer_ref} not found")
        if len(legs) == 2 and sorted(leg.type for leg in legs) == ["in", "out"]:
            raise ValidationError(f"Transfer {transfer_ref} is complete; nothing to repair")

        compensations = [
            reverse_movement(leg.id, actor, note=f"Compensação de transferência incompleta {transfer_ref}")
            for leg in legs
            if find_by_idempotency_key(f"reversal:{leg.id}") is None
        ]
        if not compensations:
            raise ValidationError(f"Transfer {transfer_ref} was already compensated")
        db.session.commit()
        return compensations

    return run_with_retry(_op)
