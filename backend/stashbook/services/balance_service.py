# Overview: Balance engine; folds the stock movement ledger into current balances.

"""
Balance Engine

Balance(product, container) = SUM(quantity where type='in') - SUM(quantity where type='out')

- Never stored; recomputed from the full ledger on every call.
- container_id=None asks for the product total across every container,
  global movements included.
- The fold is a commutative sum of signed contributions, so insertion
  order never changes the result.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Optional

from sqlalchemy import case, func

from ..extensions import db
from ..models import Container, Product, StockMovement


class InsufficientBalance(Exception):
    """Raised when a debit exceeds the available balance."""

    def __init__(self, *, available: int, requested: int, message: str | None = None):
        self.available = available
        self.requested = requested
        super().__init__(
            message
            or f"Insufficient balance. Available: {available}, requested: {requested}"
        )


def _signed_quantity():
    return case(
        (StockMovement.type == "in", StockMovement.quantity),
        else_=-StockMovement.quantity,
    )


def fold_movements(movements: Iterable) -> dict[tuple[int, Optional[int]], int]:
    """
    Pure fold of movements into {(product_id, container_id): balance}.

    Accepts StockMovement rows or any objects exposing type, quantity,
    product_id and container_id.
    """
    balances: dict[tuple[int, Optional[int]], int] = defaultdict(int)
    for mov in movements:
        signed = mov.quantity if mov.type == "in" else -mov.quantity
        balances[(mov.product_id, mov.container_id)] += signed
    return dict(balances)


def total_for_product(balances: dict[tuple[int, Optional[int]], int], product_id: int) -> int:
    return sum(v for (pid, _cid), v in balances.items() if pid == product_id)


def balance_of(product_id: int, container_id: int | None = None) -> int:
    """Net quantity of product_id, optionally scoped to one container."""
    q = db.session.query(
        func.coalesce(func.sum(_signed_quantity()), 0)
    ).filter(StockMovement.product_id == product_id)
    if container_id is not None:
        q = q.filter(StockMovement.container_id == container_id)
    return int(q.scalar() or 0)


def balances_by_container(product_id: int) -> list[dict]:
    """
    Per-container breakdown for one product: ins, outs and balance.

    Every container is listed (zero rows included), followed by a
    "global" row when the product has movements not tied to a container.
    """
    rows = (
        db.session.query(
            StockMovement.container_id,
            func.coalesce(func.sum(case((StockMovement.type == "in", StockMovement.quantity), else_=0)), 0),
            func.coalesce(func.sum(case((StockMovement.type == "out", StockMovement.quantity), else_=0)), 0),
        )
        .filter(StockMovement.product_id == product_id)
        .group_by(StockMovement.container_id)
        .all()
    )
    by_container = {cid: (int(ins), int(outs)) for cid, ins, outs in rows}

    result = []
    for container in db.session.query(Container).order_by(Container.created_at, Container.id).all():
        ins, outs = by_container.pop(container.id, (0, 0))
        result.append({
            "container_id": container.id,
            "container_name": container.name,
            "ins": ins,
            "outs": outs,
            "balance": ins - outs,
        })

    if None in by_container:
        ins, outs = by_container.pop(None)
        result.append({
            "container_id": None,
            "container_name": None,
            "ins": ins,
            "outs": outs,
            "balance": ins - outs,
        })

    # Movements pointing at containers deleted outside this service
    for cid, (ins, outs) in sorted(by_container.items()):
        result.append({
            "container_id": cid,
            "container_name": None,
            "ins": ins,
            "outs": outs,
            "balance": ins - outs,
        })
    return result


def product_totals() -> list[dict]:
    """Balance per product across all containers."""
    rows = (
        db.session.query(
            Product.id,
            Product.name,
            func.coalesce(func.sum(_signed_quantity()), 0),
        )
        .outerjoin(StockMovement, StockMovement.product_id == Product.id)
        .group_by(Product.id, Product.name)
        .order_by(Product.name)
        .all()
    )
    return [
        {"product_id": pid, "product_name": name, "balance": int(total or 0)}
        for pid, name, total in rows
    ]


def require_available(product_id: int, container_id: int | None, quantity: int) -> int:
    """Raise InsufficientBalance unless quantity fits the current balance."""
    available = balance_of(product_id, container_id)
    if quantity > available:
        raise InsufficientBalance(available=available, requested=quantity)
    return available
