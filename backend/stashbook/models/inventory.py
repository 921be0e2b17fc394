from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from stashbook.time_utils import to_utc_z, utcnow


MOVEMENT_TYPES = ("in", "out")
MOVEMENT_REASONS = ("deposit", "production", "sale", "admin_withdrawal", "transfer")


class LedgerImmutableError(RuntimeError):
    """Raised when a flush tries to update or delete a stock movement."""


class Product(db.Model):
    """
    Product reference data.

    Products are owned by the generic catalogue; the ledger only points at them.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    image_url = db.Column(db.String(1024), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "image_url": self.image_url,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Container(db.Model):
    """
    Named stock bucket (a shared stash).

    Deletion is gated by a reverse count over stock_movements, not by a
    foreign key, so the ledger keeps referencing containers by id only.
    """
    __tablename__ = "containers"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_containers_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Container id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only inventory movement.

    INVARIANTS:
    - quantity is always positive; direction comes from type ('in' / 'out')
    - rows are never updated or deleted; corrections append an offsetting row
    - container_id NULL means a global movement not tied to a container
    - both legs of a transfer share transfer_ref; the inbound leg also
      points at the outbound one through paired_movement_id
    """
    __tablename__ = "stock_movements"

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(8), nullable=False, index=True)
    reason = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    # Plain column: container deletion is checked by reverse count
    container_id = db.Column(db.Integer, nullable=True, index=True)
    container_name = db.Column(db.String(128), nullable=True)

    actor_uid = db.Column(db.String(128), nullable=False)
    actor_name = db.Column(db.String(255), nullable=True)
    actor_role_level = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(500), nullable=True)

    # Back-references (no FK so deposit deletion leaves the ledger intact)
    deposit_record_id = db.Column(db.Integer, nullable=True, index=True)
    transfer_ref = db.Column(db.String(32), nullable=True, index=True)
    paired_movement_id = db.Column(db.Integer, nullable=True)
    reverses_movement_id = db.Column(db.Integer, nullable=True, index=True)

    idempotency_key = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")

    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("type IN ('in', 'out')", name="ck_stock_movements_type"),
        db.UniqueConstraint("idempotency_key", name="uq_stock_movements_idempotency_key"),
        db.Index("ix_stock_movements_product_container", "product_id", "container_id"),
        db.Index("ix_stock_movements_product_reason_created", "product_id", "reason", "created_at"),
        {"sqlite_autoincrement": True},
    )

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.type == "in" else -self.quantity

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} {self.type} {self.reason} qty={self.quantity} "
            f"product_id={self.product_id} container_id={self.container_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "reason": self.reason,
            "quantity": self.quantity,
            "product_id": self.product_id,
            "container_id": self.container_id,
            "container_name": self.container_name,
            "actor": {
                "uid": self.actor_uid,
                "name": self.actor_name,
                "role_level": self.actor_role_level,
            },
            "note": self.note,
            "deposit_record_id": self.deposit_record_id,
            "transfer_ref": self.transfer_ref,
            "paired_movement_id": self.paired_movement_id,
            "reverses_movement_id": self.reverses_movement_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    state = inspect(target)
    for attr in mapper.column_attrs:
        if state.attrs[attr.key].history.has_changes():
            raise LedgerImmutableError(
                f"Stock movement {target.id} is immutable; append an offsetting movement instead"
            )


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Stock movement {target.id} cannot be deleted")
