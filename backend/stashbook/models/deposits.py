from __future__ import annotations

from ..extensions import db
from stashbook.time_utils import to_utc_z, utcnow


class SequenceCounter(db.Model):
    """
    Atomic per-scope counters (one row per folder number).

    last_value holds the last integer handed out; it is only changed by
    sequence_service through a single UPDATE ... SET last_value = last_value + 1.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("scope_key", name="uq_sequence_counters_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_key = db.Column(db.String(32), nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "scope_key": self.scope_key,
            "last_value": self.last_value,
            "updated_at": to_utc_z(self.updated_at),
        }


class DepositRecord(db.Model):
    """
    A member's claim of contributed resources, reviewed by admins.

    STATUS FLAGS:
    Four independent booleans (meta_paid, manufactured, confirmed_flag, refused)
    plus the legacy single `confirmed`, which always mirrors confirmed_flag.
    The effective status is derived, never stored (see deposit_policy).
    """
    __tablename__ = "deposit_records"
    __table_args__ = (
        db.UniqueConstraint("deposit_identifier", name="uq_deposit_records_identifier"),
        db.Index("ix_deposit_records_creator_created", "created_by_uid", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    deposit_identifier = db.Column(db.String(32), nullable=False)
    deposit_seq = db.Column(db.Integer, nullable=False)
    folder_number = db.Column(db.String(16), nullable=False)

    created_by_uid = db.Column(db.String(128), nullable=False, index=True)
    created_by_name = db.Column(db.String(255), nullable=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    efedrina = db.Column(db.Integer, nullable=False, default=0)
    po_aluminio = db.Column(db.Integer, nullable=False, default=0)
    embalagem_plastica = db.Column(db.Integer, nullable=False, default=0)
    folhas_papel = db.Column(db.Integer, nullable=False, default=0)
    valor_dinheiro = db.Column(db.Integer, nullable=False, default=0)

    note = db.Column(db.String(500), nullable=True)

    proof_url = db.Column(db.String(1024), nullable=True)
    proof_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    meta_paid = db.Column(db.Boolean, nullable=False, default=False)
    manufactured = db.Column(db.Boolean, nullable=False, default=False)
    confirmed_flag = db.Column(db.Boolean, nullable=False, default=False)
    refused = db.Column(db.Boolean, nullable=False, default=False)
    # Legacy single flag, kept equal to confirmed_flag
    confirmed = db.Column(db.Boolean, nullable=False, default=False)

    # ISO week the weekly paid aggregate was credited under (audit)
    meta_paid_week = db.Column(db.String(10), nullable=True)

    last_status_by_uid = db.Column(db.String(128), nullable=True)
    last_status_by_name = db.Column(db.String(255), nullable=True)
    last_status_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<DepositRecord id={self.id} identifier={self.deposit_identifier!r}>"

    def to_dict(self) -> dict:
        from stashbook.services.deposit_policy import effective_status, flags_of

        return {
            "id": self.id,
            "deposit_identifier": self.deposit_identifier,
            "deposit_seq": self.deposit_seq,
            "folder_number": self.folder_number,
            "created_by_uid": self.created_by_uid,
            "created_by_name": self.created_by_name,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "efedrina": self.efedrina,
            "po_aluminio": self.po_aluminio,
            "embalagem_plastica": self.embalagem_plastica,
            "folhas_papel": self.folhas_papel,
            "valor_dinheiro": self.valor_dinheiro,
            "note": self.note,
            "proof_url": self.proof_url,
            "proof_expires_at": to_utc_z(self.proof_expires_at),
            "meta_paid": self.meta_paid,
            "manufactured": self.manufactured,
            "confirmed_flag": self.confirmed_flag,
            "refused": self.refused,
            "confirmed": self.confirmed,
            "status": effective_status(flags_of(self)),
            "meta_paid_week": self.meta_paid_week,
            "last_status_by_uid": self.last_status_by_uid,
            "last_status_by_name": self.last_status_by_name,
            "last_status_at": to_utc_z(self.last_status_at),
            "created_at": to_utc_z(self.created_at),
        }


class WeeklyPaidAggregate(db.Model):
    """
    Paid totals for one member in one ISO week.

    Primary key is the persisted "<uid>_<isoWeek>" string. Written only by the
    deposit state machine through weekly_paid_service.
    """
    __tablename__ = "weekly_paid_aggregates"

    id = db.Column(db.String(160), primary_key=True)
    user_uid = db.Column(db.String(128), nullable=False, index=True)
    iso_week = db.Column(db.String(10), nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    entries = db.relationship(
        "WeeklyPaidEntry",
        backref="aggregate",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="WeeklyPaidEntry.resource_key",
    )

    def totals(self) -> dict[str, int]:
        return {entry.resource_key: entry.quantity for entry in self.entries}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_uid": self.user_uid,
            "iso_week": self.iso_week,
            "totals": self.totals(),
            "updated_at": to_utc_z(self.updated_at),
        }


class WeeklyPaidEntry(db.Model):
    __tablename__ = "weekly_paid_entries"
    __table_args__ = (
        db.UniqueConstraint("aggregate_id", "resource_key", name="uq_weekly_paid_entries_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    aggregate_id = db.Column(db.String(160), db.ForeignKey("weekly_paid_aggregates.id"), nullable=False, index=True)
    resource_key = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
