# backend/stashbook/routes/deposits.py
"""
Deposit approval routes.

SECURITY: All routes require an actor.
- Any role level may submit deposits and see or update proof on its own
- Role level 2 or lower sees every deposit, toggles flags and deletes

Flag toggles answer 200 even when the notification relay failed; the
failure is reported under "warnings".
"""
from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..decorators import require_actor, require_role_level
from ..services import deposit_service
from ..services.deposit_service import QUANTITY_FIELDS
from ..services.sequence_service import AllocationFailed
from ..validation import NotFoundError, ValidationError, coerce_bool


deposits_bp = Blueprint("deposits", __name__, url_prefix="/api/deposits")

PRIVILEGED_LEVEL = 2


def _is_privileged() -> bool:
    return g.actor.role_level <= PRIVILEGED_LEVEL


def _can_see(record) -> bool:
    return _is_privileged() or record.created_by_uid == g.actor.uid


@deposits_bp.get("")
@require_actor
def list_deposits():
    """
    Query params:
    - status: pending|meta_paid|manufactured|confirmed|refused (optional)
    - created_by_uid: str (optional, forced to the caller below level 2)
    - product_id, folder_number (optional)
    - limit: int, default 100, max 500
    """
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    created_by_uid = request.args.get("created_by_uid") or None
    if not _is_privileged():
        created_by_uid = g.actor.uid

    try:
        records = deposit_service.list_deposits(
            status=request.args.get("status") or None,
            created_by_uid=created_by_uid,
            product_id=request.args.get("product_id", type=int),
            folder_number=request.args.get("folder_number") or None,
            limit=limit,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"items": [r.to_dict() for r in records], "count": len(records)})


@deposits_bp.post("")
@require_actor
def create_deposit():
    """
    Request body:
    {
        "product_id": int,
        "quantity" | "efedrina" | "po_aluminio" | "embalagem_plastica" |
        "folhas_papel" | "valor_dinheiro": int >= 0 (at least one > 0),
        "folder_number": str (optional, defaults to X-Actor-Folder),
        "note": str (optional),
        "proof_url": str (optional),
        "proof_expires_at": ISO-8601 (optional)
    }

    Returns:
        201: Deposit created
        400: Invalid quantities
        404: Product not found
        503: Identifier could not be allocated; retry
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("product_id") is None:
            raise ValidationError("Missing required field: product_id")
        record, warnings = deposit_service.create_deposit(
            g.actor,
            product_id=data["product_id"],
            quantities={k: data[k] for k in QUANTITY_FIELDS if k in data},
            folder_number=data.get("folder_number"),
            note=data.get("note"),
            proof_url=data.get("proof_url"),
            proof_expires_at=data.get("proof_expires_at"),
        )
        return jsonify({"deposit": record.to_dict(), "warnings": warnings}), 201
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except AllocationFailed as e:
        db.session.rollback()
        current_app.logger.warning("Deposit identifier allocation failed: %s", e)
        return jsonify({"error": str(e)}), 503
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create deposit")
        return jsonify({"error": "Failed to create deposit"}), 500


@deposits_bp.get("/<int:deposit_id>")
@require_actor
def get_deposit(deposit_id: int):
    try:
        record = deposit_service.get_deposit(deposit_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    if not _can_see(record):
        return jsonify({"error": "Permission denied"}), 403
    return jsonify(record.to_dict())


@deposits_bp.delete("/<int:deposit_id>")
@require_actor
@require_role_level(PRIVILEGED_LEVEL)
def delete_deposit(deposit_id: int):
    """Deletes the record only; ledger movements and weekly totals stay."""
    try:
        identifier = deposit_service.delete_deposit(deposit_id)
        current_app.logger.info("Deposit %s deleted by %s", identifier, g.actor.uid)
        return jsonify({"deleted": deposit_id, "deposit_identifier": identifier})
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete deposit")
        return jsonify({"error": "Failed to delete deposit"}), 500


@deposits_bp.post("/<int:deposit_id>/flags")
@require_actor
@require_role_level(PRIVILEGED_LEVEL)
def toggle_flag(deposit_id: int):
    """
    Request body:
    {
        "flag": "meta_paid" | "manufactured" | "confirmed" | "refused",
        "value": bool,
        "notify": bool (optional, default true)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        if "flag" not in data or "value" not in data:
            raise ValidationError("Missing required field(s): flag, value")
        result = deposit_service.toggle_flag(
            deposit_id,
            data["flag"],
            data["value"],
            g.actor,
            send_notification=coerce_bool(data.get("notify", True), "notify"),
        )
        return jsonify(result.to_dict()), 200
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except StaleDataError:
        db.session.rollback()
        return jsonify({"error": "Deposit was modified concurrently; reload and retry"}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to toggle deposit flag")
        return jsonify({"error": "Failed to toggle deposit flag"}), 500


@deposits_bp.post("/<int:deposit_id>/proof")
@require_actor
def attach_proof(deposit_id: int):
    """
    Request body:
    {
        "proof_url": str,
        "proof_expires_at": ISO-8601 (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        record = deposit_service.get_deposit(deposit_id)
        if not _can_see(record):
            return jsonify({"error": "Permission denied"}), 403
        record = deposit_service.attach_proof(
            deposit_id,
            data.get("proof_url"),
            data.get("proof_expires_at"),
        )
        return jsonify(record.to_dict()), 200
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to attach proof")
        return jsonify({"error": "Failed to attach proof"}), 500
