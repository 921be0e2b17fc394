# Overview: Flask API routes for the movement ledger; history, reversals and transfer repair.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_actor, require_role_level
from ..services import ledger_service, transfer_service
from ..services.balance_service import InsufficientBalance
from ..validation import NotFoundError, ValidationError, optional_datetime

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- since/until filtering is inclusive on both ends.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/movements")


@ledger_bp.get("")
@require_actor
def list_movements_route():
    """
    Query params:
    - product_id, container_id: int (optional)
    - reason: deposit|production|sale|admin_withdrawal|transfer (optional)
    - type: in|out (optional)
    - since, until: ISO-8601 (optional)
    - actor: substring of the actor name (optional)
    - limit: int, default 20, max 500
    """
    limit = request.args.get("limit", default=20, type=int)
    limit = max(1, min(limit, 500))

    try:
        since = optional_datetime(request.args.get("since"), "since")
        until = optional_datetime(request.args.get("until"), "until")
        movements = ledger_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            container_id=request.args.get("container_id", type=int),
            reason=request.args.get("reason") or None,
            type=request.args.get("type") or None,
            since=since,
            until=until,
            actor_text=request.args.get("actor") or None,
            limit=limit,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"items": [m.to_dict() for m in movements], "limit": limit}), 200


@ledger_bp.get("/<int:movement_id>")
@require_actor
def get_movement_route(movement_id: int):
    try:
        return jsonify(ledger_service.get_movement(movement_id).to_dict())
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@ledger_bp.post("/<int:movement_id>/reverse")
@require_actor
@require_role_level(2)
def reverse_movement_route(movement_id: int):
    data = request.get_json(silent=True) or {}
    try:
        mov = transfer_service.record_reversal(movement_id, g.actor, note=data.get("note"))
        return jsonify(mov.to_dict()), 201
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except InsufficientBalance as e:
        db.session.rollback()
        return jsonify({"error": str(e), "available": e.available, "requested": e.requested}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reverse movement")
        return jsonify({"error": "Failed to reverse movement"}), 500


@ledger_bp.get("/transfers/unpaired")
@require_actor
@require_role_level(2)
def list_unpaired_transfers_route():
    items = transfer_service.find_unpaired_transfers()
    return jsonify({"items": items, "count": len(items)})


@ledger_bp.post("/transfers/<transfer_ref>/repair")
@require_actor
@require_role_level(2)
def repair_transfer_route(transfer_ref: str):
    try:
        movements = transfer_service.repair_unpaired_transfer(transfer_ref, g.actor)
        return jsonify({"items": [m.to_dict() for m in movements]}), 201
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except InsufficientBalance as e:
        db.session.rollback()
        return jsonify({"error": str(e), "available": e.available, "requested": e.requested}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to repair transfer")
        return jsonify({"error": "Failed to repair transfer"}), 500
