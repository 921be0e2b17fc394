# backend/stashbook/routes/inventory.py
"""
Container, balance and stock operation routes.

SECURITY: All routes require an actor.
- Container create/delete and admin withdrawal require role level 2 or lower
- Transfer, sale and production are open to every role level

Balances are always derived from the ledger at request time.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..extensions import db
from ..decorators import require_actor, require_role_level
from ..services import balance_service, container_service, transfer_service
from ..services.balance_service import InsufficientBalance
from ..services.container_service import ContainerInUse
from ..services.transfer_service import PartialTransferFailure
from ..validation import NotFoundError, ValidationError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")


def _insufficient(e: InsufficientBalance):
    return jsonify({
        "error": str(e),
        "available": e.available,
        "requested": e.requested,
    }), 409


def _required(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


# -----------------------------------------------------------------------------
# Containers
# -----------------------------------------------------------------------------

@inventory_bp.get("/containers")
@require_actor
def list_containers():
    containers = container_service.list_containers()
    return jsonify({"items": [c.to_dict() for c in containers], "count": len(containers)})


@inventory_bp.post("/containers")
@require_actor
@require_role_level(2)
def create_container():
    data = request.get_json(silent=True) or {}
    try:
        container = container_service.create_container(data.get("name"))
        return jsonify(container.to_dict()), 201
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create container")
        return jsonify({"error": "Failed to create container"}), 500


@inventory_bp.delete("/containers/<int:container_id>")
@require_actor
@require_role_level(2)
def delete_container(container_id: int):
    """
    Returns:
        200: Deleted
        404: Container not found
        409: Container still referenced by movements
    """
    try:
        container_service.delete_container(container_id)
        return jsonify({"deleted": container_id})
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except ContainerInUse as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete container")
        return jsonify({"error": "Failed to delete container"}), 500


# -----------------------------------------------------------------------------
# Balances
# -----------------------------------------------------------------------------

@inventory_bp.get("/balances")
@require_actor
def get_balances():
    """
    Query params:
    - product_id: int (optional) - without it, totals for every product
    - container_id: int (optional) - scope to one container
    """
    product_id = request.args.get("product_id", type=int)
    container_id = request.args.get("container_id", type=int)

    if product_id is None:
        return jsonify({"items": balance_service.product_totals()})

    return jsonify({
        "product_id": product_id,
        "container_id": container_id,
        "balance": balance_service.balance_of(product_id, container_id),
    })


@inventory_bp.get("/balances/<int:product_id>/containers")
@require_actor
def get_container_balances(product_id: int):
    rows = balance_service.balances_by_container(product_id)
    return jsonify({
        "product_id": product_id,
        "total": sum(r["balance"] for r in rows),
        "containers": rows,
    })


# -----------------------------------------------------------------------------
# Stock operations
# -----------------------------------------------------------------------------

@inventory_bp.post("/stock/transfer")
@require_actor
def transfer_stock():
    """
    Request body:
    {
        "product_id": int,
        "from_container_id": int,
        "to_container_id": int,
        "quantity": int
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        _required(data, "product_id", "from_container_id", "to_container_id", "quantity")
        result = transfer_service.transfer_stock(
            product_id=data["product_id"],
            from_container_id=data["from_container_id"],
            to_container_id=data["to_container_id"],
            quantity=data["quantity"],
            actor=g.actor,
        )
        return jsonify(result.to_dict()), 201
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except InsufficientBalance as e:
        db.session.rollback()
        return _insufficient(e)
    except PartialTransferFailure as e:
        db.session.rollback()
        current_app.logger.error("Transfer rolled back: %s", e)
        return jsonify({"error": str(e)}), 500
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Failed to transfer stock"}), 500


@inventory_bp.post("/stock/sale")
@require_actor
def record_sale():
    """
    Request body:
    {
        "product_id": int,
        "container_id": int,
        "quantity": int,
        "customer": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        _required(data, "product_id", "container_id", "quantity")
        mov = transfer_service.record_sale(
            product_id=data["product_id"],
            container_id=data["container_id"],
            quantity=data["quantity"],
            actor=g.actor,
            customer=data.get("customer"),
        )
        return jsonify(mov.to_dict()), 201
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except InsufficientBalance as e:
        db.session.rollback()
        return _insufficient(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Failed to record sale"}), 500


@inventory_bp.post("/stock/production")
@require_actor
def record_production():
    data = request.get_json(silent=True) or {}
    try:
        _required(data, "product_id", "container_id", "quantity")
        mov = transfer_service.record_production(
            product_id=data["product_id"],
            container_id=data["container_id"],
            quantity=data["quantity"],
            actor=g.actor,
            note=data.get("note"),
        )
        return jsonify(mov.to_dict()), 201
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record production")
        return jsonify({"error": "Failed to record production"}), 500


@inventory_bp.post("/stock/withdrawal")
@require_actor
@require_role_level(2)
def record_withdrawal():
    """
    Request body:
    {
        "product_id": int,
        "quantity": int,
        "container_id": int (optional, omit for a global withdrawal),
        "note": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        _required(data, "product_id", "quantity")
        mov = transfer_service.record_admin_withdrawal(
            product_id=data["product_id"],
            quantity=data["quantity"],
            actor=g.actor,
            container_id=data.get("container_id"),
            note=data.get("note"),
        )
        return jsonify(mov.to_dict()), 201
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except InsufficientBalance as e:
        db.session.rollback()
        return _insufficient(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record withdrawal")
        return jsonify({"error": "Failed to record withdrawal"}), 500
