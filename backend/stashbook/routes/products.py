# backend/stashbook/routes/products.py
"""
Product reference routes.

- Listing requires any actor
- Creation requires role level 2 or lower
"""
from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..decorators import require_actor, require_role_level
from ..services import products_service
from ..validation import ValidationError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_actor
def list_products():
    """
    Query params:
    - include_inactive: "true" to include inactive products
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    products = products_service.list_products(include_inactive=include_inactive)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})


@products_bp.post("")
@require_actor
@require_role_level(2)
def create_product():
    data = request.get_json(silent=True) or {}
    try:
        product = products_service.create_product(data.get("name"), data.get("image_url"))
        return jsonify(product.to_dict()), 201
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Failed to create product"}), 500
