# backend/stashbook/services/products_service.py
"""
Products Service

Products are reference data owned by the catalogue; the ledger and the
deposit workflow only point at them. Creation exists so references can be
satisfied; there is no update or delete.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..validation import NotFoundError, optional_text, require_text


def create_product(name, image_url=None) -> Product:
    product = Product(
        name=require_text(name, "name"),
        image_url=optional_text(image_url, "image_url", max_length=1024),
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    return product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_products(include_inactive: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.name, Product.id).all()
