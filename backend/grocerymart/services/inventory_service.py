# Overview: Service-layer operations for product stock; conditional decrement and restore.

# backend/grocerymart/services/inventory_service.py

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..errors import NotFoundError, ValidationError, InsufficientStockError, ConflictError
from .concurrency import guarded_update
"""
Stock Invariants (authoritative)

- Product.stock is never negative.
- Decrement is a single conditional UPDATE (stock >= qty); a miss is reported
  as InsufficientStockError, never clamped.
- Restore is an unconditional increment.
- Neither function commits: checkout and cancellation own the transaction.
"""


def get_product(product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_active_product(product_id: int) -> Product:
    product = get_product(product_id)
    if not product.is_active:
        raise ValidationError(f"Product {product_id} is not available", details={"product_id": product_id})
    return product


def decrement_stock(product_id: int, quantity: int) -> None:
    if quantity <= 0:
        raise ValidationError("Quantity must be at least 1")

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
    )
    if guarded_update(stmt):
        return

    on_hand = db.session.query(Product.stock).filter(Product.id == product_id).scalar()
    if on_hand is None:
        raise NotFoundError(f"Product {product_id} not found")
    raise InsufficientStockError(
        "Insufficient stock",
        details={"product_id": product_id, "requested_quantity": quantity, "on_hand": on_hand},
    )


def restore_stock(product_id: int, quantity: int) -> bool:
    """Put quantity back on the shelf. Returns False if the product no longer exists."""
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
    )
    if guarded_update(stmt):
        return True

    current_app.logger.warning(
        "Stock restore skipped: product %s no longer exists (quantity %s)", product_id, quantity
    )
    return False


def create_product(sku: str, name: str, price_cents: int, stock: int = 0, category: str | None = None) -> Product:
    if db.session.query(Product).filter_by(sku=sku).first():
        raise ConflictError(f"SKU {sku} already exists")

    product = Product(sku=sku, name=name, price_cents=price_cents, stock=stock, category=category)
    db.session.add(product)
    db.session.commit()
    return product


def list_products(active_only: bool = True) -> list[Product]:
    query = db.session.query(Product)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc()).all()
