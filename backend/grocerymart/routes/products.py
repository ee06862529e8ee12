# Overview: Flask API routes for the product catalog.

from flask import Blueprint, request, jsonify, current_app

from ..errors import StoreError
from ..services import inventory_service
from ..validation import require_json_object, parse_int, parse_str, MAX_PRICE_CENTS
from ..decorators import require_auth, require_admin


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    try:
        products = inventory_service.list_products(active_only=True)
        return jsonify({"products": [p.to_dict() for p in products]}), 200
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_auth
@require_admin
def create_product_route():
    """
    Request body:
    {"sku": "MILK-1L", "name": "Milk 1L", "price_cents": 6500, "stock": 40, "category": "dairy"}
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        product = inventory_service.create_product(
            sku=parse_str(data.get("sku"), "sku", max_length=64, required=True),
            name=parse_str(data.get("name"), "name", max_length=255, required=True),
            price_cents=parse_int(data.get("price_cents"), "price_cents", minimum=0, maximum=MAX_PRICE_CENTS),
            stock=parse_int(data.get("stock", 0), "stock", minimum=0),
            category=parse_str(data.get("category"), "category", max_length=64),
        )
        return jsonify({"product": product.to_dict()}), 201

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500
