# Overview: Flask API routes for checkout and the order status machine.

# backend/grocerymart/routes/orders.py
"""
Order API Routes

DESIGN:
- Checkout prices items from the catalog; client totals are ignored
- Owners see and cancel their own orders; admins see all
- Status changes are admin-only and forward-only
- Cancellation (owner, admin, or status=cancelled) reverses stock and credits

SECURITY:
- All routes require a session token
- Ownership enforced in the service layer (403)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StoreError
from ..services import order_service
from ..validation import require_json_object, parse_pagination, page_count, pick
from ..decorators import require_auth, require_admin


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _page_payload(orders, total, page, limit) -> dict:
    return {
        "orders": [order.to_dict() for order in orders],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": page_count(total, limit),
        },
    }


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Checkout.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}, ...],
        "credits_to_use": 5000,                   (optional, cents, default 0)
        "payment_method": "credits_and_cash",     (optional, derived if omitted)
        "delivery_address": {"street": ..., "city": ..., "state": ..., "postal_code": ...},
        "notes": "Leave at the door"              (optional)
    }

    Returns:
        201: Order created (status: pending)
        400: invalid items, insufficient stock or credits
        401: unauthenticated
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        order = order_service.checkout(
            account_id=g.current_user.id,
            items=data.get("items"),
            credits_to_use=pick(data, "credits_to_use", "creditsToUse", default=0),
            payment_method=pick(data, "payment_method", "paymentMethod"),
            delivery_address=pick(data, "delivery_address", "deliveryAddress"),
            notes=data.get("notes"),
        )

        return jsonify({"order": order.to_dict()}), 201

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_my_orders_route():
    try:
        page, limit = parse_pagination(request.args, default_limit=10)
        orders, total = order_service.list_account_orders(g.current_user.id, page=page, limit=limit)
        return jsonify(_page_payload(orders, total, page, limit)), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/admin/all")
@require_auth
@require_admin
def list_all_orders_route():
    """Admin view. Optional ?status= filter."""
    try:
        page, limit = parse_pagination(request.args, default_limit=20)
        orders, total = order_service.list_all_orders(
            status=request.args.get("status") or None,
            page=page,
            limit=limit,
        )
        return jsonify(_page_payload(orders, total, page, limit)), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list all orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_for(order_id, g.current_user.id, is_admin=g.current_user.is_admin)
        return jsonify({"order": order.to_dict()}), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel an order (owner or admin).

    Returns:
        200: cancelled order; stock restored, credits refunded
        400: order already delivered or cancelled
        403: not the owner
    """
    try:
        order = order_service.cancel_order(order_id, g.current_user.id, is_admin=g.current_user.is_admin)
        return jsonify({"order": order.to_dict(), "message": "Order cancelled successfully"}), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_admin
def update_order_status_route(order_id: int):
    try:
        data = require_json_object(request.get_json(silent=True))
        order = order_service.update_order_status(order_id, data.get("status"), g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update status of order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
