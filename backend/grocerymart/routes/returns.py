# Overview: Flask API routes for return requests; parses input and returns JSON responses.

# backend/grocerymart/routes/returns.py
"""
Return Request API Routes

- Owners create returns against their delivered orders and may cancel them
  while still requested/approved
- Admins advance the status (approve, reject, ship, receive, refund)
- The return amount is always computed server-side; any client-sent
  returnAmount is ignored
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StoreError
from ..services import return_service
from ..validation import require_json_object, parse_pagination, page_count, pick
from ..decorators import require_auth, require_admin


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


def _page_payload(rows, total, page, limit) -> dict:
    return {
        "returns": [row.to_dict() for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": page_count(total, limit),
        },
    }


@returns_bp.post("")
@require_auth
def create_return_route():
    """
    Request body:
    {
        "order_id": 12,
        "product_id": 3,
        "quantity": 1,
        "reason": "damaged",
        "description": "Box was crushed"   (optional)
    }

    Returns:
        201: Return created (status: requested)
        400: quantity exceeds ordered, order not delivered, bad reason
        403: not the order owner

    Only delivered orders accept returns. This is stricter than earlier
    storefront versions: an order that is still pending, in transit or
    cancelled gets a 400 with details.order_status, and should be cancelled
    instead.
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        return_request = return_service.create_return(
            account_id=g.current_user.id,
            order_id=pick(data, "order_id", "orderId"),
            product_id=pick(data, "product_id", "productId"),
            quantity=data.get("quantity"),
            reason=data.get("reason"),
            description=data.get("description"),
        )

        return jsonify({"return": return_request.to_dict()}), 201

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return request")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("")
@require_auth
def list_my_returns_route():
    try:
        page, limit = parse_pagination(request.args, default_limit=10)
        rows, total = return_service.list_account_returns(
            g.current_user.id,
            status=request.args.get("status") or None,
            page=page,
            limit=limit,
        )
        return jsonify(_page_payload(rows, total, page, limit)), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list return requests")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/admin/all")
@require_auth
@require_admin
def list_all_returns_route():
    try:
        page, limit = parse_pagination(request.args, default_limit=20)
        rows, total = return_service.list_all_returns(
            status=request.args.get("status") or None,
            page=page,
            limit=limit,
        )
        return jsonify(_page_payload(rows, total, page, limit)), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list all return requests")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
@require_auth
def get_return_route(return_id: int):
    try:
        return_request = return_service.get_return_for(
            return_id, g.current_user.id, is_admin=g.current_user.is_admin
        )
        return jsonify({"return": return_request.to_dict()}), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get return request %s", return_id)
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.put("/<int:return_id>/status")
@require_auth
@require_admin
def update_return_status_route(return_id: int):
    """
    Request body:
    {
        "status": "refunded",
        "admin_notes": "...",          (optional)
        "refund_amount_cents": 400,    (optional, any move; stored and paid out on refunded,
                                        defaults to the return amount)
        "tracking_number": "..."       (optional)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        return_request = return_service.update_return_status(
            return_id,
            status=data.get("status"),
            admin_notes=pick(data, "admin_notes", "adminNotes"),
            refund_amount_cents=pick(data, "refund_amount_cents", "refundAmount"),
            tracking_number=pick(data, "tracking_number", "trackingNumber"),
        )

        return jsonify({"return": return_request.to_dict()}), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update return request %s", return_id)
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.put("/<int:return_id>/cancel")
@require_auth
def cancel_return_route(return_id: int):
    try:
        return_request = return_service.cancel_return(
            return_id, g.current_user.id, is_admin=g.current_user.is_admin
        )
        return jsonify({"return": return_request.to_dict(), "message": "Return request cancelled"}), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel return request %s", return_id)
        return jsonify({"error": "Internal server error"}), 500
