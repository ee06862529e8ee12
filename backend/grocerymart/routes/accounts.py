# Overview: Flask API routes for credit balances, referrals and admin account actions.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StoreError
from ..services import ledger_service, referral_service, auth_service, session_service
from ..validation import require_json_object, parse_pagination, page_count, parse_int, pick
from ..decorators import require_auth, require_admin


accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


@accounts_bp.get("/me/credits")
@require_auth
def my_credits_route():
    """Balance plus the ledger journal, newest first."""
    try:
        page, limit = parse_pagination(request.args, default_limit=20)
        rows, total = ledger_service.get_credit_history(g.current_user.id, page=page, limit=limit)

        return jsonify({
            "credit_balance_cents": ledger_service.get_balance(g.current_user.id),
            "transactions": [row.to_dict() for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": page_count(total, limit),
            },
        }), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load credit history")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/me/referrals")
@require_auth
def my_referrals_route():
    try:
        account = g.current_user
        referrals = referral_service.get_direct_referrals(account.id)
        return jsonify({
            "referral_code": account.referral_code,
            "referral_level": account.referral_level,
            "total_referrals": account.total_referrals,
            "referrals": [
                {
                    "id": child.id,
                    "name": child.name,
                    "referral_level": child.referral_level,
                    "created_at": child.to_dict()["created_at"],
                }
                for child in referrals
            ],
        }), 200

    except Exception:
        current_app.logger.exception("Failed to load referrals")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/<int:account_id>/credits")
@require_auth
@require_admin
def adjust_credits_route(account_id: int):
    """
    Manual adjustment.

    Request body: {"amount_cents": -2500, "reason": "Goodwill reversal"}
    Positive amounts credit, negative amounts debit (never below zero).
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        amount_cents = parse_int(pick(data, "amount_cents", "amountCents"), "amount_cents")

        balance = ledger_service.adjust_credits(
            account_id,
            amount_cents,
            data.get("reason"),
            actor_id=g.current_user.id,
        )
        current_app.logger.info(
            "Admin %s adjusted credits of account %s by %s", g.current_user.id, account_id, amount_cents
        )
        return jsonify({"account_id": account_id, "credit_balance_cents": balance}), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust credits for account %s", account_id)
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.delete("/<int:account_id>")
@require_auth
@require_admin
def deactivate_account_route(account_id: int):
    """Soft delete: the account is deactivated and its sessions revoked."""
    try:
        account = auth_service.deactivate_account(account_id)
        revoked = session_service.revoke_all_account_sessions(account_id, reason="Account deactivated")
        return jsonify({"user": account.to_dict(), "sessions_revoked": revoked}), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate account %s", account_id)
        return jsonify({"error": "Internal server error"}), 500
