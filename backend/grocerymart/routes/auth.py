# Overview: Flask API routes for registration, login and the caller's profile.

# backend/grocerymart/routes/auth.py
"""
Authentication API routes

Registration is open to the public and is where a referral code is redeemed.
Responses carry an opaque session token to be sent as
"Authorization: Bearer <token>" on protected routes.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import StoreError
from ..services import auth_service
from ..services import session_service
from ..validation import require_json_object, pick
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _issue_session(account):
    return session_service.create_session(
        account_id=account.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )


@auth_bp.post("/register")
def register_route():
    """
    Create an account, optionally under a referrer.

    Request body:
    {
        "name": "Asha",
        "email": "asha@example.com",
        "password": "secret123",
        "contact": "9876543210",       (optional)
        "referral_code": "K3J9Q2ZP"     (optional)
    }

    Returns:
        201: {"user": {...}, "token": "..."}
        400: invalid input, InvalidReferralCode, ReferralChainLimitExceeded
        409: email already registered
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        account = auth_service.register_account(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            contact=data.get("contact"),
            referral_code=pick(data, "referral_code", "referralCode"),
        )
        session, token = _issue_session(account)

        return jsonify({
            "user": account.to_dict(),
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
            "message": "Registration successful",
        }), 201

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register account")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    try:
        data = require_json_object(request.get_json(silent=True))
        email = data.get("email")
        password = data.get("password")

        if not email or not password:
            return jsonify({"error": "email and password required", "code": "VALIDATION_ERROR"}), 400

        account = auth_service.authenticate(email, password)
        if not account:
            return jsonify({"error": "Invalid credentials", "code": "AUTHENTICATION_REQUIRED"}), 401

        session, token = _issue_session(account)

        return jsonify({
            "user": account.to_dict(),
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
            "message": "Login successful",
        }), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to login account")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token, reason="User logout")
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout account")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.put("/me")
@require_auth
def update_me_route():
    """Profile update: name and contact only."""
    try:
        data = require_json_object(request.get_json(silent=True))
        account = auth_service.update_profile(
            g.current_user.id,
            name=data.get("name"),
            contact=data.get("contact"),
        )
        return jsonify({"user": account.to_dict()}), 200

    except StoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500
