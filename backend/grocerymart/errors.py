# Overview: Domain error taxonomy shared by services and routes.

"""
Storefront error taxonomy.

Services raise these; routes render them as
{"error": message, "code": CODE, "details": {...}} with the class status.
Anything not in this hierarchy is treated as an internal error (500).
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for expected, caller-visible failures."""
    status_code = 400
    code = "STORE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(StoreError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"


class AuthenticationError(StoreError):
    status_code = 401
    code = "AUTHENTICATION_REQUIRED"


class ForbiddenError(StoreError):
    """Ownership or role violation."""
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(StoreError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(StoreError):
    """409-level uniqueness conflict (e.g., duplicate email)."""
    status_code = 409
    code = "CONFLICT"


class InvalidStateTransitionError(StoreError):
    code = "INVALID_STATE_TRANSITION"


class InsufficientStockError(StoreError):
    code = "INSUFFICIENT_STOCK"


class InsufficientCreditsError(StoreError):
    code = "INSUFFICIENT_CREDITS"


class InvalidReferralCodeError(StoreError):
    code = "INVALID_REFERRAL_CODE"


class ReferralChainLimitExceededError(StoreError):
    code = "REFERRAL_CHAIN_LIMIT_EXCEEDED"


class ReferralCodeUnavailableError(StoreError):
    """Every random and derived referral code candidate was taken."""
    status_code = 503
    code = "REFERRAL_CODE_UNAVAILABLE"
