# backend/grocerymart/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///grocerymart.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Referral reward policy (all amounts in cents)
    REFERRAL_DIRECT_BONUS_CENTS = _env_int("REFERRAL_DIRECT_BONUS_CENTS", 5000)
    REFERRAL_ROOT_BONUS_CENTS = _env_int("REFERRAL_ROOT_BONUS_CENTS", 10000)
    REFERRAL_MAX_DEPTH = _env_int("REFERRAL_MAX_DEPTH", 12)
    # When the chain is a single hop the direct parent is also the root.
    # False pays only the direct bonus in that case.
    REFERRAL_PAY_BOTH_BONUSES_TO_SOLE_ANCESTOR = _env_bool(
        "REFERRAL_PAY_BOTH_BONUSES_TO_SOLE_ANCESTOR", False
    )
    REFERRAL_CODE_LENGTH = _env_int("REFERRAL_CODE_LENGTH", 8)
    REFERRAL_CODE_ATTEMPTS = _env_int("REFERRAL_CODE_ATTEMPTS", 10)

    # 0 disables the purchase gate
    PURCHASE_COOLDOWN_DAYS = _env_int("PURCHASE_COOLDOWN_DAYS", 0)

    # Refunded returns are settled as store credit (no payment gateway)
    RETURN_REFUND_TO_CREDITS = _env_bool("RETURN_REFUND_TO_CREDITS", True)

    SESSION_ABSOLUTE_TIMEOUT_HOURS = _env_int("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
    SESSION_IDLE_TIMEOUT_HOURS = _env_int("SESSION_IDLE_TIMEOUT_HOURS", 2)

    # bcrypt cost factor; tests lower it
    BCRYPT_LOG_ROUNDS = _env_int("BCRYPT_LOG_ROUNDS", 12)

    # Storefront dev servers allowed to call the API from the browser
    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",")
        if origin.strip()
    )
