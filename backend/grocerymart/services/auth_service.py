# Overview: Service-layer operations for accounts and registration.

"""
Account Registration and Authentication

Registration is the entry point of the referral program:
1. Validate input and email uniqueness
2. Resolve the optional referral code (hard failure if unknown or too deep)
3. Persist the account with parent_id / referral_level and its own code
4. Commit, then run the reward distributor (failures there are logged only)

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12 by default)
- Minimum 8 characters with at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Account
from ..models.accounts import ROLE_USER, ROLES
from ..errors import ValidationError, ConflictError, NotFoundError
from . import referral_service


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    code = "WEAK_PASSWORD"


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Hash password using bcrypt (cost from BCRYPT_LOG_ROUNDS, validated first)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except (ValueError, TypeError):
        return False


def normalize_email(email: str | None) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email")
    return email


def _clean_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if len(name) > 50:
        raise ValidationError("Name cannot be more than 50 characters")
    return name


def _clean_contact(contact: str | None) -> str | None:
    if contact is None:
        return None
    contact = str(contact).strip()
    if len(contact) > 32:
        raise ValidationError("Contact cannot be more than 32 characters")
    return contact or None


def register_account(
    name: str,
    email: str,
    password: str,
    contact: str | None = None,
    referral_code: str | None = None,
    role: str = ROLE_USER,
) -> Account:
    """
    Create a new account, optionally attached to a referrer.

    Raises:
        ValidationError / PasswordValidationError: bad input
        ConflictError: email already registered
        InvalidReferralCodeError: code does not resolve to an account
        ReferralChainLimitExceededError: new account would exceed max depth
    """
    name = _clean_name(name)
    email = normalize_email(email)
    contact = _clean_contact(contact)
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role}")

    if db.session.query(Account.id).filter_by(email=email).first():
        raise ConflictError("User already exists with this email")

    referrer = referral_service.resolve_referrer(referral_code)

    account = Account(
        name=name,
        email=email,
        contact=contact,
        password_hash=hash_password(password),
        role=role,
        credit_balance_cents=0,
        parent_id=referrer.id if referrer else None,
        referral_level=(referrer.referral_level + 1) if referrer else 0,
    )

    try:
        db.session.add(account)
        db.session.flush()
        referral_service.assign_referral_code(account)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User already exists with this email")
    except Exception:
        db.session.rollback()
        raise

    if account.parent_id is not None:
        referral_service.distribute_referral_rewards(account.id)

    return account


def authenticate(email: str, password: str) -> Account | None:
    """Return the active account for these credentials, or None."""
    if not email or not password:
        return None
    account = db.session.query(Account).filter_by(email=email.strip().lower()).first()
    if not account or not account.is_active:
        return None
    if not verify_password(password, account.password_hash):
        return None
    return account


def get_account(account_id: int) -> Account:
    account = db.session.query(Account).filter_by(id=account_id).first()
    if not account:
        raise NotFoundError(f"Account {account_id} not found")
    return account


def update_profile(account_id: int, name: str | None = None, contact: str | None = None) -> Account:
    account = get_account(account_id)
    if name is not None:
        account.name = _clean_name(name)
    if contact is not None:
        account.contact = _clean_contact(contact)
    db.session.commit()
    return account


def deactivate_account(account_id: int) -> Account:
    """Soft delete: orders and referral links keep pointing at the row."""
    account = get_account(account_id)
    account.is_active = False
    db.session.commit()
    return account
