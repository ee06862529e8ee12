# Overview: Referral chain resolution, referral codes, and the reward distributor.

"""
Referral Program

CHAIN: Accounts form a forest through parent_id (weak references). The chain
of a new account is its ancestry, nearest first: level 1 is the direct
referrer, level 2 its referrer, and so on. Traversal is iterative and stops
at the configured maximum depth (12), at a missing parent, or on a repeated
account (corrupted data), whichever comes first.

REWARD POLICY (business rule, reproduce exactly):
- level-1 ancestor: direct bonus, and its total_referrals counter += 1
- last ancestor in the chain (the root reached): root bonus
- everyone in between: nothing
When the chain has a single hop the direct referrer is also the last
ancestor; whether it also receives the root bonus is controlled by
REFERRAL_PAY_BOTH_BONUSES_TO_SOLE_ANCESTOR (default: direct bonus only).

FAILURE MODEL: distribution runs after the new account is committed. Each
payout is its own unit of work; a failed payout is logged and skipped and
never fails registration.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Account
from ..errors import (
    InvalidReferralCodeError,
    ReferralChainLimitExceededError,
    ReferralCodeUnavailableError,
)
from . import ledger_service
from .concurrency import guarded_update, run_atomic


REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class ReferralPolicy:
    direct_bonus_cents: int
    root_bonus_cents: int
    max_depth: int
    pay_both_to_sole_ancestor: bool
    code_length: int
    code_attempts: int


@dataclass(frozen=True)
class ChainLink:
    account: Account
    level: int


@dataclass(frozen=True)
class Payout:
    account_id: int
    level: int
    transaction_type: str
    amount_cents: int


def get_policy() -> ReferralPolicy:
    cfg = current_app.config
    return ReferralPolicy(
        direct_bonus_cents=cfg["REFERRAL_DIRECT_BONUS_CENTS"],
        root_bonus_cents=cfg["REFERRAL_ROOT_BONUS_CENTS"],
        max_depth=cfg["REFERRAL_MAX_DEPTH"],
        pay_both_to_sole_ancestor=cfg["REFERRAL_PAY_BOTH_BONUSES_TO_SOLE_ANCESTOR"],
        code_length=cfg["REFERRAL_CODE_LENGTH"],
        code_attempts=cfg["REFERRAL_CODE_ATTEMPTS"],
    )


# =============================================================================
# REFERRAL CODES
# =============================================================================

def generate_referral_code(length: int = 8) -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))


def derive_referral_code(account_id: int, length: int = 8) -> str:
    """Deterministic fallback derived from the account id (base 36, 'R' prefixed)."""
    encoded = _base36(account_id)
    return "R" + encoded.rjust(max(length - 1, len(encoded)), "0")


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    alphabet = string.digits + string.ascii_uppercase
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(alphabet[rem])
    return "".join(reversed(out))


def normalize_referral_code(code: str | None) -> str | None:
    if code is None:
        return None
    code = str(code).strip().upper()
    return code or None


def assign_referral_code(account: Account) -> str:
    """
    Give a persistent (flushed) account a unique referral code.

    Random codes are tried a bounded number of times; each attempt is written
    inside a SAVEPOINT so a concurrent writer taking the same code only costs
    one retry. After the attempts are spent the code is derived from the id,
    with a short suffix when a random code already took the derived value.
    """
    if account.referral_code:
        return account.referral_code

    policy = get_policy()
    for _ in range(policy.code_attempts):
        code = generate_referral_code(policy.code_length)
        if db.session.query(Account.id).filter_by(referral_code=code).first():
            continue
        try:
            with db.session.begin_nested():
                account.referral_code = code
            return code
        except IntegrityError:
            continue

    # A random code may already equal the derived one; suffix it until free.
    derived = derive_referral_code(account.id, policy.code_length)
    for attempt in range(policy.code_attempts):
        code = derived if attempt == 0 else derived + _base36(attempt)
        if db.session.query(Account.id).filter_by(referral_code=code).first():
            continue
        try:
            with db.session.begin_nested():
                account.referral_code = code
            return code
        except IntegrityError:
            continue

    raise ReferralCodeUnavailableError(
        "Could not assign a unique referral code",
        details={"account_id": account.id},
    )


# =============================================================================
# CHAIN RESOLUTION
# =============================================================================

def resolve_referrer(referral_code: str | None) -> Account | None:
    """
    Resolve the code supplied at registration.

    Returns None when no code was supplied. Raises InvalidReferralCodeError
    for an unknown code and ReferralChainLimitExceededError when the new
    account would sit deeper than the maximum depth.
    """
    code = normalize_referral_code(referral_code)
    if code is None:
        return None

    referrer = db.session.query(Account).filter_by(referral_code=code).first()
    if not referrer or not referrer.is_active:
        raise InvalidReferralCodeError("Invalid referral code")

    policy = get_policy()
    if referrer.referral_level + 1 > policy.max_depth:
        raise ReferralChainLimitExceededError(
            "Referral chain limit exceeded",
            details={"max_depth": policy.max_depth, "referrer_level": referrer.referral_level},
        )
    return referrer


def resolve_referral_chain(account: Account, max_depth: int | None = None) -> list[ChainLink]:
    """Ancestors of account, nearest first, with levels starting at 1."""
    if max_depth is None:
        max_depth = get_policy().max_depth

    chain: list[ChainLink] = []
    seen = {account.id}
    parent_id = account.parent_id

    while parent_id is not None and len(chain) < max_depth:
        if parent_id in seen:
            current_app.logger.warning(
                "Referral cycle detected at account %s while resolving chain of %s", parent_id, account.id
            )
            break
        ancestor = db.session.query(Account).filter_by(id=parent_id).first()
        if ancestor is None:
            break
        seen.add(ancestor.id)
        chain.append(ChainLink(account=ancestor, level=len(chain) + 1))
        parent_id = ancestor.parent_id

    return chain


def plan_payouts(chain: list[ChainLink], policy: ReferralPolicy) -> list[Payout]:
    """Apply the reward policy to a resolved chain (pure, no writes)."""
    payouts: list[Payout] = []
    last_level = len(chain)

    for link in chain:
        if link.level == 1:
            payouts.append(Payout(link.account.id, link.level,
                                  ledger_service.TXN_REFERRAL_BONUS, policy.direct_bonus_cents))
            if last_level == 1 and policy.pay_both_to_sole_ancestor:
                payouts.append(Payout(link.account.id, link.level,
                                      ledger_service.TXN_REFERRAL_ROOT_BONUS, policy.root_bonus_cents))
        elif link.level == last_level:
            payouts.append(Payout(link.account.id, link.level,
                                  ledger_service.TXN_REFERRAL_ROOT_BONUS, policy.root_bonus_cents))

    return payouts


# =============================================================================
# REWARD DISTRIBUTION
# =============================================================================

def _apply_payout(payout: Payout, new_account: Account) -> None:
    if payout.transaction_type == ledger_service.TXN_REFERRAL_BONUS:
        reason = f"Referral bonus for {new_account.name}"
    else:
        reason = f"Main parent bonus for {new_account.name}"

    def _op():
        if payout.amount_cents > 0:
            ledger_service.add_credits(
                payout.account_id,
                payout.amount_cents,
                reason,
                transaction_type=payout.transaction_type,
                related_account_id=new_account.id,
                commit=False,
            )
        if payout.transaction_type == ledger_service.TXN_REFERRAL_BONUS:
            guarded_update(
                update(Account)
                .where(Account.id == payout.account_id)
                .values(total_referrals=Account.total_referrals + 1)
            )

    run_atomic(_op)


def distribute_referral_rewards(new_account_id: int) -> list[Payout]:
    """
    Pay referral bonuses for a freshly committed account.

    Returns the payouts that were applied. Never raises: any failure is
    logged and the remaining payouts still run.
    """
    applied: list[Payout] = []
    try:
        new_account = db.session.query(Account).filter_by(id=new_account_id).first()
        if new_account is None or new_account.parent_id is None:
            return applied
        policy = get_policy()
        payouts = plan_payouts(resolve_referral_chain(new_account, policy.max_depth), policy)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to resolve referral chain for account %s", new_account_id)
        return applied

    for payout in payouts:
        try:
            _apply_payout(payout, new_account)
            applied.append(payout)
            current_app.logger.info(
                "Referral payout %s of %s cents to account %s (level %s) for account %s",
                payout.transaction_type, payout.amount_cents, payout.account_id, payout.level, new_account_id,
            )
        except Exception:
            db.session.rollback()
            current_app.logger.exception(
                "Referral payout %s to account %s failed for account %s",
                payout.transaction_type, payout.account_id, new_account_id,
            )

    return applied


# =============================================================================
# QUERIES / MAINTENANCE
# =============================================================================

def get_direct_referrals(account_id: int) -> list[Account]:
    return (
        db.session.query(Account)
        .filter_by(parent_id=account_id)
        .order_by(Account.created_at.desc(), Account.id.desc())
        .all()
    )


def backfill_referrals() -> dict:
    """
    One-time repair: assign missing referral codes and recompute
    referral_level from the (bounded) chain length. Reads elsewhere stay
    side-effect free; this is the only place codes are backfilled.
    """
    policy = get_policy()
    codes_assigned = 0
    levels_fixed = 0

    accounts = db.session.query(Account).order_by(Account.id.asc()).all()
    for account in accounts:
        if not account.referral_code:
            assign_referral_code(account)
            codes_assigned += 1

        level = len(resolve_referral_chain(account, policy.max_depth))
        if account.referral_level != level:
            account.referral_level = level
            levels_fixed += 1

    db.session.commit()
    return {"codes_assigned": codes_assigned, "levels_fixed": levels_fixed, "accounts_scanned": len(accounts)}
