# Overview: Service-layer operations for the credit ledger; balance mutations and journal.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Account, CreditTransaction
from ..errors import ValidationError, NotFoundError, InsufficientCreditsError
from grocerymart.time_utils import utcnow
from .concurrency import guarded_update, run_atomic
"""
Credit Ledger Invariants (authoritative)

- Account.credit_balance_cents is never negative.
- Every balance change is a single conditional UPDATE (no read-then-write).
- Every balance change appends one CreditTransaction row in the same DB
  transaction, carrying a human-readable reason and the resulting balance.
- Amounts passed to add_credits / deduct_credits are strictly positive ints.
"""


TXN_REFERRAL_BONUS = "REFERRAL_BONUS"
TXN_REFERRAL_ROOT_BONUS = "REFERRAL_ROOT_BONUS"
TXN_ORDER_PAYMENT = "ORDER_PAYMENT"
TXN_ORDER_REFUND = "ORDER_REFUND"
TXN_RETURN_REFUND = "RETURN_REFUND"
TXN_ADJUSTMENT = "ADJUSTMENT"


def _require_positive_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("Credit amount must be an integer number of cents")
    if amount_cents <= 0:
        raise ValidationError("Credit amount must be greater than zero")
    return amount_cents


def _require_reason(reason: str | None) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required for every credit change")
    return reason[:255]


def _current_balance(account_id: int) -> int:
    return (
        db.session.query(Account.credit_balance_cents)
        .filter(Account.id == account_id)
        .scalar()
    )


def _journal(
    account_id: int,
    amount_cents: int,
    reason: str,
    transaction_type: str,
    order_id: int | None,
    return_id: int | None,
    related_account_id: int | None,
) -> CreditTransaction:
    txn = CreditTransaction(
        account_id=account_id,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        balance_after_cents=_current_balance(account_id),
        reason=reason,
        order_id=order_id,
        return_id=return_id,
        related_account_id=related_account_id,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    return txn


def add_credits(
    account_id: int,
    amount_cents: int,
    reason: str,
    *,
    transaction_type: str = TXN_ADJUSTMENT,
    order_id: int | None = None,
    return_id: int | None = None,
    related_account_id: int | None = None,
    commit: bool = True,
) -> int:
    """
    Credit an account and return the new balance.

    With commit=False the change joins the caller's transaction (used by
    checkout, cancellation and returns so all effects land together).
    """
    amount_cents = _require_positive_amount(amount_cents)
    reason = _require_reason(reason)

    def _op() -> int:
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values(credit_balance_cents=Account.credit_balance_cents + amount_cents)
        )
        if not guarded_update(stmt):
            raise NotFoundError(f"Account {account_id} not found")
        txn = _journal(account_id, amount_cents, reason, transaction_type,
                       order_id, return_id, related_account_id)
        return txn.balance_after_cents

    if not commit:
        return _op()
    return run_atomic(_op)


def deduct_credits(
    account_id: int,
    amount_cents: int,
    reason: str,
    *,
    transaction_type: str = TXN_ADJUSTMENT,
    order_id: int | None = None,
    return_id: int | None = None,
    commit: bool = True,
) -> int:
    """
    Debit an account and return the new balance.

    Raises InsufficientCreditsError when amount exceeds the balance; the
    balance check is part of the UPDATE's WHERE clause.
    """
    amount_cents = _require_positive_amount(amount_cents)
    reason = _require_reason(reason)

    def _op() -> int:
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                Account.credit_balance_cents >= amount_cents,
            )
            .values(credit_balance_cents=Account.credit_balance_cents - amount_cents)
        )
        if not guarded_update(stmt):
            balance = _current_balance(account_id)
            if balance is None:
                raise NotFoundError(f"Account {account_id} not found")
            raise InsufficientCreditsError(
                "Insufficient credits",
                details={"balance_cents": balance, "requested_cents": amount_cents},
            )
        txn = _journal(account_id, -amount_cents, reason, transaction_type,
                       order_id, return_id, None)
        return txn.balance_after_cents

    if not commit:
        return _op()
    return run_atomic(_op)


def adjust_credits(account_id: int, delta_cents: int, reason: str, actor_id: int | None = None) -> int:
    """Manual admin adjustment. Positive deltas credit, negative deltas debit."""
    if isinstance(delta_cents, bool) or not isinstance(delta_cents, int) or delta_cents == 0:
        raise ValidationError("amount_cents must be a non-zero integer")

    note = _require_reason(reason)
    if actor_id is not None:
        note = f"{note} (by admin {actor_id})"[:255]

    if delta_cents > 0:
        return add_credits(account_id, delta_cents, note, transaction_type=TXN_ADJUSTMENT)
    return deduct_credits(account_id, -delta_cents, note, transaction_type=TXN_ADJUSTMENT)


def get_balance(account_id: int) -> int:
    balance = _current_balance(account_id)
    if balance is None:
        raise NotFoundError(f"Account {account_id} not found")
    return balance


def get_credit_history(account_id: int, page: int = 1, limit: int = 20) -> tuple[list[CreditTransaction], int]:
    query = db.session.query(CreditTransaction).filter_by(account_id=account_id)
    total = query.count()
    rows = (
        query.order_by(CreditTransaction.occurred_at.desc(), CreditTransaction.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
        .all()
    )
    return rows, total
