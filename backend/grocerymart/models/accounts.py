from __future__ import annotations

from ..extensions import db
from grocerymart.time_utils import to_utc_z, utcnow


ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)


class Account(db.Model):
    """
    Shopper (or admin) account.

    REFERRAL GRAPH: parent_id is a weak back-reference to the referring
    account. Many accounts may point at one parent; nothing cascades through
    it. referral_level is parent.referral_level + 1 and never exceeds the
    configured maximum depth (12).

    BALANCE: credit_balance_cents is mutated only through ledger_service,
    which uses conditional UPDATEs so the balance can never go negative.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_accounts_email"),
        db.UniqueConstraint("referral_code", name="uq_accounts_referral_code"),
        db.CheckConstraint("credit_balance_cents >= 0", name="ck_accounts_balance_non_negative"),
        db.CheckConstraint("referral_level >= 0 AND referral_level <= 12", name="ck_accounts_referral_level"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(255), nullable=False, index=True)
    contact = db.Column(db.String(32), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=ROLE_USER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    credit_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    # Weak reference: lookup only, no ownership
    parent_id = db.Column(
        db.Integer,
        db.ForeignKey("accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    referral_level = db.Column(db.Integer, nullable=False, default=0)
    referral_code = db.Column(db.String(16), nullable=True)
    total_referrals = db.Column(db.Integer, nullable=False, default=0)

    # Purchase gate (NULL = may purchase now)
    next_purchase_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    parent = db.relationship("Account", remote_side=[id], backref=db.backref("referrals", lazy=True))

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def can_make_purchase(self, now=None) -> bool:
        if self.next_purchase_date is None:
            return True
        return (now or utcnow()) >= self.next_purchase_date

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "contact": self.contact,
            "role": self.role,
            "is_active": self.is_active,
            "credit_balance_cents": self.credit_balance_cents,
            "parent_id": self.parent_id,
            "referral_level": self.referral_level,
            "referral_code": self.referral_code,
            "total_referrals": self.total_referrals,
            "can_purchase": self.can_make_purchase(),
            "next_purchase_date": to_utc_z(self.next_purchase_date),
            "created_at": to_utc_z(self.created_at),
        }


class CreditTransaction(db.Model):
    """
    Append-only journal of credit balance changes.

    Written in the same DB transaction as the balance UPDATE it records.
    amount_cents is positive for credits, negative for debits.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.Index("ix_credit_txns_account_occurred", "account_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    # REFERRAL_BONUS, REFERRAL_ROOT_BONUS, ORDER_PAYMENT, ORDER_REFUND, RETURN_REFUND, ADJUSTMENT
    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("return_requests.id"), nullable=True, index=True)
    related_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    account = db.relationship(
        "Account",
        foreign_keys=[account_id],
        backref=db.backref("credit_transactions", lazy=True),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "reason": self.reason,
            "order_id": self.order_id,
            "return_id": self.return_id,
            "related_account_id": self.related_account_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class SessionToken(db.Model):
    """
    Opaque bearer session. Only the SHA-256 hash of the token is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    account = db.relationship("Account", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
