from __future__ import annotations

from ..extensions import db
from grocerymart.time_utils import to_utc_z


RETURN_STATUS_REQUESTED = "requested"
RETURN_STATUS_APPROVED = "approved"
RETURN_STATUS_REJECTED = "rejected"
RETURN_STATUS_SHIPPED = "shipped"
RETURN_STATUS_RECEIVED = "received"
RETURN_STATUS_REFUNDED = "refunded"
RETURN_STATUS_CANCELLED = "cancelled"

RETURN_STATUSES = (
    RETURN_STATUS_REQUESTED,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_REJECTED,
    RETURN_STATUS_SHIPPED,
    RETURN_STATUS_RECEIVED,
    RETURN_STATUS_REFUNDED,
    RETURN_STATUS_CANCELLED,
)

# Statuses that still hold a claim on the ordered quantity
RETURN_OPEN_STATUSES = (
    RETURN_STATUS_REQUESTED,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_SHIPPED,
    RETURN_STATUS_RECEIVED,
    RETURN_STATUS_REFUNDED,
)

RETURN_REASONS = (
    "damaged",
    "defective",
    "not_as_described",
    "wrong_item",
    "changed_mind",
    "expired",
    "poor_quality",
    "other",
)


class ReturnRequest(db.Model):
    """
    Customer return request for one product line of one order.

    LIFECYCLE (one-way):
        requested -> approved -> shipped -> received -> refunded
        requested|approved -> rejected
        requested|approved -> cancelled   (owner or admin)

    Each transition stamps its own timestamp column.
    """
    __tablename__ = "return_requests"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_return_requests_number"),
        db.Index("ix_return_requests_account_requested", "account_id", "requested_at"),
        db.Index("ix_return_requests_status", "status"),
        db.CheckConstraint("quantity >= 1", name="ck_return_requests_quantity_positive"),
        db.CheckConstraint("refund_amount_cents >= 0", name="ck_return_requests_refund_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(64), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(500), nullable=True)

    # Computed at creation: quantity * ordered unit price
    return_amount_cents = db.Column(db.Integer, nullable=False)
    # None until an admin sets it; the refunded transition defaults it to return_amount_cents
    refund_amount_cents = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_REQUESTED)
    admin_notes = db.Column(db.String(500), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("return_requests", lazy=True))
    account = db.relationship("Account", backref=db.backref("return_requests", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_number": self.return_number,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "account_id": self.account_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "reason": self.reason,
            "description": self.description,
            "return_amount_cents": self.return_amount_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "status": self.status,
            "admin_notes": self.admin_notes,
            "tracking_number": self.tracking_number,
            "requested_at": to_utc_z(self.requested_at),
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "received_at": to_utc_z(self.received_at),
            "refunded_at": to_utc_z(self.refunded_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
