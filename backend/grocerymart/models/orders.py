from __future__ import annotations

from ..extensions import db
from grocerymart.time_utils import to_utc_z


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_CONFIRMED = "confirmed"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"

# Linear fulfilment path, admin-advanced
ORDER_STATUS_FLOW = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
)
ORDER_STATUSES = ORDER_STATUS_FLOW + (ORDER_STATUS_CANCELLED,)
ORDER_TERMINAL_STATUSES = (ORDER_STATUS_DELIVERED, ORDER_STATUS_CANCELLED)

PAYMENT_CREDITS_ONLY = "credits_only"
PAYMENT_CASH_ONLY = "cash_only"
PAYMENT_CREDITS_AND_CASH = "credits_and_cash"
PAYMENT_METHODS = (PAYMENT_CREDITS_ONLY, PAYMENT_CASH_ONLY, PAYMENT_CREDITS_AND_CASH)


class Order(db.Model):
    """
    Checkout order document.

    SETTLEMENT (all cents):
    - subtotal_cents = sum(item.line_total_cents), always recomputed server-side
    - credits_used_cents <= subtotal_cents
    - cash_due_cents = max(0, subtotal_cents - credits_used_cents)
    - total_cents = subtotal_cents (credits are a payment instrument, not a discount)

    ITEMS: immutable once created. Cancellation restores stock, never edits items.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_account_created", "account_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.CheckConstraint("credits_used_cents >= 0", name="ck_orders_credits_non_negative"),
        db.CheckConstraint("credits_used_cents <= subtotal_cents", name="ck_orders_credits_le_subtotal"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    # Human-readable order number (e.g., "ORD-20261019101500-0042-9F3A")
    order_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    payment_method = db.Column(db.String(32), nullable=False, default=PAYMENT_CASH_ONLY)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    credits_used_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_due_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Snapshot: street, city, state, postal_code, country
    delivery_address = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cancellation audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    account = db.relationship("Account", foreign_keys=[account_id], backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in ORDER_TERMINAL_STATUSES

    def ordered_quantity(self, product_id: int) -> int:
        return sum(item.quantity for item in self.items if item.product_id == product_id)

    def find_item(self, product_id: int) -> "OrderItem | None":
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "account_id": self.account_id,
            "order_number": self.order_number,
            "status": self.status,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "credits_used_cents": self.credits_used_cents,
            "cash_due_cents": self.cash_due_cents,
            "total_cents": self.total_cents,
            "delivery_address": self.delivery_address,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "processing_at": to_utc_z(self.processing_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_account_id": self.cancelled_by_account_id,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line item on an order (price and name are snapshots at checkout)."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_order_items_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # Plain reference: products may be deactivated later, the snapshot survives
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class DocumentSequence(db.Model):
    """
    Atomic document sequences (ORDER, RETURN).

    WHY: Prevent race conditions when generating human-readable numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
