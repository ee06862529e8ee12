# Overview: Order settlement engine; checkout, status state machine, and cancellation.

"""
Order Settlement Service

CHECKOUT CONTRACT:
- Items are priced from the catalog; every line total is recomputed here
  (quantity x unit price) and the subtotal is their sum. Client totals are
  never trusted.
- credits_to_use is a payment instrument: 0 <= credits <= subtotal and
  <= the account balance. cash_due = max(0, subtotal - credits);
  total = subtotal.
- Stock is decremented per line with a conditional UPDATE. Any line that
  cannot be fulfilled fails the whole order (InsufficientStockError).
- Order row, items, stock decrements and the credit debit commit together
  or not at all.

STATUS MACHINE:
    pending -> confirmed -> processing -> shipped -> delivered   (admin, one step at a time)
    pending|confirmed|processing|shipped -> cancelled            (owner or admin)
delivered and cancelled are terminal.

CANCELLATION: status -> stock restore -> credit refund, in that order, in a
single transaction. The refund reason cites the order number.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Account, Order, OrderItem
from ..models.orders import (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_FLOW,
    ORDER_STATUSES,
    PAYMENT_CREDITS_ONLY,
    PAYMENT_CASH_ONLY,
    PAYMENT_CREDITS_AND_CASH,
    PAYMENT_METHODS,
)
from ..errors import (
    ValidationError,
    NotFoundError,
    ForbiddenError,
    InsufficientStockError,
    InsufficientCreditsError,
    InvalidStateTransitionError,
)
from ..validation import parse_int, parse_str, parse_choice, pick
from grocerymart.time_utils import utcnow, days_from_now
from . import ledger_service, inventory_service
from .concurrency import lock_for_update, run_atomic
from .document_service import next_document_number


STATUS_TIMESTAMP_FIELDS = {
    ORDER_STATUS_CONFIRMED: "confirmed_at",
    ORDER_STATUS_PROCESSING: "processing_at",
    ORDER_STATUS_SHIPPED: "shipped_at",
    ORDER_STATUS_DELIVERED: "delivered_at",
    ORDER_STATUS_CANCELLED: "cancelled_at",
}

# (field, min length, max length)
ADDRESS_FIELDS = (
    ("street", 5, 200),
    ("city", 2, 50),
    ("state", 2, 50),
    ("postal_code", 5, 10),
    ("country", 2, 50),
)
DEFAULT_COUNTRY = "India"


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class Settlement:
    subtotal_cents: int
    credits_used_cents: int
    cash_due_cents: int
    total_cents: int


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def parse_line_requests(items) -> list[LineRequest]:
    """
    Validate raw items and merge repeated products into one line
    (first appearance keeps its position).
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item")

    merged: dict[int, int] = {}
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = parse_int(pick(raw, "product_id", "productId", "product"), f"items[{index}].product_id", minimum=1)
        quantity = parse_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1)
        merged[product_id] = merged.get(product_id, 0) + quantity

    return [LineRequest(product_id=pid, quantity=qty) for pid, qty in merged.items()]


def validate_delivery_address(raw) -> dict | None:
    if raw is None or raw == {}:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("delivery_address must be an object")

    address = {}
    for field, min_len, max_len in ADDRESS_FIELDS:
        value = parse_str(raw.get(field), f"delivery_address.{field}", min_length=min_len, max_length=max_len)
        if value is not None:
            address[field] = value
    address.setdefault("country", DEFAULT_COUNTRY)
    return address


def settle(lines: list[PricedLine], credits_to_use: int) -> Settlement:
    """Price breakdown for an order. Pure; callers enforce balance limits."""
    subtotal = sum(line.line_total_cents for line in lines)
    if credits_to_use < 0:
        raise ValidationError("Credits to use must be a non-negative number")
    if credits_to_use > subtotal:
        raise ValidationError(
            "Credits to use cannot exceed the order subtotal",
            details={"subtotal_cents": subtotal, "credits_to_use": credits_to_use},
        )
    return Settlement(
        subtotal_cents=subtotal,
        credits_used_cents=credits_to_use,
        cash_due_cents=max(0, subtotal - credits_to_use),
        total_cents=subtotal,
    )


def resolve_payment_method(requested: str | None, settlement: Settlement) -> str:
    if requested is None:
        if settlement.credits_used_cents == 0:
            return PAYMENT_CASH_ONLY
        if settlement.cash_due_cents == 0:
            return PAYMENT_CREDITS_ONLY
        return PAYMENT_CREDITS_AND_CASH

    method = parse_choice(requested, "payment_method", PAYMENT_METHODS)
    if method == PAYMENT_CASH_ONLY and settlement.credits_used_cents > 0:
        raise ValidationError("cash_only orders cannot use credits")
    if method == PAYMENT_CREDITS_ONLY and settlement.cash_due_cents > 0:
        raise ValidationError(
            "credits_only orders must be fully covered by credits",
            details={"cash_due_cents": settlement.cash_due_cents},
        )
    return method


# =============================================================================
# CHECKOUT
# =============================================================================

def _price_lines(requests: list[LineRequest]) -> list[PricedLine]:
    priced = []
    insufficient = []
    for req in requests:
        try:
            product = inventory_service.get_active_product(req.product_id)
        except NotFoundError as exc:
            raise ValidationError(exc.message, details={"product_id": req.product_id}) from exc
        if not product.is_available(req.quantity):
            insufficient.append({
                "product_id": product.id,
                "requested_quantity": req.quantity,
                "on_hand": product.stock,
            })
        priced.append(PricedLine(
            product_id=product.id,
            product_name=product.name,
            quantity=req.quantity,
            unit_price_cents=product.price_cents,
        ))

    if insufficient:
        raise InsufficientStockError("Insufficient stock", details={"items": insufficient})
    return priced


def checkout(
    account_id: int,
    items,
    credits_to_use=0,
    payment_method: str | None = None,
    delivery_address=None,
    notes: str | None = None,
) -> Order:
    """Create a pending order. See module docstring for the contract."""
    requests = parse_line_requests(items)
    credits = parse_int(credits_to_use if credits_to_use is not None else 0, "credits_to_use", minimum=0)
    address = validate_delivery_address(delivery_address)
    notes = parse_str(notes, "notes", max_length=500)

    def _op() -> Order:
        account = lock_for_update(db.session.query(Account).filter_by(id=account_id)).first()
        if not account or not account.is_active:
            raise NotFoundError("Account not found")
        if not account.can_make_purchase():
            raise ValidationError(
                "Account is not eligible to purchase yet",
                details={"next_purchase_date": account.next_purchase_date.isoformat()},
            )

        lines = _price_lines(requests)
        settlement = settle(lines, credits)
        method = resolve_payment_method(payment_method, settlement)

        if settlement.credits_used_cents > account.credit_balance_cents:
            raise InsufficientCreditsError(
                "Insufficient credits",
                details={
                    "balance_cents": account.credit_balance_cents,
                    "requested_cents": settlement.credits_used_cents,
                },
            )

        for line in lines:
            inventory_service.decrement_stock(line.product_id, line.quantity)

        order = Order(
            account_id=account.id,
            order_number=next_document_number(document_type="ORDER", prefix="ORD"),
            status=ORDER_STATUS_PENDING,
            payment_method=method,
            subtotal_cents=settlement.subtotal_cents,
            credits_used_cents=settlement.credits_used_cents,
            cash_due_cents=settlement.cash_due_cents,
            total_cents=settlement.total_cents,
            delivery_address=address,
            notes=notes,
        )
        for position, line in enumerate(lines):
            order.items.append(OrderItem(
                position=position,
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
            ))
        db.session.add(order)
        db.session.flush()

        if settlement.credits_used_cents > 0:
            ledger_service.deduct_credits(
                account.id,
                settlement.credits_used_cents,
                f"Payment for order {order.order_number}",
                transaction_type=ledger_service.TXN_ORDER_PAYMENT,
                order_id=order.id,
                commit=False,
            )

        cooldown_days = current_app.config.get("PURCHASE_COOLDOWN_DAYS", 0)
        if cooldown_days > 0:
            account.next_purchase_date = days_from_now(cooldown_days)

        return order

    order = run_atomic(_op)
    current_app.logger.info(
        "Order %s created for account %s: subtotal=%s credits=%s cash=%s",
        order.order_number, account_id, order.subtotal_cents, order.credits_used_cents, order.cash_due_cents,
    )
    return order


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_order(order_id: int, actor_id: int, is_admin: bool = False) -> Order:
    """
    Cancel a non-terminal order and reverse its effects atomically.

    Raises NotFoundError, ForbiddenError (not owner and not admin) or
    InvalidStateTransitionError (already delivered/cancelled).
    """
    def _op() -> Order:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.account_id != actor_id and not is_admin:
            raise ForbiddenError("Access denied")
        if order.is_terminal:
            raise InvalidStateTransitionError(
                "Order cannot be cancelled",
                details={"status": order.status},
            )

        order.status = ORDER_STATUS_CANCELLED
        order.cancelled_at = utcnow()
        order.cancelled_by_account_id = actor_id
        db.session.flush()

        for item in order.items:
            inventory_service.restore_stock(item.product_id, item.quantity)

        if order.credits_used_cents > 0:
            ledger_service.add_credits(
                order.account_id,
                order.credits_used_cents,
                f"Refund for cancelled order {order.order_number}",
                transaction_type=ledger_service.TXN_ORDER_REFUND,
                order_id=order.id,
                commit=False,
            )
        return order

    order = run_atomic(_op)
    current_app.logger.info("Order %s cancelled by account %s", order.order_number, actor_id)
    return order


# =============================================================================
# STATUS TRANSITIONS (ADMIN)
# =============================================================================

def update_order_status(order_id: int, status, actor_id: int) -> Order:
    """
    Advance an order one step along the fulfilment path. Steps cannot be
    skipped, repeated or undone.

    Moving to cancelled goes through cancel_order so stock and credits are
    always reversed.
    """
    status = parse_choice(status, "status", ORDER_STATUSES)
    if status == ORDER_STATUS_CANCELLED:
        return cancel_order(order_id, actor_id, is_admin=True)

    def _op() -> Order:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.is_terminal:
            raise InvalidStateTransitionError(
                f"Order is already {order.status}",
                details={"status": order.status},
            )

        current_index = ORDER_STATUS_FLOW.index(order.status)
        target_index = ORDER_STATUS_FLOW.index(status)
        if target_index != current_index + 1:
            raise InvalidStateTransitionError(
                f"Cannot move order from {order.status} to {status}",
                details={"status": order.status, "requested_status": status},
            )

        order.status = status
        setattr(order, STATUS_TIMESTAMP_FIELDS[status], utcnow())
        return order

    return run_atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def get_order_for(order_id: int, actor_id: int, is_admin: bool = False) -> Order:
    order = get_order(order_id)
    if order.account_id != actor_id and not is_admin:
        raise ForbiddenError("Access denied")
    return order


def list_account_orders(account_id: int, page: int = 1, limit: int = 10) -> tuple[list[Order], int]:
    query = db.session.query(Order).filter_by(account_id=account_id)
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
        .all()
    )
    return orders, total


def list_all_orders(status: str | None = None, page: int = 1, limit: int = 20) -> tuple[list[Order], int]:
    query = db.session.query(Order)
    if status:
        query = query.filter_by(status=parse_choice(status, "status", ORDER_STATUSES))
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
        .all()
    )
    return orders, total
