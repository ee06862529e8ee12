# Overview: Return request workflow; creation checks, admin state machine, restock and refund.

"""
Return / Refund Workflow

WHY: A return references one product line of one delivered order. The
claimed quantity is bounded by what was ordered, across every return on
that line that is still open, so a customer cannot return more units than
they bought by splitting the claim.

LIFECYCLE (one-way, no transition back to an earlier state):
    requested -> approved -> shipped -> received -> refunded
    requested|approved -> rejected                 (terminal)
    requested|approved -> cancelled                (owner or admin)

EFFECTS:
- received: product stock is restored by the returned quantity
- refunded: refund_amount_cents defaults to return_amount_cents unless an
  admin already set it on an earlier move; when RETURN_REFUND_TO_CREDITS is
  on, the refund is credited to the owner's ledger in the same transaction
  as the status change

An admin may send refund_amount_cents with any move. It is checked against
return_amount_cents and stored, and the refunded move pays it out.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, ReturnRequest
from ..models.orders import ORDER_STATUS_DELIVERED
from ..models.returns import (
    RETURN_STATUS_REQUESTED,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_REJECTED,
    RETURN_STATUS_SHIPPED,
    RETURN_STATUS_RECEIVED,
    RETURN_STATUS_REFUNDED,
    RETURN_STATUS_CANCELLED,
    RETURN_STATUSES,
    RETURN_OPEN_STATUSES,
    RETURN_REASONS,
)
from ..errors import (
    ValidationError,
    NotFoundError,
    ForbiddenError,
    InvalidStateTransitionError,
)
from ..validation import parse_int, parse_str, parse_choice, parse_optional_int
from grocerymart.time_utils import utcnow
from . import ledger_service, inventory_service
from .concurrency import lock_for_update, run_atomic
from .document_service import next_document_number


ALLOWED_TRANSITIONS = {
    RETURN_STATUS_REQUESTED: (RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED, RETURN_STATUS_CANCELLED),
    RETURN_STATUS_APPROVED: (RETURN_STATUS_SHIPPED, RETURN_STATUS_REJECTED, RETURN_STATUS_CANCELLED),
    RETURN_STATUS_SHIPPED: (RETURN_STATUS_RECEIVED,),
    RETURN_STATUS_RECEIVED: (RETURN_STATUS_REFUNDED,),
    RETURN_STATUS_REJECTED: (),
    RETURN_STATUS_REFUNDED: (),
    RETURN_STATUS_CANCELLED: (),
}

CANCELLABLE_STATUSES = (RETURN_STATUS_REQUESTED, RETURN_STATUS_APPROVED)

STATUS_TIMESTAMP_FIELDS = {
    RETURN_STATUS_APPROVED: "approved_at",
    RETURN_STATUS_REJECTED: "rejected_at",
    RETURN_STATUS_SHIPPED: "shipped_at",
    RETURN_STATUS_RECEIVED: "received_at",
    RETURN_STATUS_REFUNDED: "refunded_at",
    RETURN_STATUS_CANCELLED: "cancelled_at",
}


def _open_return_quantity(order_id: int, product_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(ReturnRequest.quantity), 0))
        .filter(
            ReturnRequest.order_id == order_id,
            ReturnRequest.product_id == product_id,
            ReturnRequest.status.in_(RETURN_OPEN_STATUSES),
        )
        .scalar()
    )
    return int(total or 0)


# =============================================================================
# CREATION
# =============================================================================

def create_return(
    account_id: int,
    order_id,
    product_id,
    quantity,
    reason,
    description: str | None = None,
) -> ReturnRequest:
    """
    Create a return request (status: requested).

    Raises:
        NotFoundError: order does not exist
        ForbiddenError: order belongs to someone else
        ValidationError: order not delivered, product not on the order,
            bad reason, or quantity above what is still returnable
    """
    order_id = parse_int(order_id, "order_id", minimum=1)
    product_id = parse_int(product_id, "product_id", minimum=1)
    quantity = parse_int(quantity, "quantity", minimum=1)
    reason = parse_choice(reason, "reason", RETURN_REASONS)
    description = parse_str(description, "description", max_length=500)

    def _op() -> ReturnRequest:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.account_id != account_id:
            raise ForbiddenError("Access denied")
        if order.status != ORDER_STATUS_DELIVERED:
            raise ValidationError(
                "Returns can only be requested for delivered orders",
                details={"order_status": order.status},
            )

        item = order.find_item(product_id)
        if item is None:
            raise ValidationError("Product not found in order", details={"product_id": product_id})

        already_claimed = _open_return_quantity(order.id, product_id)
        ordered = order.ordered_quantity(product_id)
        returnable = ordered - already_claimed
        if quantity > returnable:
            raise ValidationError(
                "Return quantity cannot exceed ordered quantity",
                details={
                    "ordered_quantity": ordered,
                    "already_returned": already_claimed,
                    "requested_quantity": quantity,
                },
            )

        return_request = ReturnRequest(
            return_number=next_document_number(document_type="RETURN", prefix="RET"),
            order_id=order.id,
            account_id=account_id,
            product_id=product_id,
            product_name=item.product_name,
            quantity=quantity,
            unit_price_cents=item.unit_price_cents,
            reason=reason,
            description=description,
            return_amount_cents=quantity * item.unit_price_cents,
            refund_amount_cents=None,
            status=RETURN_STATUS_REQUESTED,
            requested_at=utcnow(),
        )
        db.session.add(return_request)
        return return_request

    return_request = run_atomic(_op)
    current_app.logger.info(
        "Return %s requested for order %s product %s qty %s",
        return_request.return_number, order_id, product_id, quantity,
    )
    return return_request


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def _check_transition(current: str, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, ()):
        raise InvalidStateTransitionError(
            f"Cannot move return from {current} to {target}",
            details={"status": current, "requested_status": target},
        )


def _set_refund_amount(return_request: ReturnRequest, refund_amount_cents: int) -> None:
    if refund_amount_cents > return_request.return_amount_cents:
        raise ValidationError(
            "Refund amount cannot exceed the return amount",
            details={"return_amount_cents": return_request.return_amount_cents},
        )
    return_request.refund_amount_cents = refund_amount_cents


def _settle_refund(return_request: ReturnRequest) -> None:
    if return_request.refund_amount_cents is None:
        return_request.refund_amount_cents = return_request.return_amount_cents
    refund_amount_cents = return_request.refund_amount_cents

    if refund_amount_cents > 0 and current_app.config.get("RETURN_REFUND_TO_CREDITS", True):
        ledger_service.add_credits(
            return_request.account_id,
            refund_amount_cents,
            f"Refund for return {return_request.return_number}",
            transaction_type=ledger_service.TXN_RETURN_REFUND,
            order_id=return_request.order_id,
            return_id=return_request.id,
            commit=False,
        )


def update_return_status(
    return_id: int,
    status,
    admin_notes: str | None = None,
    refund_amount_cents=None,
    tracking_number: str | None = None,
) -> ReturnRequest:
    """Admin transition. Notes and tracking number may accompany any move."""
    status = parse_choice(status, "status", RETURN_STATUSES)
    admin_notes = parse_str(admin_notes, "admin_notes", max_length=500)
    tracking_number = parse_str(tracking_number, "tracking_number", max_length=128)
    refund_amount_cents = parse_optional_int(refund_amount_cents, "refund_amount_cents", minimum=0)

    def _op() -> ReturnRequest:
        return_request = lock_for_update(db.session.query(ReturnRequest).filter_by(id=return_id)).first()
        if not return_request:
            raise NotFoundError("Return request not found")

        _check_transition(return_request.status, status)

        return_request.status = status
        setattr(return_request, STATUS_TIMESTAMP_FIELDS[status], utcnow())
        if admin_notes is not None:
            return_request.admin_notes = admin_notes
        if tracking_number is not None:
            return_request.tracking_number = tracking_number
        if refund_amount_cents is not None:
            _set_refund_amount(return_request, refund_amount_cents)
        db.session.flush()

        if status == RETURN_STATUS_RECEIVED:
            inventory_service.restore_stock(return_request.product_id, return_request.quantity)
        elif status == RETURN_STATUS_REFUNDED:
            _settle_refund(return_request)

        return return_request

    return_request = run_atomic(_op)
    current_app.logger.info("Return %s moved to %s", return_request.return_number, status)
    return return_request


def cancel_return(return_id: int, actor_id: int, is_admin: bool = False) -> ReturnRequest:
    def _op() -> ReturnRequest:
        return_request = lock_for_update(db.session.query(ReturnRequest).filter_by(id=return_id)).first()
        if not return_request:
            raise NotFoundError("Return request not found")
        if return_request.account_id != actor_id and not is_admin:
            raise ForbiddenError("Access denied")
        if return_request.status not in CANCELLABLE_STATUSES:
            raise InvalidStateTransitionError(
                "Return request can no longer be cancelled",
                details={"status": return_request.status},
            )

        return_request.status = RETURN_STATUS_CANCELLED
        return_request.cancelled_at = utcnow()
        return return_request

    return run_atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_return_for(return_id: int, actor_id: int, is_admin: bool = False) -> ReturnRequest:
    return_request = db.session.query(ReturnRequest).filter_by(id=return_id).first()
    if not return_request:
        raise NotFoundError("Return request not found")
    if return_request.account_id != actor_id and not is_admin:
        raise ForbiddenError("Access denied")
    return return_request


def _paginate(query, page: int, limit: int) -> tuple[list[ReturnRequest], int]:
    total = query.count()
    rows = (
        query.order_by(ReturnRequest.requested_at.desc(), ReturnRequest.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
        .all()
    )
    return rows, total


def list_account_returns(account_id: int, status: str | None = None, page: int = 1, limit: int = 10):
    query = db.session.query(ReturnRequest).filter_by(account_id=account_id)
    if status:
        query = query.filter_by(status=parse_choice(status, "status", RETURN_STATUSES))
    return _paginate(query, page, limit)


def list_all_returns(status: str | None = None, page: int = 1, limit: int = 20):
    query = db.session.query(ReturnRequest)
    if status:
        query = query.filter_by(status=parse_choice(status, "status", RETURN_STATUSES))
    return _paginate(query, page, limit)
