"""
Order settlement tests: pricing, credit/cash split, stock reservation,
status machine and atomic cancellation.
"""

import pytest

from grocerymart.extensions import db
from grocerymart.errors import (
    ValidationError,
    ForbiddenError,
    InsufficientStockError,
    InsufficientCreditsError,
    InvalidStateTransitionError,
)
from grocerymart.models import Account, Order, Product, CreditTransaction
from grocerymart.services import ledger_service, order_service
from grocerymart.services.order_service import PricedLine


def _stock(product_id: int) -> int:
    db.session.expire_all()
    return db.session.get(Product, product_id).stock


def _balance(account_id: int) -> int:
    return ledger_service.get_balance(account_id)


@pytest.fixture
def basket(make_account, make_product):
    """Shopper with 50.00 credits and two products priced 200.00 and 50.00."""
    shopper = make_account(credits_cents=5000)
    rice = make_product(price_cents=20000, stock=10, name="Basmati Rice 5kg")
    milk = make_product(price_cents=5000, stock=5, name="Milk 1L")
    return shopper, rice, milk


def _place_basket_order(shopper, rice, milk, **kwargs):
    return order_service.checkout(
        shopper.id,
        [
            {"product_id": rice.id, "quantity": 2, "price_per_unit": 1},
            {"product_id": milk.id, "quantity": 1},
        ],
        credits_to_use=kwargs.pop("credits_to_use", 5000),
        **kwargs,
    )


def _advance(order, admin, *statuses):
    for status in statuses:
        order = order_service.update_order_status(order.id, status, admin.id)
    return order


class TestSettle:
    def test_breakdown(self):
        lines = [
            PricedLine(product_id=1, product_name="A", quantity=2, unit_price_cents=20000),
            PricedLine(product_id=2, product_name="B", quantity=1, unit_price_cents=5000),
        ]
        settlement = order_service.settle(lines, 5000)
        assert settlement.subtotal_cents == 45000
        assert settlement.cash_due_cents == 40000
        assert settlement.total_cents == 45000

    def test_credits_cannot_exceed_subtotal(self):
        lines = [PricedLine(product_id=1, product_name="A", quantity=1, unit_price_cents=100)]
        with pytest.raises(ValidationError):
            order_service.settle(lines, 101)

    def test_payment_method_derivation_and_consistency(self):
        lines = [PricedLine(product_id=1, product_name="A", quantity=1, unit_price_cents=100)]
        assert order_service.resolve_payment_method(None, order_service.settle(lines, 0)) == "cash_only"
        assert order_service.resolve_payment_method(None, order_service.settle(lines, 100)) == "credits_only"
        assert order_service.resolve_payment_method(None, order_service.settle(lines, 40)) == "credits_and_cash"

        with pytest.raises(ValidationError):
            order_service.resolve_payment_method("cash_only", order_service.settle(lines, 40))
        with pytest.raises(ValidationError):
            order_service.resolve_payment_method("credits_only", order_service.settle(lines, 40))
        with pytest.raises(ValidationError):
            order_service.resolve_payment_method("cheque", order_service.settle(lines, 0))


class TestCheckout:
    def test_basket_scenario(self, basket):
        shopper, rice, milk = basket

        order = _place_basket_order(shopper, rice, milk)

        assert order.subtotal_cents == 45000
        assert order.credits_used_cents == 5000
        assert order.cash_due_cents == 40000
        assert order.total_cents == 45000
        assert order.status == "pending"
        assert order.payment_method == "credits_and_cash"
        assert order.order_number.startswith("ORD-")
        assert [(i.product_id, i.quantity, i.line_total_cents) for i in order.items] == [
            (rice.id, 2, 40000),
            (milk.id, 1, 5000),
        ]
        assert _stock(rice.id) == 8
        assert _stock(milk.id) == 4
        assert _balance(shopper.id) == 0

        payment = (
            db.session.query(CreditTransaction)
            .filter_by(account_id=shopper.id, transaction_type=ledger_service.TXN_ORDER_PAYMENT)
            .one()
        )
        assert payment.amount_cents == -5000
        assert payment.order_id == order.id

    def test_client_prices_are_ignored(self, basket):
        shopper, rice, milk = basket
        order = order_service.checkout(
            shopper.id,
            [{"product_id": rice.id, "quantity": 1, "price_per_unit": 1, "line_total": 1}],
        )
        assert order.subtotal_cents == 20000

    def test_duplicate_lines_are_merged(self, basket):
        shopper, rice, milk = basket
        order = order_service.checkout(
            shopper.id,
            [
                {"product_id": rice.id, "quantity": 1},
                {"product_id": milk.id, "quantity": 1},
                {"product_id": rice.id, "quantity": 2},
            ],
        )
        assert [(i.product_id, i.quantity) for i in order.items] == [(rice.id, 3), (milk.id, 1)]
        assert _stock(rice.id) == 7

    def test_order_numbers_are_unique(self, basket):
        shopper, rice, milk = basket
        first = order_service.checkout(shopper.id, [{"product_id": rice.id, "quantity": 1}])
        second = order_service.checkout(shopper.id, [{"product_id": rice.id, "quantity": 1}])
        assert first.order_number != second.order_number

    def test_insufficient_stock_is_atomic(self, basket):
        shopper, rice, milk = basket

        with pytest.raises(InsufficientStockError) as exc:
            order_service.checkout(
                shopper.id,
                [
                    {"product_id": rice.id, "quantity": 2},
                    {"product_id": milk.id, "quantity": 6},
                ],
                credits_to_use=5000,
            )

        assert exc.value.details["items"][0]["product_id"] == milk.id
        assert _stock(rice.id) == 10
        assert _stock(milk.id) == 5
        assert _balance(shopper.id) == 5000
        assert db.session.query(Order).count() == 0

    def test_credits_beyond_balance_fail_atomically(self, basket):
        shopper, rice, milk = basket

        with pytest.raises(InsufficientCreditsError):
            order_service.checkout(shopper.id, [{"product_id": rice.id, "quantity": 1}], credits_to_use=6000)

        assert _stock(rice.id) == 10
        assert db.session.query(Order).count() == 0

    @pytest.mark.parametrize("items", [
        [],
        None,
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": 1.5}],
        [{"quantity": 1}],
        ["not-an-object"],
    ])
    def test_malformed_items(self, basket, items):
        shopper, _rice, _milk = basket
        with pytest.raises(ValidationError):
            order_service.checkout(shopper.id, items)

    def test_unknown_or_inactive_product(self, basket, make_product):
        shopper, _rice, _milk = basket
        retired = make_product(is_active=False)

        with pytest.raises(ValidationError):
            order_service.checkout(shopper.id, [{"product_id": 999999, "quantity": 1}])
        with pytest.raises(ValidationError):
            order_service.checkout(shopper.id, [{"product_id": retired.id, "quantity": 1}])

    def test_delivery_address_validation(self, basket):
        shopper, rice, _milk = basket

        with pytest.raises(ValidationError):
            order_service.checkout(
                shopper.id,
                [{"product_id": rice.id, "quantity": 1}],
                delivery_address={"street": "1 A", "city": "Pune", "state": "MH", "postal_code": "411001"},
            )

        order = order_service.checkout(
            shopper.id,
            [{"product_id": rice.id, "quantity": 1}],
            delivery_address={"street": "12 MG Road", "city": "Pune", "state": "MH", "postal_code": "411001"},
        )
        assert order.delivery_address["country"] == "India"

    def test_purchase_cooldown(self, app, basket, monkeypatch):
        shopper, rice, _milk = basket
        monkeypatch.setitem(app.config, "PURCHASE_COOLDOWN_DAYS", 7)

        order_service.checkout(shopper.id, [{"product_id": rice.id, "quantity": 1}])
        assert db.session.get(Account, shopper.id).can_make_purchase() is False

        with pytest.raises(ValidationError):
            order_service.checkout(shopper.id, [{"product_id": rice.id, "quantity": 1}])
        assert _stock(rice.id) == 9


class TestCancellation:
    def test_cancel_restores_stock_and_refunds_credits(self, basket):
        shopper, rice, milk = basket
        order = _place_basket_order(shopper, rice, milk)

        cancelled = order_service.cancel_order(order.id, shopper.id)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        assert cancelled.cancelled_by_account_id == shopper.id
        assert _stock(rice.id) == 10
        assert _stock(milk.id) == 5
        assert _balance(shopper.id) == 5000

        refund = (
            db.session.query(CreditTransaction)
            .filter_by(account_id=shopper.id, transaction_type=ledger_service.TXN_ORDER_REFUND)
            .one()
        )
        assert refund.amount_cents == 5000
        assert order.order_number in refund.reason

    def test_second_cancel_is_rejected(self, basket):
        shopper, rice, milk = basket
        order = _place_basket_order(shopper, rice, milk)
        order_service.cancel_order(order.id, shopper.id)

        with pytest.raises(InvalidStateTransitionError):
            order_service.cancel_order(order.id, shopper.id)

        assert _stock(rice.id) == 10
        assert _balance(shopper.id) == 5000

    def test_delivered_order_cannot_be_cancelled(self, basket, make_admin):
        shopper, rice, milk = basket
        admin = make_admin()
        order = _place_basket_order(shopper, rice, milk)
        _advance(order, admin, "confirmed", "processing", "shipped", "delivered")

        with pytest.raises(InvalidStateTransitionError):
            order_service.cancel_order(order.id, shopper.id)
        assert _stock(rice.id) == 8

    def test_failed_refund_rolls_back_whole_cancellation(self, basket, monkeypatch):
        shopper, rice, milk = basket
        order = _place_basket_order(shopper, rice, milk)

        def _broken_refund(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(ledger_service, "add_credits", _broken_refund)

        with pytest.raises(RuntimeError):
            order_service.cancel_order(order.id, shopper.id)

        db.session.expire_all()
        order = db.session.get(Order, order.id)
        assert order.status == "pending"
        assert order.cancelled_at is None
        assert _stock(rice.id) == 8
        assert _stock(milk.id) == 4
        assert _balance(shopper.id) == 0
        assert (
            db.session.query(CreditTransaction)
            .filter_by(account_id=shopper.id, transaction_type=ledger_service.TXN_ORDER_REFUND)
            .count()
        ) == 0

    def test_only_owner_or_admin_may_cancel(self, basket, make_account, make_admin):
        shopper, rice, milk = basket
        stranger = make_account()
        admin = make_admin()
        order = _place_basket_order(shopper, rice, milk)

        with pytest.raises(ForbiddenError):
            order_service.cancel_order(order.id, stranger.id)

        cancelled = order_service.cancel_order(order.id, admin.id, is_admin=True)
        assert cancelled.cancelled_by_account_id == admin.id

    def test_status_cancelled_goes_through_cancellation(self, basket, make_admin):
        shopper, rice, milk = basket
        admin = make_admin()
        order = _place_basket_order(shopper, rice, milk)

        order_service.update_order_status(order.id, "cancelled", admin.id)

        assert _stock(rice.id) == 10
        assert _balance(shopper.id) == 5000


class TestStatusMachine:
    def test_forward_moves_stamp_timestamps(self, basket, make_admin):
        shopper, rice, milk = basket
        admin = make_admin()
        order = _place_basket_order(shopper, rice, milk)

        for status, stamp in (
            ("confirmed", "confirmed_at"),
            ("processing", "processing_at"),
            ("shipped", "shipped_at"),
            ("delivered", "delivered_at"),
        ):
            order = order_service.update_order_status(order.id, status, admin.id)
            assert order.status == status
            assert getattr(order, stamp) is not None

    @pytest.mark.parametrize("path,skipped_to", [
        ((), "processing"),
        ((), "delivered"),
        (("confirmed",), "shipped"),
        (("confirmed", "processing"), "delivered"),
    ])
    def test_skipping_a_step_is_rejected(self, basket, make_admin, path, skipped_to):
        shopper, rice, milk = basket
        admin = make_admin()
        order = _place_basket_order(shopper, rice, milk)
        _advance(order, admin, *path)

        with pytest.raises(InvalidStateTransitionError):
            order_service.update_order_status(order.id, skipped_to, admin.id)

        db.session.expire_all()
        order = db.session.get(Order, order.id)
        assert order.status == (path[-1] if path else "pending")
        assert order.delivered_at is None

    def test_backward_and_repeated_moves_are_rejected(self, basket, make_admin):
        shopper, rice, milk = basket
        admin = make_admin()
        order = _place_basket_order(shopper, rice, milk)
        _advance(order, admin, "confirmed", "processing")

        for status in ("pending", "confirmed", "processing"):
            with pytest.raises(InvalidStateTransitionError):
                order_service.update_order_status(order.id, status, admin.id)

    def test_invalid_status(self, basket, make_admin):
        shopper, rice, milk = basket
        admin = make_admin()
        order = _place_basket_order(shopper, rice, milk)
        with pytest.raises(ValidationError):
            order_service.update_order_status(order.id, "teleported", admin.id)
