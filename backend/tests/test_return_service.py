import pytest

from grocerymart.extensions import db
from grocerymart.errors import ValidationError, ForbiddenError, InvalidStateTransitionError
from grocerymart.models import Product, ReturnRequest
from grocerymart.services import ledger_service, order_service, return_service


def _stock(product_id: int) -> int:
    db.session.expire_all()
    return db.session.get(Product, product_id).stock


def _request(customer, order, product, quantity=1, reason="damaged"):
    return return_service.create_return(
        account_id=customer.id,
        order_id=order.id,
        product_id=product.id,
        quantity=quantity,
        reason=reason,
        description="Packaging torn",
    )


class TestCreateReturn:
    def test_amount_is_computed_from_order_line(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order

        ret = _request(customer, order, rice, quantity=2)

        assert ret.status == "requested"
        assert ret.return_number.startswith("RET-")
        assert ret.unit_price_cents == 20000
        assert ret.return_amount_cents == 40000
        assert ret.refund_amount_cents is None
        assert ret.requested_at is not None

    def test_quantity_above_ordered_is_rejected_without_record(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order

        with pytest.raises(ValidationError):
            _request(customer, order, rice, quantity=4)

        assert db.session.query(ReturnRequest).count() == 0

    def test_open_returns_count_against_ordered_quantity(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order
        _request(customer, order, rice, quantity=2)

        with pytest.raises(ValidationError):
            _request(customer, order, rice, quantity=2)

        _request(customer, order, rice, quantity=1)
        assert db.session.query(ReturnRequest).count() == 2

    def test_cancelled_returns_release_quantity(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order
        first = _request(customer, order, rice, quantity=3)
        return_service.cancel_return(first.id, customer.id)

        again = _request(customer, order, rice, quantity=3)
        assert again.quantity == 3

    def test_only_owner_may_request(self, delivered_order, make_account):
        _customer, order, (rice, _milk), _admin = delivered_order
        stranger = make_account()

        with pytest.raises(ForbiddenError):
            _request(stranger, order, rice)

    def test_product_must_be_on_the_order(self, delivered_order, make_product):
        customer, order, _products, _admin = delivered_order
        other = make_product()

        with pytest.raises(ValidationError):
            _request(customer, order, other)

    def test_order_must_be_delivered(self, make_account, make_product):
        customer = make_account()
        rice = make_product()
        order = order_service.checkout(customer.id, [{"product_id": rice.id, "quantity": 1}])

        with pytest.raises(ValidationError):
            _request(customer, order, rice)

    def test_reason_must_be_known(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order
        with pytest.raises(ValidationError):
            _request(customer, order, rice, reason="bored")


class TestReturnLifecycle:
    def test_full_path_restocks_and_refunds(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order
        ret = _request(customer, order, rice, quantity=2)
        stock_before = _stock(rice.id)

        ret = return_service.update_return_status(ret.id, "approved", admin_notes="OK to return")
        assert ret.approved_at is not None
        ret = return_service.update_return_status(ret.id, "shipped", tracking_number="TRK123")
        assert ret.tracking_number == "TRK123"
        assert ret.shipped_at is not None
        ret = return_service.update_return_status(ret.id, "received")
        assert ret.received_at is not None
        assert _stock(rice.id) == stock_before + 2

        ret = return_service.update_return_status(ret.id, "refunded")
        assert ret.refunded_at is not None
        assert ret.refund_amount_cents == 40000
        assert ledger_service.get_balance(customer.id) == 40000
        assert ret.admin_notes == "OK to return"

    def test_explicit_refund_amount(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order
        ret = _request(customer, order, rice, quantity=1)
        for status in ("approved", "shipped", "received"):
            return_service.update_return_status(ret.id, status)

        with pytest.raises(ValidationError):
            return_service.update_return_status(ret.id, "refunded", refund_amount_cents=20001)

        ret = return_service.update_return_status(ret.id, "refunded", refund_amount_cents=15000)
        assert ret.refund_amount_cents == 15000
        assert ledger_service.get_balance(customer.id) == 15000

    def test_refund_amount_set_before_refunded_is_paid(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order
        ret = _request(customer, order, rice, quantity=2)
        return_service.update_return_status(ret.id, "approved")
        return_service.update_return_status(ret.id, "shipped")

        ret = return_service.update_return_status(ret.id, "received", refund_amount_cents=10000)
        assert ret.refund_amount_cents == 10000
        assert ledger_service.get_balance(customer.id) == 0

        ret = return_service.update_return_status(ret.id, "refunded")
        assert ret.refund_amount_cents == 10000
        assert ledger_service.get_balance(customer.id) == 10000

    def test_zero_refund_set_early_is_kept(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order
        ret = _request(customer, order, rice, quantity=1)
        return_service.update_return_status(ret.id, "approved", refund_amount_cents=0)
        for status in ("shipped", "received", "refunded"):
            ret = return_service.update_return_status(ret.id, status)

        assert ret.refund_amount_cents == 0
        assert ledger_service.get_balance(customer.id) == 0

    def test_refund_amount_above_return_amount_rejected_on_any_move(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order
        ret = _request(customer, order, rice, quantity=1)

        with pytest.raises(ValidationError):
            return_service.update_return_status(ret.id, "approved", refund_amount_cents=20001)

        db.session.expire_all()
        ret = db.session.get(ReturnRequest, ret.id)
        assert ret.status == "requested"
        assert ret.refund_amount_cents is None

    def test_refund_to_credits_can_be_disabled(self, app, delivered_order, monkeypatch):
        monkeypatch.setitem(app.config, "RETURN_REFUND_TO_CREDITS", False)
        customer, order, (rice, _milk), _admin = delivered_order
        ret = _request(customer, order, rice, quantity=1)
        for status in ("approved", "shipped", "received", "refunded"):
            ret = return_service.update_return_status(ret.id, status)

        assert ret.refund_amount_cents == 20000
        assert ledger_service.get_balance(customer.id) == 0

    @pytest.mark.parametrize("path,illegal", [
        ((), "shipped"),
        ((), "refunded"),
        (("approved",), "requested"),
        (("approved", "shipped"), "approved"),
        (("approved", "shipped"), "cancelled"),
        (("rejected",), "approved"),
        (("approved", "shipped", "received", "refunded"), "received"),
    ])
    def test_illegal_transitions(self, delivered_order, path, illegal):
        customer, order, (rice, _milk), _admin = delivered_order
        ret = _request(customer, order, rice)
        for status in path:
            return_service.update_return_status(ret.id, status)

        with pytest.raises(InvalidStateTransitionError):
            return_service.update_return_status(ret.id, illegal)

    def test_reject_from_approved(self, delivered_order):
        customer, order, (rice, _milk), _admin = delivered_order
        ret = _request(customer, order, rice)
        return_service.update_return_status(ret.id, "approved")

        ret = return_service.update_return_status(ret.id, "rejected", admin_notes="Outside policy")
        assert ret.status == "rejected"
        assert ret.rejected_at is not None

    def test_cancel_rules(self, delivered_order, make_account):
        customer, order, (rice, milk), admin = delivered_order
        stranger = make_account()
        ret = _request(customer, order, rice)

        with pytest.raises(ForbiddenError):
            return_service.cancel_return(ret.id, stranger.id)

        cancelled = return_service.cancel_return(ret.id, admin.id, is_admin=True)
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None

        shipped = _request(customer, order, milk)
        return_service.update_return_status(shipped.id, "approved")
        return_service.update_return_status(shipped.id, "shipped")
        with pytest.raises(InvalidStateTransitionError):
            return_service.cancel_return(shipped.id, customer.id)
