from decimal import Decimal

import pytest

from storefront.errors import IllegalTransition
from storefront.models.order import Order
from storefront.models.order_status_log import OrderStatusLog
from storefront.services.order_state import normalize_gateway_status, transition


@pytest.fixture
def order(db):
    o = Order(
        order_number="ORD0000000001ABCDEF0123",
        email="a@example.com",
        payment_method="razorpay",
        subtotal_amount=Decimal("100"),
        tax_amount=Decimal("5"),
        shipping_amount=Decimal("50"),
        total_amount=Decimal("155"),
        shipping_address="somewhere",
    )
    db.add(o)
    db.commit()
    return o


def test_happy_path_is_logged(db, order):
    assert transition(db, order, status="processing", payment_status="completed", actor="gateway:verify")
    assert transition(db, order, status="completed")
    db.commit()

    log = db.query(OrderStatusLog).filter(OrderStatusLog.order_id == order.id).order_by(OrderStatusLog.id).all()
    assert [(r.old_status, r.new_status) for r in log] == [("pending", "processing"), ("processing", "completed")]
    assert log[0].new_payment_status == "completed"
    assert log[0].user == "gateway:verify"
    assert order.updated_at is not None


def test_same_state_is_noop(db, order):
    assert transition(db, order, status="pending", payment_status="pending") is False
    db.commit()
    assert db.query(OrderStatusLog).count() == 0


@pytest.mark.parametrize("status,payment", [
    ("completed", None),        # pending -> completed minus processing
    (None, "refunded"),         # refund before capture
    ("shipped", None),          # unknown status
])
def test_illegal_transitions(db, order, status, payment):
    with pytest.raises(IllegalTransition):
        transition(db, order, status=status, payment_status=payment)
    assert order.status == "pending"
    assert order.payment_status == "pending"


def test_terminal_states(db, order):
    transition(db, order, status="failed", payment_status="failed")
    with pytest.raises(IllegalTransition):
        transition(db, order, status="processing")
    with pytest.raises(IllegalTransition):
        transition(db, order, payment_status="completed")


def test_checks_both_targets_before_writing(db, order):
    with pytest.raises(IllegalTransition):
        transition(db, order, status="processing", payment_status="refunded")
    assert order.status == "pending"


@pytest.mark.parametrize("raw,expected", [
    ("paid", "completed"),
    ("CAPTURED", "completed"),
    ("PAYMENT_SUCCESS", "completed"),
    ("failed", "failed"),
    ("PAYMENT_ERROR", "failed"),
    ("attempted", "pending"),
    ("something-new", "pending"),
    (None, "pending"),
])
def test_normalize_gateway_status(raw, expected):
    assert normalize_gateway_status(raw) == expected
