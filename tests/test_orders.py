import asyncio
import threading

import pytest
from sqlmodel import Session, create_engine, select

from storefront import ledger, orders
from storefront.db import init_db
from storefront.errors import (
    AlreadyUsed,
    CouponNotFound,
    DuplicateGatewayOrder,
    GatewayError,
    InvalidSignature,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from storefront.gateway import sign
from storefront.models import Address, ClaimedCoupon, CouponStatus, Order, Product, User
from storefront.pricing import LineItem


@pytest.fixture
def shop(make):
    buyer = make.user(points=30)
    address = make.address(buyer.id)
    spoon = make.product(50000, name="Brass Spoon")
    ladle = make.product(30000, name="Steel Ladle")
    return buyer, address, spoon, ladle


def _place(session, gateway, settings, buyer, address, items, method="razorpay", **kwargs):
    return asyncio.run(
        orders.create_order(
            session,
            gateway,
            user_id=buyer.id,
            address_id=address.id,
            items=items,
            payment_method=method,
            settings=settings,
            **kwargs,
        )
    )


def _claimed_status(session, code, user_id):
    session.expire_all()
    claimed = session.exec(
        select(ClaimedCoupon).where(ClaimedCoupon.code == code).where(ClaimedCoupon.user_id == user_id)
    ).one()
    return claimed.status


def test_cod_order_snapshots_prices(session, gateway, settings, shop):
    buyer, address, spoon, ladle = shop

    order = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 2), LineItem(ladle.id, 1)], "cod")

    assert order.total_amount == 130000
    assert order.payment_status.value == "pending"
    assert order.order_status.value == "placed"
    assert order.gateway_order_id is None
    assert gateway.calls == []
    assert sorted((i.product_id, i.quantity, i.price_at_purchase) for i in order.items) == sorted(
        [(spoon.id, 2, 50000), (ladle.id, 1, 30000)]
    )

    # later catalog changes do not touch the placed order
    spoon.new_price = 99900
    session.add(spoon)
    session.commit()
    session.expire_all()
    stored = session.get(Order, order.id)
    assert stored.total_amount == 130000
    assert {i.product_id: i.price_at_purchase for i in stored.items}[spoon.id] == 50000


def test_cod_order_spends_coupon_on_placement(session, gateway, settings, make, shop):
    buyer, address, spoon, _ = shop
    make.claimed(buyer.id, "SAVE200", "discount", "200")

    order = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], "cod", coupon_code="SAVE200")

    assert order.total_amount == 30000
    assert order.coupon_code == "SAVE200"
    assert _claimed_status(session, "SAVE200", buyer.id) is CouponStatus.Used


def test_razorpay_order_opens_intent(session, gateway, settings, make, shop):
    buyer, address, spoon, ladle = shop
    make.claimed(buyer.id, "SAVE200", "discount", "200")

    order = _place(
        session,
        gateway,
        settings,
        buyer,
        address,
        [LineItem(spoon.id, 2), LineItem(ladle.id, 1)],
        coupon_code="SAVE200",
    )

    assert order.total_amount == 110000
    assert gateway.calls == [(110000, "INR", f"receipt_order_{order.id}")]
    assert order.gateway_order_id == "order_test_1"
    assert order.payment_status.value == "pending"
    # spent only once the payment is confirmed
    assert _claimed_status(session, "SAVE200", buyer.id) is CouponStatus.NotUsed


def test_client_supplied_gateway_id_is_kept(session, gateway, settings, shop):
    buyer, address, spoon, _ = shop

    order = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], gateway_order_id="order_CLIENT")

    assert order.gateway_order_id == "order_CLIENT"
    assert gateway.calls == []


def test_duplicate_gateway_order_rejected(session, gateway, settings, shop):
    buyer, address, spoon, _ = shop
    _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], gateway_order_id="order_DUP")

    with pytest.raises(DuplicateGatewayOrder):
        _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], gateway_order_id="order_DUP")

    assert len(session.exec(select(Order)).all()) == 1


def test_missing_items_or_address(session, gateway, settings, shop):
    buyer, address, spoon, _ = shop

    with pytest.raises(ValidationError):
        _place(session, gateway, settings, buyer, address, [])
    with pytest.raises(ValidationError):
        asyncio.run(
            orders.create_order(session, gateway, buyer.id, None, [LineItem(spoon.id, 1)], "cod", settings=settings)
        )
    with pytest.raises(ValidationError):
        _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], "paypal")


def test_address_of_another_user(session, gateway, settings, make, shop):
    buyer, _, spoon, _ = shop
    stranger = make.user(email="stranger@shop.test")
    their_address = make.address(stranger.id)

    with pytest.raises(NotFound):
        _place(session, gateway, settings, buyer, their_address, [LineItem(spoon.id, 1)], "cod")


def test_gateway_failure_leaves_pending_order(session, gateway, settings, shop):
    buyer, address, spoon, _ = shop
    gateway.fail = True

    with pytest.raises(GatewayError):
        _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)])

    session.expire_all()
    order = session.exec(select(Order)).one()
    assert order.payment_status.value == "pending"
    assert order.gateway_order_id is None


def test_fully_discounted_order_cannot_go_online(session, gateway, settings, make, shop):
    buyer, address, _, _ = shop
    cheap = make.product(500)
    make.claimed(buyer.id, "ALL", "discount", "100")

    with pytest.raises(ValidationError):
        _place(session, gateway, settings, buyer, address, [LineItem(cheap.id, 1)], coupon_code="ALL")


@pytest.fixture
def pending_order(session, gateway, settings, make, shop):
    buyer, address, spoon, ladle = shop
    make.claimed(buyer.id, "SAVE200", "discount", "200")
    order = _place(
        session,
        gateway,
        settings,
        buyer,
        address,
        [LineItem(spoon.id, 2), LineItem(ladle.id, 1)],
        coupon_code="SAVE200",
    )
    return buyer, order


def test_confirm_payment_marks_paid_and_spends_coupon(session, settings, pending_order):
    buyer, order = pending_order
    signature = sign(order.gateway_order_id, "pay_1", settings.razorpay_key_secret)

    paid = orders.confirm_payment(session, order.id, order.gateway_order_id, "pay_1", signature, settings)

    assert paid.payment_status.value == "paid"
    assert paid.gateway_payment_id == "pay_1"
    assert paid.gateway_signature == signature
    assert paid.paid_at is not None
    assert _claimed_status(session, "SAVE200", buyer.id) is CouponStatus.Used


def test_repeat_confirmation_is_harmless(session, settings, pending_order):
    buyer, order = pending_order
    signature = sign(order.gateway_order_id, "pay_1", settings.razorpay_key_secret)

    orders.confirm_payment(session, order.id, order.gateway_order_id, "pay_1", signature, settings)
    again = orders.confirm_payment(session, order.id, order.gateway_order_id, "pay_1", signature, settings)

    assert again.payment_status.value == "paid"
    assert again.gateway_payment_id == "pay_1"
    assert _claimed_status(session, "SAVE200", buyer.id) is CouponStatus.Used
    assert session.get(User, buyer.id).spoon_points == 30


def test_forged_signature_changes_nothing(session, settings, pending_order):
    buyer, order = pending_order

    with pytest.raises(InvalidSignature):
        orders.confirm_payment(session, order.id, order.gateway_order_id, "pay_1", "f" * 64, settings)

    session.expire_all()
    stored = session.get(Order, order.id)
    assert stored.payment_status.value == "pending"
    assert stored.gateway_payment_id is None
    assert _claimed_status(session, "SAVE200", buyer.id) is CouponStatus.NotUsed


def test_signature_for_another_gateway_order(session, settings, pending_order):
    _, order = pending_order
    signature = sign("order_OTHER", "pay_1", settings.razorpay_key_secret)

    with pytest.raises(InvalidSignature):
        orders.confirm_payment(session, order.id, "order_OTHER", "pay_1", signature, settings)


def test_confirm_unknown_order(session, settings):
    signature = sign("order_X", "pay_X", settings.razorpay_key_secret)
    with pytest.raises(NotFound):
        orders.confirm_payment(session, 404, "order_X", "pay_X", signature, settings)


def test_fulfillment_transitions(session, gateway, settings, shop):
    buyer, address, spoon, _ = shop
    order = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], "cod")

    assert orders.update_order_status(session, order.id, "shipped").order_status.value == "shipped"
    with pytest.raises(InvalidTransition):
        orders.update_order_status(session, order.id, "cancelled")
    assert orders.update_order_status(session, order.id, "delivered").order_status.value == "delivered"
    with pytest.raises(ValidationError):
        orders.update_order_status(session, order.id, "lost")


def test_orders_listed_newest_first(session, gateway, settings, shop):
    buyer, address, spoon, _ = shop
    first = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], "cod")
    second = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 3)], "cod")

    assert [o.id for o in orders.list_orders_for_user(session, buyer.id)] == [second.id, first.id]
    assert session.get(Product, spoon.id) is not None


def _claim_row(session, code, user_id):
    session.expire_all()
    return session.exec(
        select(ClaimedCoupon).where(ClaimedCoupon.code == code).where(ClaimedCoupon.user_id == user_id)
    ).one()


def test_second_online_order_cannot_carry_held_coupon(session, gateway, settings, make, shop):
    buyer, address, spoon, _ = shop
    make.claimed(buyer.id, "SAVE200", "discount", "200")

    first = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], coupon_code="SAVE200")
    assert _claim_row(session, "SAVE200", buyer.id).used_order_id == first.id

    with pytest.raises(AlreadyUsed):
        _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], coupon_code="SAVE200")

    assert len(session.exec(select(Order)).all()) == 1
    assert len(gateway.calls) == 1


def test_spent_cod_coupon_rejected_on_next_order(session, gateway, settings, make, shop):
    buyer, address, spoon, _ = shop
    make.claimed(buyer.id, "SAVE200", "discount", "200")
    _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], "cod", coupon_code="SAVE200")

    with pytest.raises(CouponNotFound):
        _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], "cod", coupon_code="SAVE200")


def test_gateway_failure_releases_coupon(session, gateway, settings, make, shop):
    buyer, address, spoon, _ = shop
    make.claimed(buyer.id, "SAVE200", "discount", "200")
    gateway.fail = True

    with pytest.raises(GatewayError):
        _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], coupon_code="SAVE200")

    claimed = _claim_row(session, "SAVE200", buyer.id)
    assert claimed.status is CouponStatus.NotUsed
    assert claimed.used_order_id is None

    gateway.fail = False
    retry = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], coupon_code="SAVE200")
    assert retry.discount == 20000


def test_cancelling_unpaid_order_releases_coupon(session, gateway, settings, make, shop):
    buyer, address, spoon, _ = shop
    make.claimed(buyer.id, "SAVE200", "discount", "200")
    order = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], coupon_code="SAVE200")

    orders.update_order_status(session, order.id, "cancelled")

    claimed = _claim_row(session, "SAVE200", buyer.id)
    assert claimed.status is CouponStatus.NotUsed
    assert claimed.used_order_id is None


def test_cancelling_cod_order_keeps_coupon_spent(session, gateway, settings, make, shop):
    buyer, address, spoon, _ = shop
    make.claimed(buyer.id, "SAVE200", "discount", "200")
    order = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], "cod", coupon_code="SAVE200")

    orders.update_order_status(session, order.id, "cancelled")

    assert _claim_row(session, "SAVE200", buyer.id).status is CouponStatus.Used


def test_payment_refused_when_coupon_went_to_another_order(session, gateway, settings, make, shop):
    buyer, address, spoon, _ = shop
    make.claimed(buyer.id, "SAVE200", "discount", "200")

    # intent failed, so the online order let go of the coupon
    gateway.fail = True
    with pytest.raises(GatewayError):
        _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], coupon_code="SAVE200")
    stranded = session.exec(select(Order)).one()

    gateway.fail = False
    cod = _place(session, gateway, settings, buyer, address, [LineItem(spoon.id, 1)], "cod", coupon_code="SAVE200")

    signature = sign("order_LATE", "pay_9", settings.razorpay_key_secret)
    with pytest.raises(AlreadyUsed):
        orders.confirm_payment(session, stranded.id, "order_LATE", "pay_9", signature, settings)

    session.expire_all()
    assert session.get(Order, stranded.id).payment_status.value == "pending"
    assert _claim_row(session, "SAVE200", buyer.id).used_order_id == cod.id


def test_concurrent_cod_checkouts_spend_coupon_once(tmp_path, settings):
    engine = create_engine(f"sqlite:///{tmp_path / 'checkout.db'}", connect_args={"check_same_thread": False})
    init_db(engine)
    with Session(engine) as s:
        buyer = User(email="racer@shop.test")
        spoon = Product(name="Brass Spoon", new_price=50000, old_price=50000)
        s.add_all([buyer, spoon])
        s.commit()
        address = Address(
            user_id=buyer.id, full_name="Asha Rao", phone_number="9", city="Bengaluru", state="KA", pincode="560038"
        )
        s.add(address)
        s.commit()
        ledger.insert_coupons(s, [{"code": "SAVE200", "reward_type": "discount", "reward_value": "200"}])
        ledger.claim(s, "SAVE200", buyer.id)
        buyer_id, address_id, product_id = buyer.id, address.id, spoon.id

    barrier = threading.Barrier(2)
    outcomes = []

    def checkout():
        with Session(engine) as s:
            barrier.wait()
            try:
                order = asyncio.run(
                    orders.create_order(
                        s, None, buyer_id, address_id, [LineItem(product_id, 1)], "cod", "SAVE200", settings=settings
                    )
                )
                outcomes.append(("ok", order.discount))
            except (AlreadyUsed, CouponNotFound):
                outcomes.append(("refused", 0))

    threads = [threading.Thread(target=checkout) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == [("ok", 20000), ("refused", 0)]
    with Session(engine) as s:
        placed = s.exec(select(Order)).all()
        assert [o.discount for o in placed] == [20000]
    engine.dispose()
