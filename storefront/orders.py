# storefront/orders.py
"""
Order lifecycle.

Two independent state fields live on an order:

* payment_status: pending -> paid, driven only by a verified gateway
  confirmation. An order whose confirmation never arrives stays pending.
* order_status: placed -> shipped -> delivered, or placed -> cancelled,
  driven by fulfillment.

Each transition is a conditional UPDATE on the current state, so repeated or
concurrent calls resolve to a single winner. A coupon is bound to its order in
the transaction that creates the order, so two orders can never share one.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import accounts, ledger, pricing
from .config import Settings, get_settings
from .errors import (
    DuplicateGatewayOrder,
    GatewayError,
    InvalidSignature,
    InvalidTransition,
    NotFound,
    StoreError,
    ValidationError,
)
from .gateway import RazorpayGateway, verify_signature
from .models import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

FULFILLMENT_TRANSITIONS = {
    OrderStatus.placed: {OrderStatus.shipped, OrderStatus.cancelled},
    OrderStatus.shipped: {OrderStatus.delivered},
}


def _gateway_order_taken(session: Session, gateway_order_id: str, exclude_order_id: Optional[int] = None) -> bool:
    query = select(Order.id).where(Order.gateway_order_id == gateway_order_id)
    if exclude_order_id is not None:
        query = query.where(Order.id != exclude_order_id)
    return session.exec(query).first() is not None


async def create_order(
    session: Session,
    gateway: RazorpayGateway,
    user_id: int,
    address_id: Optional[int],
    items: Iterable,
    payment_method,
    coupon_code: Optional[str] = None,
    gateway_order_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Order:
    settings = settings or get_settings()

    items = list(items or [])
    if not address_id or not items:
        raise ValidationError("Missing required order data")

    try:
        method = PaymentMethod(payment_method)
    except ValueError:
        raise ValidationError(f"Unsupported payment method: {payment_method!r}")

    address = accounts.get_address(session, user_id, address_id)

    gateway_order_id = (gateway_order_id or "").strip() or None
    if gateway_order_id:
        if method is not PaymentMethod.razorpay:
            raise ValidationError("Gateway order id is only valid for razorpay payments")
        if _gateway_order_taken(session, gateway_order_id):
            raise DuplicateGatewayOrder("Duplicate Razorpay order")

    quote = pricing.quote_order(session, user_id, items, method, coupon_code, settings)
    if method is PaymentMethod.razorpay and quote.total_amount <= 0:
        raise ValidationError("Nothing to pay online, place the order as cash on delivery")

    order = Order(
        user_id=user_id,
        address_id=address.id,
        subtotal=quote.subtotal,
        discount=quote.discount,
        cod_fee=quote.cod_fee,
        total_amount=quote.total_amount,
        payment_method=method,
        payment_status=PaymentStatus.pending,
        order_status=OrderStatus.placed,
        gateway_order_id=gateway_order_id,
    )
    if quote.coupon:
        order.coupon_code = quote.coupon.code
        order.coupon_reward_type = quote.coupon.reward_type
        order.coupon_reward_value = quote.coupon.reward_value

    try:
        session.add(order)
        session.flush()
        if order.coupon_code:
            # cash orders never get a gateway confirmation, the coupon is spent on placement
            ledger.reserve(session, order.coupon_code, user_id, order.id, spend=method is PaymentMethod.cod)
        for line in quote.lines:
            session.add(
                OrderItem(
                    order_id=order.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price_at_purchase=line.price_at_purchase,
                )
            )
        session.commit()
    except IntegrityError:
        session.rollback()
        if gateway_order_id:
            raise DuplicateGatewayOrder("Duplicate Razorpay order")
        raise
    session.refresh(order)

    logger.info(
        "Order %s placed by user %s: %s %s via %s",
        order.id,
        user_id,
        order.total_amount,
        settings.currency,
        method.value,
    )

    if method is PaymentMethod.razorpay and not gateway_order_id:
        try:
            intent_id = await gateway.create_intent(order.total_amount, settings.currency, f"receipt_order_{order.id}")
        except GatewayError:
            if order.coupon_code and ledger.release(session, order.coupon_code, user_id, order.id):
                session.commit()
            raise
        order.gateway_order_id = intent_id
        session.add(order)
        session.commit()

    session.refresh(order)
    return order


def confirm_payment(
    session: Session,
    order_id: int,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    settings: Optional[Settings] = None,
) -> Order:
    """
    Apply a gateway payment confirmation.

    The signature is checked before anything is read or written. Confirming an
    already paid order returns it unchanged, so gateway retries are harmless.
    The order's coupon is spent in the same transaction as the pending->paid
    update; if the coupon went to another order the confirmation is refused
    with AlreadyUsed and the order stays pending.
    """
    settings = settings or get_settings()

    if not verify_signature(gateway_order_id, gateway_payment_id, signature, settings.razorpay_key_secret):
        logger.warning(
            "SECURITY: invalid payment signature for order %s (gateway order %s, payment %s)",
            order_id,
            gateway_order_id,
            gateway_payment_id,
        )
        raise InvalidSignature("Invalid signature")

    order = session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")

    if order.payment_method is not PaymentMethod.razorpay:
        raise ValidationError("Order is not paid through the gateway")

    if order.gateway_order_id:
        mismatch = order.gateway_order_id != gateway_order_id
    else:
        mismatch = _gateway_order_taken(session, gateway_order_id, exclude_order_id=order.id)
    if mismatch:
        logger.warning(
            "SECURITY: gateway order %s presented for order %s which expects %s",
            gateway_order_id,
            order.id,
            order.gateway_order_id,
        )
        raise InvalidSignature("Signature does not belong to this order")

    result = session.exec(
        update(Order)
        .where(Order.id == order.id)
        .where(Order.payment_status == PaymentStatus.pending)
        .values(
            payment_status=PaymentStatus.paid,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            gateway_signature=signature,
            paid_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        if order.coupon_code:
            # spent in the same transaction as the payment, or neither happens
            try:
                ledger.mark_used(session, order.coupon_code, order.user_id, order.id, commit=False)
            except StoreError:
                session.rollback()
                raise
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise DuplicateGatewayOrder("Gateway order already attached to another order")
        logger.info("Order %s paid (gateway payment %s)", order.id, gateway_payment_id)
    else:
        session.rollback()
        logger.info("Order %s already paid, repeat confirmation ignored", order.id)

    session.refresh(order)
    return order


def update_order_status(session: Session, order_id: int, new_status) -> Order:
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"Unknown order status: {new_status!r}")

    order = session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")

    current = order.order_status
    if target not in FULFILLMENT_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot move order from {current.value} to {target.value}")

    result = session.exec(
        update(Order)
        .where(Order.id == order.id)
        .where(Order.order_status == current)
        .values(order_status=target)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise InvalidTransition(f"Cannot move order from {current.value} to {target.value}")

    if target is OrderStatus.cancelled and order.coupon_code:
        # an unpaid order gives its coupon back, spent coupons stay spent
        ledger.release(session, order.coupon_code, order.user_id, order.id)

    session.commit()
    session.refresh(order)
    logger.info("Order %s %s -> %s", order.id, current.value, target.value)
    return order


def list_orders_for_user(session: Session, user_id: int) -> List[Order]:
    return session.exec(
        select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
    ).all()


def list_all_orders(session: Session) -> List[Order]:
    return session.exec(select(Order).order_by(Order.created_at.desc(), Order.id.desc())).all()
