# storefront/pricing.py
"""
Authoritative order pricing.

Totals are always rebuilt here from catalog prices and the caller's claimed
coupon; nothing the client sends about prices or totals is consulted. The
engine only reads: marking the coupon used belongs to the order workflow.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlmodel import Session

from . import catalog, ledger
from .config import MINOR_UNITS, Settings, get_settings
from .errors import AlreadyUsed, InvalidQuantity, ValidationError
from .models import PaymentMethod, RewardType
from .rewards import Discount, parse_reward


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    price_at_purchase: int

    @property
    def line_total(self) -> int:
        return self.price_at_purchase * self.quantity


@dataclass(frozen=True)
class CouponSnapshot:
    code: str
    reward_type: RewardType
    reward_value: str


@dataclass
class Quote:
    lines: List[PricedLine] = field(default_factory=list)
    subtotal: int = 0
    discount: int = 0
    cod_fee: int = 0
    total_amount: int = 0
    coupon: Optional[CouponSnapshot] = None


def _floor_to_unit(amount: int) -> int:
    return (amount // MINOR_UNITS) * MINOR_UNITS


def price_lines(session: Session, items: Iterable) -> List[PricedLine]:
    lines = []
    for item in items:
        product = catalog.get_product(session, item.product_id)
        if item.quantity is None or item.quantity <= 0:
            raise InvalidQuantity(f"Invalid quantity for product {item.product_id}")
        if not product.available:
            raise ValidationError(f"Product {product.id} is not available")
        lines.append(PricedLine(product.id, item.quantity, product.new_price))
    return lines


def quote_order(
    session: Session,
    user_id: int,
    items: Iterable,
    payment_method: PaymentMethod,
    coupon_code: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Quote:
    settings = settings or get_settings()

    quote = Quote(lines=price_lines(session, items))
    quote.subtotal = sum(line.line_total for line in quote.lines)
    quote.cod_fee = settings.cod_fee if PaymentMethod(payment_method) is PaymentMethod.cod else 0

    total = quote.subtotal
    if settings.discount_includes_cod_fee:
        total += quote.cod_fee

    if coupon_code:
        claimed = ledger.verify(session, coupon_code, user_id)
        if claimed.used_order_id is not None:
            raise AlreadyUsed(f"Coupon is held by order {claimed.used_order_id}")
        reward = parse_reward(claimed.reward_type, claimed.reward_value)
        if isinstance(reward, Discount):
            discounted = max(0, _floor_to_unit(total - reward.amount))
            quote.discount = total - discounted
            total = discounted
        quote.coupon = CouponSnapshot(claimed.code, claimed.reward_type, claimed.reward_value)

    if not settings.discount_includes_cod_fee:
        total += quote.cod_fee

    quote.total_amount = total
    return quote
