# storefront/rewards.py
"""
Typed reward values.

Coupons persist ``reward_type`` plus a string ``reward_value``. Consumers never
look at the raw string: they call ``parse_reward`` once and branch on the
resulting type.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Union

from .config import MINOR_UNITS
from .errors import ValidationError
from .models import RewardType


@dataclass(frozen=True)
class Discount:
    amount: int  # minor units


@dataclass(frozen=True)
class Points:
    amount: int


@dataclass(frozen=True)
class Sample:
    item_id: str


@dataclass(frozen=True)
class Recipe:
    recipe_id: str


@dataclass(frozen=True)
class Cashback:
    amount: int  # minor units


Reward = Union[Discount, Points, Sample, Recipe, Cashback]


def _money(raw) -> int:
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {raw!r}")
    if not value.is_finite() or value < 0:
        raise ValidationError(f"Invalid amount: {raw!r}")
    return int((value * MINOR_UNITS).to_integral_value(rounding=ROUND_FLOOR))


def _points(raw) -> int:
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"Invalid points value: {raw!r}")
    if value < 0:
        raise ValidationError(f"Invalid points value: {raw!r}")
    return value


def _ident(raw) -> str:
    value = str(raw).strip() if raw is not None else ""
    if not value:
        raise ValidationError("Reward value is required")
    return value


def parse_reward(reward_type, raw_value) -> Reward:
    try:
        kind = RewardType(reward_type)
    except ValueError:
        raise ValidationError(f"Unknown reward type: {reward_type!r}")

    if raw_value is None:
        raise ValidationError("Reward value is required")

    if kind is RewardType.discount:
        return Discount(_money(raw_value))
    if kind is RewardType.points:
        return Points(_points(raw_value))
    if kind is RewardType.sample:
        return Sample(_ident(raw_value))
    if kind is RewardType.recipe:
        return Recipe(_ident(raw_value))
    return Cashback(_money(raw_value))


def reward_type_of(reward: Reward) -> RewardType:
    return {
        Discount: RewardType.discount,
        Points: RewardType.points,
        Sample: RewardType.sample,
        Recipe: RewardType.recipe,
        Cashback: RewardType.cashback,
    }[type(reward)]


def canonical_value(reward: Reward) -> str:
    """String form stored on Coupon / ClaimedCoupon rows."""
    if isinstance(reward, (Discount, Cashback)):
        units, minor = divmod(reward.amount, MINOR_UNITS)
        return str(units) if not minor else f"{units}.{minor:02d}"
    if isinstance(reward, Points):
        return str(reward.amount)
    if isinstance(reward, Sample):
        return reward.item_id
    return reward.recipe_id
