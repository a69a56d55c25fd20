# storefront/ledger.py
"""
Reward ledger: spoon point balances and the coupon lifecycle.

A master Coupon is claimed by at most one user. Claiming copies it into a
per-user ClaimedCoupon (NotUsed), which moves to Used exactly once, either
immediately for points rewards or when the order that carried it is paid.
While an order is awaiting payment the claim is bound to that order
(``used_order_id``) and no other order can carry it.

Every state change is a single conditional UPDATE whose row count decides the
outcome, so two requests racing for the same coupon or the same balance
cannot both win.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import or_, update
from sqlmodel import Session, select

from .errors import (
    AlreadyClaimed,
    AlreadyUsed,
    CodeGenerationFailed,
    CouponNotFound,
    InsufficientPoints,
    NotFound,
    ValidationError,
)
from .models import (
    CashbackRequest,
    CashbackStatus,
    ClaimedCoupon,
    Coupon,
    CouponStatus,
    RewardType,
    User,
)
from .rewards import Cashback, Discount, Points, canonical_value, parse_reward, reward_type_of
from .security import gen_code

logger = logging.getLogger(__name__)

REDEEM_COST = 100
# currency units granted per redemption
REDEEM_DISCOUNT_VALUE = "10"
REDEEM_CASHBACK_VALUE = "10"


def _user_exists(session: Session, user_id: int) -> bool:
    return session.exec(select(User.id).where(User.id == user_id)).first() is not None


def _credit(session: Session, user_id: int, points: int) -> None:
    session.exec(
        update(User)
        .where(User.id == user_id)
        .values(spoon_points=User.spoon_points + points)
        .execution_options(synchronize_session=False)
    )


def _debit(session: Session, user_id: int, points: int) -> None:
    result = session.exec(
        update(User)
        .where(User.id == user_id)
        .where(User.spoon_points >= points)
        .values(spoon_points=User.spoon_points - points)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    session.rollback()
    if not _user_exists(session, user_id):
        raise NotFound("User not found")
    raise InsufficientPoints("Not enough points.")


def balance(session: Session, user_id: int) -> int:
    points = session.exec(select(User.spoon_points).where(User.id == user_id)).first()
    if points is None:
        raise NotFound("User not found")
    return points


def claim(session: Session, code: str, user_id: int) -> ClaimedCoupon:
    code = (code or "").strip()
    if not code:
        raise ValidationError("Coupon code is required.")
    if not _user_exists(session, user_id):
        raise NotFound("User not found")

    # first claim wins
    result = session.exec(
        update(Coupon)
        .where(Coupon.code == code)
        .where(Coupon.claimed == False)  # noqa: E712
        .values(claimed=True, claimed_by=user_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        if session.exec(select(Coupon.id).where(Coupon.code == code)).first() is None:
            raise NotFound("Coupon not found.")
        raise AlreadyClaimed("Coupon already claimed.")

    coupon = session.exec(select(Coupon).where(Coupon.code == code)).one()
    try:
        reward = parse_reward(coupon.reward_type, coupon.reward_value)
    except ValidationError:
        session.rollback()
        raise

    claimed = ClaimedCoupon(
        user_id=user_id,
        code=coupon.code,
        reward_type=reward_type_of(reward),
        reward_value=canonical_value(reward),
    )

    # points have no separate "use", they land on the balance right away
    if isinstance(reward, Points):
        _credit(session, user_id, reward.amount)
        claimed.status = CouponStatus.Used
        session.exec(
            update(Coupon)
            .where(Coupon.id == coupon.id)
            .values(used=True)
            .execution_options(synchronize_session=False)
        )

    session.add(claimed)
    session.commit()
    session.refresh(claimed)

    logger.info("Coupon %s claimed by user %s (%s)", code, user_id, claimed.reward_type.value)
    return claimed


def verify(session: Session, code: str, user_id: int) -> ClaimedCoupon:
    """The caller's unused claim on ``code``, or CouponNotFound."""
    code = (code or "").strip()
    claimed = session.exec(
        select(ClaimedCoupon)
        .where(ClaimedCoupon.code == code)
        .where(ClaimedCoupon.user_id == user_id)
        .where(ClaimedCoupon.status == CouponStatus.NotUsed)
    ).first()
    if not claimed:
        raise CouponNotFound("Coupon not found or already used.")
    return claimed


def _claim_row(session: Session, code: str, user_id: int) -> Optional[ClaimedCoupon]:
    return session.exec(
        select(ClaimedCoupon)
        .where(ClaimedCoupon.code == code)
        .where(ClaimedCoupon.user_id == user_id)
        .execution_options(populate_existing=True)
    ).first()


def _spend_master(session: Session, code: str) -> None:
    session.exec(
        update(Coupon).where(Coupon.code == code).values(used=True).execution_options(synchronize_session=False)
    )


def reserve(session: Session, code: str, user_id: int, order_id: int, spend: bool = False) -> None:
    """
    Bind an unused claim to ``order_id`` inside the caller's transaction.

    A claim bound to one order cannot be carried by another, so the discount
    is granted once. With ``spend`` the claim moves to Used in the same
    statement (orders with no later confirmation). Nothing is committed here;
    on failure the caller's transaction is rolled back and AlreadyUsed or
    CouponNotFound is raised.
    """
    values = {"used_order_id": order_id}
    if spend:
        values["status"] = CouponStatus.Used
    result = session.exec(
        update(ClaimedCoupon)
        .where(ClaimedCoupon.code == code)
        .where(ClaimedCoupon.user_id == user_id)
        .where(ClaimedCoupon.status == CouponStatus.NotUsed)
        .where(ClaimedCoupon.used_order_id.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        if spend:
            _spend_master(session, code)
        return

    session.rollback()
    claimed = _claim_row(session, code, user_id)
    if not claimed:
        raise CouponNotFound("Coupon not found.")
    logger.warning(
        "Coupon %s of user %s refused for order %s, held by order %s", code, user_id, order_id, claimed.used_order_id
    )
    raise AlreadyUsed("Coupon already used.")


def release(session: Session, code: str, user_id: int, order_id: int) -> bool:
    """Unbind a still unused claim from ``order_id``. Not committed here."""
    result = session.exec(
        update(ClaimedCoupon)
        .where(ClaimedCoupon.code == code)
        .where(ClaimedCoupon.user_id == user_id)
        .where(ClaimedCoupon.status == CouponStatus.NotUsed)
        .where(ClaimedCoupon.used_order_id == order_id)
        .values(used_order_id=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info("Coupon %s of user %s released by order %s", code, user_id, order_id)
        return True
    return False


def mark_used(
    session: Session,
    code: str,
    user_id: int,
    order_id: Optional[int] = None,
    commit: bool = True,
) -> bool:
    """
    Move a claimed coupon from NotUsed to Used.

    Returns True when this call made the transition and False when the coupon
    was already Used by the same order, so payment-confirmation retries can
    call it freely. A claim held by (or spent on) another order raises
    AlreadyUsed; a missing claim raises CouponNotFound. With ``commit=False``
    the change joins the caller's transaction.
    """
    query = (
        update(ClaimedCoupon)
        .where(ClaimedCoupon.code == code)
        .where(ClaimedCoupon.user_id == user_id)
        .where(ClaimedCoupon.status == CouponStatus.NotUsed)
    )
    values = {"status": CouponStatus.Used}
    if order_id is not None:
        query = query.where(
            or_(ClaimedCoupon.used_order_id.is_(None), ClaimedCoupon.used_order_id == order_id)
        )
        values["used_order_id"] = order_id

    result = session.exec(query.values(**values).execution_options(synchronize_session=False))
    if result.rowcount == 1:
        _spend_master(session, code)
        if commit:
            session.commit()
        logger.info("Coupon %s used by user %s (order %s)", code, user_id, order_id)
        return True

    claimed = _claim_row(session, code, user_id)
    if not claimed:
        raise CouponNotFound("Coupon not found.")
    if claimed.status is CouponStatus.Used and (order_id is None or claimed.used_order_id == order_id):
        return False

    logger.warning(
        "Coupon %s of user %s is bound to order %s, refused for order %s",
        code,
        user_id,
        claimed.used_order_id,
        order_id,
    )
    raise AlreadyUsed("Coupon already used.")


def list_claimed(session: Session, user_id: int) -> List[ClaimedCoupon]:
    return session.exec(
        select(ClaimedCoupon).where(ClaimedCoupon.user_id == user_id).order_by(ClaimedCoupon.id.desc())
    ).all()


def _unique_code(session: Session, prefix: str) -> str:
    for _ in range(10):
        code = f"{prefix}{gen_code(8)}"
        if session.exec(select(Coupon.id).where(Coupon.code == code)).first() is None:
            return code
    raise CodeGenerationFailed("Failed to generate a unique coupon code")


def redeem_for_discount(session: Session, user_id: int) -> Coupon:
    """Trade REDEEM_COST points for a discount coupon already claimed by the caller."""
    reward = parse_reward(RewardType.discount, REDEEM_DISCOUNT_VALUE)
    code = _unique_code(session, "SPD-")

    _debit(session, user_id, REDEEM_COST)

    coupon = Coupon(
        code=code,
        reward_type=RewardType.discount,
        reward_value=canonical_value(reward),
        claimed=True,
        claimed_by=user_id,
    )
    session.add(coupon)
    session.add(
        ClaimedCoupon(
            user_id=user_id,
            code=code,
            reward_type=RewardType.discount,
            reward_value=coupon.reward_value,
        )
    )
    session.commit()
    session.refresh(coupon)

    logger.info("User %s redeemed %s points for coupon %s", user_id, REDEEM_COST, code)
    return coupon


def redeem_for_cashback(session: Session, user_id: int, payout_id: str) -> CashbackRequest:
    payout_id = (payout_id or "").strip()
    if not payout_id:
        raise ValidationError("UPI ID required")

    reward: Cashback = parse_reward(RewardType.cashback, REDEEM_CASHBACK_VALUE)

    _debit(session, user_id, REDEEM_COST)

    request = CashbackRequest(
        user_id=user_id,
        payout_id=payout_id,
        amount=reward.amount,
        status=CashbackStatus.Pending,
    )
    session.add(request)
    session.commit()
    session.refresh(request)

    logger.info("User %s requested cashback %s (request %s)", user_id, reward.amount, request.id)
    return request


def insert_coupons(session: Session, coupons: Iterable[dict]) -> List[Coupon]:
    """
    Operator bulk insert. Every entry is validated before anything is written;
    codes that already exist (or repeat within the batch) are skipped.
    """
    parsed = []
    for entry in coupons:
        code = str(entry.get("code") or "").strip()
        if not code:
            raise ValidationError("Coupon code is required.")
        reward = parse_reward(entry.get("reward_type"), entry.get("reward_value"))
        if isinstance(reward, Discount) and reward.amount == 0:
            raise ValidationError(f"Discount coupon {code} has no value.")
        parsed.append((code, reward))

    codes = [code for code, _ in parsed]
    existing = set(session.exec(select(Coupon.code).where(Coupon.code.in_(codes))).all()) if codes else set()

    inserted = []
    for code, reward in parsed:
        if code in existing:
            continue
        existing.add(code)
        coupon = Coupon(code=code, reward_type=reward_type_of(reward), reward_value=canonical_value(reward))
        session.add(coupon)
        inserted.append(coupon)

    session.commit()
    for coupon in inserted:
        session.refresh(coupon)

    logger.info("Inserted %s coupons, skipped %s", len(inserted), len(parsed) - len(inserted))
    return inserted
