# storefront/models.py
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    user = "user"
    admin = "admin"


class RewardType(str, Enum):
    discount = "discount"
    points = "points"
    sample = "sample"
    recipe = "recipe"
    cashback = "cashback"


class CouponStatus(str, Enum):
    NotUsed = "NotUsed"
    Used = "Used"


class PaymentMethod(str, Enum):
    cod = "cod"
    razorpay = "razorpay"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"


class OrderStatus(str, Enum):
    placed = "placed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class CashbackStatus(str, Enum):
    Pending = "Pending"
    Approved = "Approved"
    Rejected = "Rejected"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str = Field(default="")
    role: Role = Field(default=Role.user, index=True)
    # never negative, debits are guarded in the UPDATE itself
    spoon_points: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    category: str = Field(default="", index=True)
    # prices in minor units (paise)
    new_price: int = Field(ge=0)
    old_price: int = Field(default=0, ge=0)
    available: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)

    reviews: List["Review"] = Relationship(back_populates="product")


class Review(SQLModel, table=True):
    # one review per user and product
    __table_args__ = (UniqueConstraint("product_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    rating: int
    comment: str = Field(default="")
    created_at: datetime = Field(default_factory=utcnow)

    product: Optional[Product] = Relationship(back_populates="reviews")
    user: Optional[User] = Relationship()


class CartItem(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "product_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    product_id: int = Field(foreign_key="product.id")
    quantity: int = Field(default=1)
    added_at: datetime = Field(default_factory=utcnow)

    product: Optional[Product] = Relationship()


class Address(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    full_name: str
    phone_number: str
    area: str = Field(default="")
    city: str
    state: str
    pincode: str
    created_at: datetime = Field(default_factory=utcnow)


class Coupon(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)
    reward_type: RewardType
    # canonical string form, see rewards.canonical_value
    reward_value: str
    claimed: bool = Field(default=False)
    claimed_by: Optional[int] = Field(default=None, foreign_key="user.id")
    used: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class ClaimedCoupon(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("code", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    code: str = Field(index=True)
    reward_type: RewardType
    reward_value: str
    status: CouponStatus = Field(default=CouponStatus.NotUsed)
    used_order_id: Optional[int] = Field(default=None)
    claimed_at: datetime = Field(default_factory=utcnow)


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    address_id: int = Field(foreign_key="address.id")

    # all amounts in minor units, computed server side
    subtotal: int = Field(default=0)
    discount: int = Field(default=0)
    cod_fee: int = Field(default=0)
    total_amount: int

    payment_method: PaymentMethod
    payment_status: PaymentStatus = Field(default=PaymentStatus.pending, index=True)
    order_status: OrderStatus = Field(default=OrderStatus.placed, index=True)

    # coupon snapshot, informational only
    coupon_code: Optional[str] = None
    coupon_reward_type: Optional[RewardType] = None
    coupon_reward_value: Optional[str] = None

    gateway_order_id: Optional[str] = Field(default=None, unique=True, index=True)
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, index=True)
    paid_at: Optional[datetime] = None

    items: List["OrderItem"] = Relationship(back_populates="order")


class OrderItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: Optional[int] = Field(default=None, foreign_key="orders.id", index=True)
    product_id: int = Field(foreign_key="product.id")
    quantity: int
    # frozen from Product.new_price when the order was created
    price_at_purchase: int

    order: Optional[Order] = Relationship(back_populates="items")


class CashbackRequest(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    payout_id: str
    amount: int
    status: CashbackStatus = Field(default=CashbackStatus.Pending)
    requested_at: datetime = Field(default_factory=utcnow)


class ContactMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    message: str
    created_at: datetime = Field(default_factory=utcnow, index=True)


class LoginCode(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True)
    # "salt:hexdigest", the code itself is never stored
    code_hash: str
    expires_at: datetime
    attempts: int = Field(default=0)
    is_used: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
