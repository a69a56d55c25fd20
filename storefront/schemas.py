# storefront/schemas.py
"""
Request and response bodies for the HTTP layer.

Amounts are integers in minor units (paise). Request models stay lenient on
business rules so the services report them with the store's own errors.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import (
    CartItem,
    CashbackRequest,
    ClaimedCoupon,
    ContactMessage,
    Coupon,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    Review,
    RewardType,
)


class SignupRequest(BaseModel):
    email: str
    name: str = ""


class LoginCodeRequest(BaseModel):
    email: str


class LoginVerifyRequest(BaseModel):
    email: str
    code: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class ProductIn(BaseModel):
    name: str
    category: str = ""
    new_price: int = Field(..., ge=0, description="Price in minor units")
    old_price: int = Field(0, ge=0, description="Price in minor units")
    available: bool = True


class AddressIn(BaseModel):
    full_name: str
    phone_number: str
    area: str = ""
    city: str
    state: str
    pincode: str


class AddressUpdate(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    area: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class ReviewIn(BaseModel):
    rating: int
    comment: str = ""


class CartItemIn(BaseModel):
    product_id: int
    quantity: int = 1


class CartRemoveIn(BaseModel):
    product_id: int


class ContactIn(BaseModel):
    name: str
    email: str
    message: str


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = 1


class CreateOrderRequest(BaseModel):
    address_id: Optional[int] = None
    items: List[OrderItemIn] = Field(default_factory=list)
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None
    # set when the client opened the Razorpay order itself
    razorpay_order_id: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    order_id: int
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class OrderStatusUpdate(BaseModel):
    order_status: OrderStatus


class CouponCodeRequest(BaseModel):
    code: str


class CouponIn(BaseModel):
    code: str
    reward_type: RewardType
    reward_value: str


class CashbackIn(BaseModel):
    upi_id: str


class OrderItemOut(BaseModel):
    product_id: int
    quantity: int
    price_at_purchase: int


class CouponSnapshotOut(BaseModel):
    code: str
    reward_type: Optional[RewardType] = None
    reward_value: Optional[str] = None


class OrderOut(BaseModel):
    id: int
    user_id: int
    address_id: int
    items: List[OrderItemOut]
    subtotal: int
    discount: int
    cod_fee: int
    total_amount: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    coupon: Optional[CouponSnapshotOut] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderOut":
        coupon = None
        if order.coupon_code:
            coupon = CouponSnapshotOut(
                code=order.coupon_code,
                reward_type=order.coupon_reward_type,
                reward_value=order.coupon_reward_value,
            )
        return cls(
            id=order.id,
            user_id=order.user_id,
            address_id=order.address_id,
            items=[
                OrderItemOut(product_id=i.product_id, quantity=i.quantity, price_at_purchase=i.price_at_purchase)
                for i in order.items
            ],
            subtotal=order.subtotal,
            discount=order.discount,
            cod_fee=order.cod_fee,
            total_amount=order.total_amount,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            order_status=order.order_status,
            coupon=coupon,
            razorpay_order_id=order.gateway_order_id,
            razorpay_payment_id=order.gateway_payment_id,
            created_at=order.created_at,
        )


class ClaimedCouponOut(BaseModel):
    code: str
    reward_type: RewardType
    reward_value: str
    status: str

    @classmethod
    def from_claim(cls, claimed: ClaimedCoupon) -> "ClaimedCouponOut":
        return cls(
            code=claimed.code,
            reward_type=claimed.reward_type,
            reward_value=claimed.reward_value,
            status=claimed.status.value,
        )


class CouponOut(BaseModel):
    code: str
    reward_type: RewardType
    reward_value: str
    claimed: bool

    @classmethod
    def from_coupon(cls, coupon: Coupon) -> "CouponOut":
        return cls(
            code=coupon.code,
            reward_type=coupon.reward_type,
            reward_value=coupon.reward_value,
            claimed=coupon.claimed,
        )


class CashbackOut(BaseModel):
    id: int
    upi_id: str
    amount: int
    status: str

    @classmethod
    def from_request(cls, request: CashbackRequest) -> "CashbackOut":
        return cls(id=request.id, upi_id=request.payout_id, amount=request.amount, status=request.status.value)


class ReviewOut(BaseModel):
    id: int
    user_id: int
    user_name: str
    rating: int
    comment: str
    created_at: datetime

    @classmethod
    def from_review(cls, review: Review) -> "ReviewOut":
        return cls(
            id=review.id,
            user_id=review.user_id,
            user_name=review.user.name if review.user else "",
            rating=review.rating,
            comment=review.comment,
            created_at=review.created_at,
        )


class ProductDetailOut(BaseModel):
    id: int
    name: str
    category: str
    new_price: int
    old_price: int
    available: bool
    reviews: List[ReviewOut]

    @classmethod
    def from_product(cls, product: Product, reviews: List[Review]) -> "ProductDetailOut":
        return cls(
            id=product.id,
            name=product.name,
            category=product.category,
            new_price=product.new_price,
            old_price=product.old_price,
            available=product.available,
            reviews=[ReviewOut.from_review(r) for r in reviews],
        )


class CartLineOut(BaseModel):
    product_id: int
    name: str
    new_price: int
    quantity: int
    available: bool

    @classmethod
    def from_item(cls, item: CartItem) -> "CartLineOut":
        return cls(
            product_id=item.product_id,
            name=item.product.name,
            new_price=item.product.new_price,
            quantity=item.quantity,
            available=item.product.available,
        )


class ContactOut(BaseModel):
    id: int
    name: str
    email: str
    message: str
    created_at: datetime

    @classmethod
    def from_message(cls, msg: ContactMessage) -> "ContactOut":
        return cls(id=msg.id, name=msg.name, email=msg.email, message=msg.message, created_at=msg.created_at)
