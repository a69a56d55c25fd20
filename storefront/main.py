# storefront/main.py
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import accounts, cart, catalog, contact, ledger, orders
from .config import Settings, get_settings
from .db import get_session, init_db
from .errors import StoreError
from .export import XLSX_MEDIA_TYPE, export_xlsx
from .gateway import RazorpayGateway, get_gateway
from .mailer import Mailer, get_mailer
from .models import Role, User
from .pricing import LineItem
from .schemas import (
    AddressIn,
    AddressUpdate,
    CartItemIn,
    CartLineOut,
    CartRemoveIn,
    CashbackIn,
    CashbackOut,
    ClaimedCouponOut,
    ContactIn,
    ContactOut,
    CouponCodeRequest,
    CouponIn,
    CouponOut,
    CreateOrderRequest,
    LoginCodeRequest,
    LoginVerifyRequest,
    OrderOut,
    OrderStatusUpdate,
    ProductDetailOut,
    ProductIn,
    ProfileUpdate,
    ReviewIn,
    ReviewOut,
    SignupRequest,
    VerifyPaymentRequest,
)
from .security import issue_token, read_token

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer = HTTPBearer(auto_error=False)


@app.on_event("startup")
def on_startup():
    init_db()


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> User:
    if not credentials:
        raise HTTPException(status_code=401, detail="Not logged in")
    user_id = read_token(credentials.credentials, settings.hash_secret)
    user = session.get(User, user_id) if user_id is not None else None
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != Role.admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return user


@app.get("/")
def index():
    return {"status": "ok", "app": "storefront"}


# ---------------------- users ----------------------

@app.post("/users/signup", status_code=201)
def signup(
    payload: SignupRequest,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    user = accounts.signup(session, payload.email, payload.name, settings)
    return {"success": True, "token": issue_token(user.id, settings.hash_secret), "user_id": user.id}


@app.post("/users/login/request-code")
async def request_login_code(
    payload: LoginCodeRequest,
    session: Session = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    await accounts.request_login_code(session, mailer, payload.email, settings)
    return {"success": True, "message": "Login code sent"}


@app.post("/users/login/verify")
def verify_login_code(
    payload: LoginVerifyRequest,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    user = accounts.verify_login_code(session, payload.email, payload.code, settings)
    return {"success": True, "token": issue_token(user.id, settings.hash_secret), "user_id": user.id}


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "spoon_points": user.spoon_points,
    }


@app.get("/users/me")
def me(user: User = Depends(get_current_user)):
    return _user_out(user)


@app.put("/users/me")
def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    user = accounts.update_profile(session, user.id, name=payload.name, email=payload.email)
    return {"success": True, "user": _user_out(user)}


@app.get("/user/spoonpoints")
def spoon_points(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return {"success": True, "spoonPoints": ledger.balance(session, user.id)}


# ---------------------- catalog ----------------------

@app.post("/products", status_code=201)
def add_product(
    payload: ProductIn,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    product = catalog.add_product(
        session,
        name=payload.name,
        new_price=payload.new_price,
        old_price=payload.old_price,
        category=payload.category,
        available=payload.available,
    )
    return product.model_dump()


@app.get("/products")
def list_products(category: Optional[str] = None, session: Session = Depends(get_session)):
    return [p.model_dump() for p in catalog.list_products(session, category)]


@app.get("/products/{product_id}")
def get_product(product_id: int, session: Session = Depends(get_session)):
    return _product_with_reviews(session, product_id)


@app.delete("/products/{product_id}")
def remove_product(
    product_id: int,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    deleted = catalog.remove_product(session, product_id)
    return {"success": True, "deleted": deleted}


# ---------------------- reviews ----------------------

def _product_with_reviews(session: Session, product_id: int) -> dict:
    product = catalog.get_product(session, product_id)
    return ProductDetailOut.from_product(product, catalog.list_reviews(session, product.id)).model_dump(mode="json")


@app.post("/reviews/{product_id}", status_code=201)
def add_review(
    product_id: int,
    payload: ReviewIn,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    catalog.add_review(session, product_id, user.id, payload.rating, payload.comment)
    return _product_with_reviews(session, product_id)


@app.patch("/reviews/{product_id}")
def update_review(
    product_id: int,
    payload: ReviewIn,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    review = catalog.update_review(session, product_id, user.id, payload.rating, payload.comment)
    return {"success": True, "message": "Review updated", "review": ReviewOut.from_review(review).model_dump(mode="json")}


@app.delete("/reviews/{product_id}/{review_id}")
def delete_review(
    product_id: int,
    review_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    catalog.delete_review(session, product_id, review_id, user.id)
    return {"success": True, "message": "Review deleted"}


# ---------------------- cart ----------------------

def _cart_out(items) -> dict:
    return {"success": True, "items": [CartLineOut.from_item(i).model_dump() for i in items]}


@app.get("/cart")
def get_cart(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return _cart_out(cart.get_cart(session, user.id))


@app.post("/cart/add")
def cart_add(payload: CartItemIn, user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return _cart_out(cart.add_item(session, user.id, payload.product_id, payload.quantity))


@app.post("/cart/update")
def cart_update(payload: CartItemIn, user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return _cart_out(cart.update_item(session, user.id, payload.product_id, payload.quantity))


@app.post("/cart/remove")
def cart_remove(payload: CartRemoveIn, user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return _cart_out(cart.remove_item(session, user.id, payload.product_id))


# ---------------------- addresses ----------------------

@app.post("/addresses", status_code=201)
def add_address(
    payload: AddressIn,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return accounts.add_address(session, user.id, payload.model_dump()).model_dump()


@app.get("/addresses")
def list_addresses(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return [a.model_dump() for a in accounts.list_addresses(session, user.id)]


@app.get("/addresses/{address_id}")
def get_address(address_id: int, user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return accounts.get_address(session, user.id, address_id).model_dump()


@app.put("/addresses/{address_id}")
def update_address(
    address_id: int,
    payload: AddressUpdate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    address = accounts.update_address(session, user.id, address_id, payload.model_dump(exclude_none=True))
    return {"success": True, "message": "Address updated", "address": address.model_dump()}


@app.delete("/addresses/{address_id}")
def delete_address(address_id: int, user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    accounts.delete_address(session, user.id, address_id)
    return {"success": True, "message": "Address deleted"}


# ---------------------- contact ----------------------

@app.post("/contact")
async def submit_contact(
    payload: ContactIn,
    session: Session = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    await contact.submit(session, mailer, payload.name, payload.email, payload.message, settings)
    return {"success": True, "message": "Message sent successfully."}


@app.get("/contacts")
def list_contacts(admin: User = Depends(require_admin), session: Session = Depends(get_session)):
    return [ContactOut.from_message(m).model_dump(mode="json") for m in contact.list_messages(session)]


# ---------------------- orders ----------------------

@app.post("/orders", status_code=201)
async def create_order(
    payload: CreateOrderRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    gateway: RazorpayGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    order = await orders.create_order(
        session,
        gateway,
        user_id=user.id,
        address_id=payload.address_id,
        items=[LineItem(i.product_id, i.quantity) for i in payload.items],
        payment_method=payload.payment_method,
        coupon_code=payload.coupon_code,
        gateway_order_id=payload.razorpay_order_id,
        settings=settings,
    )
    body = {"success": True, "order": OrderOut.from_order(order).model_dump(mode="json")}
    if order.gateway_order_id:
        # what the checkout widget needs to open the payment
        body["razorpay"] = {
            "key_id": settings.razorpay_key_id,
            "order_id": order.gateway_order_id,
            "amount": order.total_amount,
            "currency": settings.currency,
        }
    return body


@app.get("/orders/mine")
def my_orders(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    rows = orders.list_orders_for_user(session, user.id)
    return {"success": True, "orders": [OrderOut.from_order(o).model_dump(mode="json") for o in rows]}


@app.post("/payments/razorpay/verify")
def verify_payment(
    payload: VerifyPaymentRequest,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    order = orders.confirm_payment(
        session,
        order_id=payload.order_id,
        gateway_order_id=payload.razorpay_order_id,
        gateway_payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
        settings=settings,
    )
    return {
        "success": True,
        "message": "Payment verified and status updated",
        "order": OrderOut.from_order(order).model_dump(mode="json"),
    }


# ---------------------- admin ----------------------

@app.get("/admin/orders")
def admin_orders(admin: User = Depends(require_admin), session: Session = Depends(get_session)):
    rows = orders.list_all_orders(session)
    return {"success": True, "orders": [OrderOut.from_order(o).model_dump(mode="json") for o in rows]}


@app.patch("/admin/orders/{order_id}/status")
def admin_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    order = orders.update_order_status(session, order_id, payload.order_status)
    return {"success": True, "order": OrderOut.from_order(order).model_dump(mode="json")}


@app.post("/admin/coupons")
def admin_insert_coupons(
    payload: List[CouponIn],
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    inserted = ledger.insert_coupons(session, [c.model_dump() for c in payload])
    return {
        "success": True,
        "inserted": [CouponOut.from_coupon(c).model_dump(mode="json") for c in inserted],
        "skipped": len(payload) - len(inserted),
    }


@app.get("/admin/export")
def admin_export(admin: User = Depends(require_admin), session: Session = Depends(get_session)):
    bio = export_xlsx(session)
    filename = f"storefront_export_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}.xlsx"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(bio, media_type=XLSX_MEDIA_TYPE, headers=headers)


# ---------------------- coupons & rewards ----------------------

@app.post("/coupons/claim")
def claim_coupon(
    payload: CouponCodeRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    claimed = ledger.claim(session, payload.code, user.id)
    return {
        "success": True,
        "msg": "Coupon claimed successfully.",
        "coupon": ClaimedCouponOut.from_claim(claimed).model_dump(mode="json"),
    }


@app.post("/coupons/verify")
def verify_coupon(
    payload: CouponCodeRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    claimed = ledger.verify(session, payload.code, user.id)
    return {"success": True, "coupon": ClaimedCouponOut.from_claim(claimed).model_dump(mode="json")}


@app.get("/coupons/claimed")
def claimed_coupons(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    rows = ledger.list_claimed(session, user.id)
    return {"success": True, "claimedCoupons": [ClaimedCouponOut.from_claim(c).model_dump(mode="json") for c in rows]}


@app.post("/rewards/discount")
def redeem_discount(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    coupon = ledger.redeem_for_discount(session, user.id)
    return {"success": True, "msg": "Coupon created", "code": coupon.code, "reward_value": coupon.reward_value}


@app.post("/rewards/cashback")
def redeem_cashback(
    payload: CashbackIn,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    request = ledger.redeem_for_cashback(session, user.id, payload.upi_id)
    return {
        "success": True,
        "msg": "Cashback request received",
        "request": CashbackOut.from_request(request).model_dump(mode="json"),
    }
