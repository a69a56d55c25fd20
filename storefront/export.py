# storefront/export.py
from io import BytesIO

from openpyxl import Workbook
from sqlmodel import Session, select

from .models import CashbackRequest, ClaimedCoupon, ContactMessage, Order, OrderItem, User

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _value(v):
    return v.value if hasattr(v, "value") else v


def build_workbook(session: Session) -> Workbook:
    wb = Workbook()

    ws = wb.active
    ws.title = "orders"
    ws.append([
        "id", "user_id", "address_id", "subtotal", "discount", "cod_fee", "total_amount",
        "payment_method", "payment_status", "order_status", "coupon_code",
        "gateway_order_id", "gateway_payment_id", "created_at", "paid_at",
    ])
    for o in session.exec(select(Order).order_by(Order.id.asc())).all():
        ws.append([
            o.id, o.user_id, o.address_id, o.subtotal, o.discount, o.cod_fee, o.total_amount,
            _value(o.payment_method), _value(o.payment_status), _value(o.order_status), o.coupon_code,
            o.gateway_order_id, o.gateway_payment_id, str(o.created_at), str(o.paid_at or ""),
        ])

    ws2 = wb.create_sheet("order_items")
    ws2.append(["id", "order_id", "product_id", "quantity", "price_at_purchase"])
    for i in session.exec(select(OrderItem).order_by(OrderItem.id.asc())).all():
        ws2.append([i.id, i.order_id, i.product_id, i.quantity, i.price_at_purchase])

    ws3 = wb.create_sheet("users")
    ws3.append(["id", "email", "role", "spoon_points", "created_at"])
    for u in session.exec(select(User).order_by(User.id.asc())).all():
        ws3.append([u.id, u.email, _value(u.role), u.spoon_points, str(u.created_at)])

    ws4 = wb.create_sheet("claimed_coupons")
    ws4.append(["id", "user_id", "code", "reward_type", "reward_value", "status", "used_order_id"])
    for c in session.exec(select(ClaimedCoupon).order_by(ClaimedCoupon.id.asc())).all():
        ws4.append([c.id, c.user_id, c.code, _value(c.reward_type), c.reward_value, _value(c.status), c.used_order_id])

    ws5 = wb.create_sheet("cashback")
    ws5.append(["id", "user_id", "payout_id", "amount", "status", "requested_at"])
    for r in session.exec(select(CashbackRequest).order_by(CashbackRequest.id.asc())).all():
        ws5.append([r.id, r.user_id, r.payout_id, r.amount, _value(r.status), str(r.requested_at)])

    ws6 = wb.create_sheet("contacts")
    ws6.append(["id", "name", "email", "message", "created_at"])
    for m in session.exec(select(ContactMessage).order_by(ContactMessage.id.asc())).all():
        ws6.append([m.id, m.name, m.email, m.message, str(m.created_at)])

    return wb


def export_xlsx(session: Session) -> BytesIO:
    bio = BytesIO()
    build_workbook(session).save(bio)
    bio.seek(0)
    return bio
