# storefront/cart.py
"""
Per-user shopping cart.

The cart only remembers product ids and quantities. Prices are read from the
catalog when the cart is shown and priced again when an order is placed.
"""
import logging
from typing import List

from sqlalchemy import update
from sqlmodel import Session, select

from . import catalog
from .errors import InvalidQuantity, NotFound
from .models import CartItem

logger = logging.getLogger(__name__)


def _item(session: Session, user_id: int, product_id: int):
    return session.exec(
        select(CartItem).where(CartItem.user_id == user_id).where(CartItem.product_id == product_id)
    ).first()


def get_cart(session: Session, user_id: int) -> List[CartItem]:
    return session.exec(select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.id)).all()


def add_item(session: Session, user_id: int, product_id: int, quantity: int = 1) -> List[CartItem]:
    if quantity is None or quantity <= 0:
        raise InvalidQuantity("Quantity must be positive")
    product = catalog.get_product(session, product_id)

    item = _item(session, user_id, product.id)
    if item:
        session.exec(
            update(CartItem)
            .where(CartItem.id == item.id)
            .values(quantity=CartItem.quantity + quantity)
            .execution_options(synchronize_session=False)
        )
    else:
        session.add(CartItem(user_id=user_id, product_id=product.id, quantity=quantity))
    session.commit()

    logger.info("User %s added %s x product %s to cart", user_id, quantity, product.id)
    session.expire_all()
    return get_cart(session, user_id)


def update_item(session: Session, user_id: int, product_id: int, quantity: int) -> List[CartItem]:
    """Set a line's quantity; zero or less drops the line."""
    item = _item(session, user_id, product_id)
    if not item:
        raise NotFound("Product not in cart")

    if quantity is None or quantity <= 0:
        session.delete(item)
    else:
        item.quantity = quantity
        session.add(item)
    session.commit()
    return get_cart(session, user_id)


def remove_item(session: Session, user_id: int, product_id: int) -> List[CartItem]:
    item = _item(session, user_id, product_id)
    if item:
        session.delete(item)
        session.commit()
    return get_cart(session, user_id)
