# storefront/catalog.py
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .errors import Forbidden, NotFound, ValidationError
from .models import CartItem, OrderItem, Product, Review

logger = logging.getLogger(__name__)


def get_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise NotFound(f"Product {product_id} not found")
    return product


def add_product(
    session: Session,
    name: str,
    new_price: int,
    old_price: int = 0,
    category: str = "",
    available: bool = True,
) -> Product:
    if not name.strip():
        raise ValidationError("Product name is required")
    if new_price < 0 or old_price < 0:
        raise ValidationError("Prices must not be negative")

    # id comes from the database sequence
    product = Product(
        name=name.strip(),
        category=category.strip(),
        new_price=new_price,
        old_price=old_price,
        available=available,
    )
    session.add(product)
    session.commit()
    session.refresh(product)
    logger.info("Product %s added (%s)", product.id, product.name)
    return product


def list_products(session: Session, category: Optional[str] = None) -> List[Product]:
    query = select(Product)
    if category:
        query = query.where(Product.category == category)
    return session.exec(query.order_by(Product.id.desc())).all()


def remove_product(session: Session, product_id: int) -> bool:
    """
    Take a product out of the catalog.

    Returns True when the row was deleted. A product that past orders point at
    is kept for their line items and only marked unavailable (False).
    """
    product = get_product(session, product_id)

    for row in session.exec(select(CartItem).where(CartItem.product_id == product.id)).all():
        session.delete(row)

    if session.exec(select(OrderItem.id).where(OrderItem.product_id == product.id)).first() is not None:
        product.available = False
        session.add(product)
        session.commit()
        logger.info("Product %s retired, referenced by orders", product.id)
        return False

    for review in product.reviews:
        session.delete(review)
    session.delete(product)
    session.commit()
    logger.info("Product %s removed", product_id)
    return True


# ---------------------- reviews ----------------------

def _check_rating(rating: int) -> None:
    if rating is None or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")


def list_reviews(session: Session, product_id: int) -> List[Review]:
    return session.exec(
        select(Review).where(Review.product_id == product_id).order_by(Review.created_at.desc(), Review.id.desc())
    ).all()


def add_review(session: Session, product_id: int, user_id: int, rating: int, comment: str = "") -> Review:
    product = get_product(session, product_id)
    _check_rating(rating)

    review = Review(product_id=product.id, user_id=user_id, rating=rating, comment=(comment or "").strip())
    try:
        session.add(review)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError("You already reviewed this product")
    session.refresh(review)
    logger.info("User %s reviewed product %s (%s)", user_id, product.id, rating)
    return review


def update_review(session: Session, product_id: int, user_id: int, rating: int, comment: str = "") -> Review:
    _check_rating(rating)
    review = session.exec(
        select(Review).where(Review.product_id == product_id).where(Review.user_id == user_id)
    ).first()
    if not review:
        raise NotFound("Review not found")

    review.rating = rating
    review.comment = (comment or "").strip()
    session.add(review)
    session.commit()
    session.refresh(review)
    return review


def delete_review(session: Session, product_id: int, review_id: int, user_id: int) -> None:
    get_product(session, product_id)
    review = session.get(Review, review_id)
    if not review or review.product_id != product_id:
        raise NotFound("Review not found")
    if review.user_id != user_id:
        raise Forbidden("Only the author can delete a review")

    session.delete(review)
    session.commit()
    logger.info("Review %s on product %s deleted", review_id, product_id)
