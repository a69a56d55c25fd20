# storefront/accounts.py
import logging
from datetime import timedelta, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from .config import Settings, get_settings
from .errors import Forbidden, NotFound, TooManyAttempts, ValidationError
from .mailer import Mailer
from .models import Address, LoginCode, Order, Role, User, utcnow
from .security import check_login_code, gen_code, gen_login_code, hash_login_code

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ("full_name", "phone_number", "area", "city", "state", "pincode")


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError("A valid email is required")
    return email


def _user_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == email)).first()


def signup(session: Session, email: str, name: str = "", settings: Optional[Settings] = None) -> User:
    settings = settings or get_settings()
    email = _normalize_email(email)
    if _user_by_email(session, email):
        raise ValidationError("Existing user found with same email address")

    # admin accounts must be whitelisted
    role = Role.admin if email in settings.admin_emails else Role.user
    user = User(email=email, name=(name or "").strip(), role=role)
    session.add(user)
    session.commit()
    session.refresh(user)

    logger.info("User %s signed up as %s", user.id, role.value)
    return user


def update_profile(session: Session, user_id: int, name: Optional[str] = None, email: Optional[str] = None) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFound("User not found")

    if email is not None:
        email = _normalize_email(email)
        existing = _user_by_email(session, email)
        if existing and existing.id != user.id:
            raise ValidationError("Email already in use")
        user.email = email
    if name is not None:
        user.name = name.strip()

    session.add(user)
    session.commit()
    session.refresh(user)
    return user


# ---------------------- login codes ----------------------

def _as_utc(value):
    # sqlite hands datetimes back without tzinfo
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def request_login_code(
    session: Session,
    mailer: Mailer,
    email: str,
    settings: Optional[Settings] = None,
) -> None:
    """Mail a one-time login code to an existing account."""
    settings = settings or get_settings()
    email = _normalize_email(email)

    user = _user_by_email(session, email)
    if not user:
        raise NotFound("No account for this email")
    if user.role is Role.admin and email not in settings.admin_emails:
        raise Forbidden("Admin not allowed")

    code = gen_login_code()
    rec = LoginCode(
        email=email,
        code_hash=hash_login_code(code, gen_code(10), settings.hash_secret),
        expires_at=utcnow() + timedelta(minutes=settings.login_code_ttl_minutes),
    )
    session.add(rec)
    session.commit()

    await mailer.send_login_code(email, code, settings.login_code_ttl_minutes)
    logger.info("Login code sent to user %s", user.id)


def verify_login_code(session: Session, email: str, code: str, settings: Optional[Settings] = None) -> User:
    settings = settings or get_settings()
    email = _normalize_email(email)

    # latest unused code
    rec = session.exec(
        select(LoginCode)
        .where(LoginCode.email == email)
        .where(LoginCode.is_used == False)  # noqa: E712
        .order_by(LoginCode.id.desc())
    ).first()

    if not rec:
        raise ValidationError("No login code found. Request again.")
    if utcnow() > _as_utc(rec.expires_at):
        raise ValidationError("Login code expired. Request again.")
    if rec.attempts >= settings.login_code_max_attempts:
        raise TooManyAttempts("Too many attempts. Request a new code.")

    if not check_login_code((code or "").strip(), rec.code_hash, settings.hash_secret):
        session.exec(
            update(LoginCode)
            .where(LoginCode.id == rec.id)
            .values(attempts=LoginCode.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        logger.warning("SECURITY: wrong login code for %s", email)
        raise ValidationError("Invalid login code")

    result = session.exec(
        update(LoginCode)
        .where(LoginCode.id == rec.id)
        .where(LoginCode.is_used == False)  # noqa: E712
        .values(is_used=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise ValidationError("Login code already used. Request again.")
    session.commit()

    user = _user_by_email(session, email)
    if not user:
        raise NotFound("User not found")
    logger.info("User %s logged in with a code", user.id)
    return user


# ---------------------- addresses ----------------------

def add_address(session: Session, user_id: int, fields: dict) -> Address:
    address = Address(user_id=user_id, **{k: fields.get(k) or "" for k in ADDRESS_FIELDS})
    missing = [k for k in ADDRESS_FIELDS if k != "area" and not getattr(address, k).strip()]
    if missing:
        raise ValidationError(f"Missing address fields: {', '.join(missing)}")
    session.add(address)
    session.commit()
    session.refresh(address)
    return address


def list_addresses(session: Session, user_id: int) -> List[Address]:
    return session.exec(select(Address).where(Address.user_id == user_id).order_by(Address.id.desc())).all()


def get_address(session: Session, user_id: int, address_id: int) -> Address:
    address = session.get(Address, address_id) if address_id else None
    if not address or address.user_id != user_id:
        raise NotFound("Address not found")
    return address


def update_address(session: Session, user_id: int, address_id: int, fields: dict) -> Address:
    address = get_address(session, user_id, address_id)
    for key in ADDRESS_FIELDS:
        if fields.get(key) is not None:
            setattr(address, key, fields[key])
    session.add(address)
    session.commit()
    session.refresh(address)
    return address


def delete_address(session: Session, user_id: int, address_id: int) -> None:
    address = get_address(session, user_id, address_id)
    # orders keep pointing at the address they shipped to
    if session.exec(select(Order.id).where(Order.address_id == address.id)).first() is not None:
        raise ValidationError("Address is used by an order and cannot be deleted")
    session.delete(address)
    session.commit()
