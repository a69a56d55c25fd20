# storefront/contact.py
import logging
from typing import List, Optional

from sqlmodel import Session, select

from .config import Settings, get_settings
from .errors import DeliveryError, ValidationError
from .mailer import Mailer
from .models import ContactMessage

logger = logging.getLogger(__name__)


async def submit(
    session: Session,
    mailer: Mailer,
    name: str,
    email: str,
    message: str,
    settings: Optional[Settings] = None,
) -> ContactMessage:
    """
    Store a contact-form message, then notify CONTACT_EMAIL when one is set.

    The stored message is the record; a failed notification is logged and the
    message stays available through list_messages.
    """
    settings = settings or get_settings()
    name, email, message = (name or "").strip(), (email or "").strip(), (message or "").strip()
    if not name or "@" not in email or not message:
        raise ValidationError("Name, a valid email and a message are required")

    msg = ContactMessage(name=name, email=email, message=message)
    session.add(msg)
    session.commit()
    session.refresh(msg)
    logger.info("Contact message %s from %s", msg.id, email)

    if settings.contact_email:
        try:
            await mailer.send_contact_notice(settings.contact_email, name, email, message)
        except DeliveryError as exc:
            logger.error("Contact message %s stored but not forwarded: %s", msg.id, exc.message)
    return msg


def list_messages(session: Session) -> List[ContactMessage]:
    return session.exec(
        select(ContactMessage).order_by(ContactMessage.created_at.desc(), ContactMessage.id.desc())
    ).all()
