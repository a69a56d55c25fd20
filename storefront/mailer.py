# storefront/mailer.py
import logging
from html import escape
from typing import List, Optional

import httpx
from fastapi import Depends

from .config import Settings, get_settings
from .errors import DeliveryError

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


class Mailer:
    """
    Outgoing mail through the Resend API.

    Without RESEND_API_KEY the mailer only works in dev mode (DEV_PRINT_OTP=1),
    where messages are written to the log instead of sent. Anything else is a
    DeliveryError so a misconfigured deployment fails loudly.
    """

    def __init__(
        self,
        api_key: str = "",
        email_from: str = "onboarding@resend.dev",
        dev_log: bool = False,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.email_from = email_from
        self.dev_log = dev_log
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(api_key=settings.resend_api_key, email_from=settings.email_from, dev_log=settings.dev_print_otp)

    async def send(self, to: List[str], subject: str, html: str, text: str = "") -> None:
        if not self.api_key:
            if self.dev_log:
                logger.warning("[DEV MAIL] to %s: %s | %s", ", ".join(to), subject, text or html)
                return
            raise DeliveryError("Email provider not configured. Set RESEND_API_KEY or DEV_PRINT_OTP=1.")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.email_from, "to": to, "subject": subject, "html": html},
                )
        except httpx.HTTPError as exc:
            logger.error("Mail to %s failed: %s", to, exc)
            raise DeliveryError("Email provider unreachable") from exc

        if r.status_code >= 400:
            logger.error("Resend rejected mail to %s: %s %s", to, r.status_code, r.text)
            raise DeliveryError(f"Email send failed: {r.status_code}")

    async def send_login_code(self, to_email: str, code: str, ttl_minutes: int) -> None:
        html = f"""
        <div style="font-family:Arial,sans-serif;line-height:1.6">
          <h2>Your login code</h2>
          <div style="font-size:28px;font-weight:bold;letter-spacing:2px">{code}</div>
          <p>This code is valid for {ttl_minutes} minutes.</p>
        </div>
        """
        await self.send([to_email], "Your login code", html, text=f"code {code}")

    async def send_contact_notice(self, to_email: str, name: str, sender: str, message: str) -> None:
        html = f"<p>From: {escape(name)} ({escape(sender)})</p><p>{escape(message)}</p>"
        await self.send([to_email], "New Contact Message", html, text=f"From: {name} ({sender})")


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    return Mailer.from_settings(settings)
