# storefront/gateway.py
import hashlib
import hmac
import logging
from typing import Optional

import httpx
from fastapi import Depends

from .config import Settings, get_settings
from .errors import GatewayError, ValidationError

logger = logging.getLogger(__name__)


def sign(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    payload = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def verify_signature(gateway_order_id: str, gateway_payment_id: str, provided_signature: str, secret: str) -> bool:
    if not secret or not provided_signature:
        return False
    expected = sign(gateway_order_id or "", gateway_payment_id or "", secret)
    return hmac.compare_digest(expected, provided_signature)


class RazorpayGateway:
    """
    Outbound half of the Razorpay integration.

    Opens a Razorpay order (the payment intent the checkout widget pays
    against). Any failure surfaces as GatewayError; retrying is left to the
    caller.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "RazorpayGateway":
        return cls(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
            timeout=settings.gateway_timeout,
        )

    async def create_intent(self, amount_minor: int, currency: str, receipt_id: str) -> str:
        if not self.key_id or not self.key_secret:
            raise GatewayError("Payment gateway not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.")
        if amount_minor <= 0:
            raise ValidationError("Gateway payments need a positive amount")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(
                    f"{self.base_url}/orders",
                    auth=(self.key_id, self.key_secret),
                    json={
                        "amount": amount_minor,
                        "currency": currency,
                        "receipt": receipt_id,
                        "payment_capture": 1,
                    },
                )
        except httpx.TimeoutException as exc:
            logger.error("Razorpay order for %s timed out after %ss", receipt_id, self.timeout)
            raise GatewayError("Payment gateway timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Razorpay order for %s failed: %s", receipt_id, exc)
            raise GatewayError(f"Payment gateway unreachable: {exc}") from exc

        if r.status_code >= 400:
            logger.error("Razorpay rejected order for %s: %s %s", receipt_id, r.status_code, r.text)
            raise GatewayError(f"Payment gateway error: {r.status_code}")

        try:
            gateway_order_id = r.json().get("id")
        except ValueError as exc:
            raise GatewayError("Payment gateway returned an unreadable response") from exc
        if not gateway_order_id:
            raise GatewayError("Payment gateway response has no order id")

        logger.info("Razorpay order %s opened for %s (%s %s)", gateway_order_id, receipt_id, amount_minor, currency)
        return gateway_order_id


def get_gateway(settings: Settings = Depends(get_settings)) -> RazorpayGateway:
    return RazorpayGateway.from_settings(settings)
