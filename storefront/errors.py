# storefront/errors.py
"""
Domain errors raised by the pricing, ledger, order and gateway layers.

Services raise these and never build HTTP responses themselves; the FastAPI
app installs one handler that turns any StoreError into a JSON body with the
class' status code.
"""


class StoreError(Exception):
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict:
        return {"success": False, "error": self.name, "message": self.message}


class ValidationError(StoreError):
    status_code = 400


class InvalidQuantity(ValidationError):
    pass


class InvalidTransition(ValidationError):
    pass


class NotFound(StoreError):
    status_code = 404


class CouponNotFound(NotFound):
    pass


class AlreadyClaimed(StoreError):
    status_code = 409


class AlreadyUsed(StoreError):
    status_code = 409


class InsufficientPoints(StoreError):
    status_code = 400


class DuplicateGatewayOrder(StoreError):
    status_code = 409


class InvalidSignature(StoreError):
    status_code = 400


class GatewayError(StoreError):
    status_code = 502


class Forbidden(StoreError):
    status_code = 403


class TooManyAttempts(StoreError):
    status_code = 429


class DeliveryError(StoreError):
    status_code = 502


class CodeGenerationFailed(StoreError):
    status_code = 500
