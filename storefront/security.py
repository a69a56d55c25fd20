# storefront/security.py
import hashlib
import hmac
import secrets
import string

from .config import get_settings

CODE_ALPHABET = string.ascii_uppercase + string.digits


def gen_code(length: int = 8) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def _sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def issue_token(user_id: int, secret: str = "") -> str:
    secret = secret or get_settings().hash_secret
    return f"{user_id}.{_sign(str(user_id), secret)}"


def read_token(token: str, secret: str = "") -> int | None:
    """User id carried by a token, or None when the token is malformed or forged."""
    secret = secret or get_settings().hash_secret
    user_id, _, signature = token.strip().partition(".")
    if not user_id.isdigit() or not signature:
        return None
    if not hmac.compare_digest(_sign(user_id, secret), signature):
        return None
    return int(user_id)


def gen_login_code(length: int = 6) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


def hash_login_code(code: str, salt: str, secret: str = "") -> str:
    """Stored form of a one-time login code: ``salt:hmac``."""
    secret = secret or get_settings().hash_secret
    return f"{salt}:{_sign(f'{salt}{code}', secret)}"


def check_login_code(code: str, stored: str, secret: str = "") -> bool:
    salt = stored.partition(":")[0]
    return hmac.compare_digest(hash_login_code(code, salt, secret), stored)
