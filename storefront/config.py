# storefront/config.py
import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

# paise per rupee
MINOR_UNITS = 100

DEFAULT_DATABASE_URL = "sqlite:///./storefront.db"


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _admin_emails() -> set[str]:
    raw = os.getenv("ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


@dataclass
class Settings:
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "").strip())
    hash_secret: str = field(default_factory=lambda: os.getenv("APP_HASH_SECRET", "CHANGE_ME_HASH_SECRET"))
    admin_emails: set[str] = field(default_factory=_admin_emails)

    razorpay_key_id: str = field(default_factory=lambda: os.getenv("RAZORPAY_KEY_ID", "").strip())
    razorpay_key_secret: str = field(default_factory=lambda: os.getenv("RAZORPAY_KEY_SECRET", "").strip())
    razorpay_base_url: str = field(
        default_factory=lambda: os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1").rstrip("/")
    )
    gateway_timeout: float = field(default_factory=lambda: float(os.getenv("GATEWAY_TIMEOUT", "10")))
    currency: str = field(default_factory=lambda: os.getenv("CURRENCY", "INR"))

    # flat fee for cash on delivery, in minor units
    cod_fee: int = field(default_factory=lambda: int(os.getenv("COD_FEE", "0")))
    # True: the COD fee is part of the amount a discount coupon reduces
    discount_includes_cod_fee: bool = field(default_factory=lambda: _flag("DISCOUNT_INCLUDES_COD_FEE"))

    # outgoing mail (login codes, contact form notices)
    resend_api_key: str = field(default_factory=lambda: os.getenv("RESEND_API_KEY", "").strip())
    email_from: str = field(default_factory=lambda: os.getenv("EMAIL_FROM", "onboarding@resend.dev").strip())
    dev_print_otp: bool = field(default_factory=lambda: _flag("DEV_PRINT_OTP"))
    contact_email: str = field(default_factory=lambda: os.getenv("CONTACT_EMAIL", "").strip())

    login_code_ttl_minutes: int = field(default_factory=lambda: int(os.getenv("LOGIN_CODE_TTL_MINUTES", "10")))
    login_code_max_attempts: int = field(default_factory=lambda: int(os.getenv("LOGIN_CODE_MAX_ATTEMPTS", "5")))

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def __post_init__(self):
        url = self.database_url or DEFAULT_DATABASE_URL
        # hosted Postgres hands out postgres://, SQLAlchemy wants postgresql://
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        self.database_url = url

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    return Settings()
