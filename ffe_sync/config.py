import os
from decimal import Decimal, InvalidOperation


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _decimal_env(name: str, default: str) -> str:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        Decimal(value.strip())
    except (InvalidOperation, ValueError):
        return default
    return value.strip()


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "ffe_sync.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)
    DB_LOCK_TIMEOUT_SECONDS = _int_env("DB_LOCK_TIMEOUT_SECONDS", 30)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-ffe-sync")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD").strip().upper() or "USD"
    PAYMENT_OVERPAY_TOLERANCE = _decimal_env("PAYMENT_OVERPAY_TOLERANCE", "0.01")
    DEFAULT_MARKUP_PERCENT = _decimal_env("DEFAULT_MARKUP_PERCENT", "0")
    ORDER_REQUIRES_FULL_PAYMENT = _bool_env("ORDER_REQUIRES_FULL_PAYMENT", False)
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "PO")
    CLIENT_QUOTE_NUMBER_PREFIX = os.environ.get("CLIENT_QUOTE_NUMBER_PREFIX", "CQ")

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required in production.")
        if env == "production" and self.SECRET_KEY == "dev-secret-ffe-sync":
            raise RuntimeError("SECRET_KEY must be set in production.")
