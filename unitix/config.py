import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
    JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_ME_JWT_SECRET")
    REFRESH_TOKEN_SECRET = os.getenv("REFRESH_TOKEN_SECRET", "CHANGE_ME_REFRESH_SECRET")
    JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
    REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))

    MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    MONGO_DB = os.getenv("MONGO_DB", "unitix")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    MAX_TICKETS_PER_USER = int(os.getenv("MAX_TICKETS_PER_USER", "10"))
    CARD_SUCCESS_RATE = float(os.getenv("CARD_SUCCESS_RATE", "0.95"))
    MOBILE_MONEY_SUCCESS_RATE = float(os.getenv("MOBILE_MONEY_SUCCESS_RATE", "0.9"))
    MOBILE_MONEY_DELAY_SECONDS = float(os.getenv("MOBILE_MONEY_DELAY_SECONDS", "5"))
    RESET_TOKEN_TTL_MINUTES = int(os.getenv("RESET_TOKEN_TTL_MINUTES", "60"))
    APP_URL = os.getenv("APP_URL", "http://localhost:5000")

    DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@example.com")
    DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "Admin12345!")
    SEED_DEFAULT_ADMIN = _env_bool("SEED_DEFAULT_ADMIN", "1")

    RATELIMIT_ENABLED = _env_bool("RATELIMIT_ENABLED", "1")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_HEADERS_ENABLED = True


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
