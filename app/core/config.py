# app/core/config.py
import os
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "HIMS Pharmacy & Billing")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "hims_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "hims_billing")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins when set (sqlite for local runs and tests)
    SQLALCHEMY_DATABASE_URI: str = os.getenv(
        "DATABASE_URL",
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}",
    )
    DB_ECHO: bool = _flag("DB_ECHO")

    # ---------- Locale ----------
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Jakarta")
    CURRENCY_PREFIX: str = os.getenv("CURRENCY_PREFIX", "Rp")

    # ---------- Billing ----------
    # percent of (subtotal - discount); 0 keeps tax off the bill
    BILLING_DEFAULT_TAX: float = float(
        os.getenv("BILLING_DEFAULT_TAX", "0") or 0.0)

    # ---------- Pharmacy stock ----------
    EXPIRY_ALERT_DAYS: int = int(os.getenv("EXPIRY_ALERT_DAYS", "30"))
    EXPIRY_WARNING_DAYS: int = int(os.getenv("EXPIRY_WARNING_DAYS", "90"))

    # ---------- Logging ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
