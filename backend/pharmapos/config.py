# backend/pharmapos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pharmapos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmapos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Pricing (Philippine VAT and senior citizen / PWD discount)
    VAT_RATE = os.environ.get("VAT_RATE", "0.12")
    SENIOR_PWD_DISCOUNT_RATE = os.environ.get("SENIOR_PWD_DISCOUNT_RATE", "0.20")

    # Receipt header
    RECEIPT_TIMEZONE = os.environ.get("RECEIPT_TIMEZONE", "Asia/Manila")
    PHARMACY_NAME = os.environ.get("PHARMACY_NAME", "Jambo's Pharmacy")
    PHARMACY_ADDRESS = os.environ.get("PHARMACY_ADDRESS", "")
    PHARMACY_CONTACT = os.environ.get("PHARMACY_CONTACT", "")

    # Device trust / OTP
    OTP_TTL_MINUTES = int(os.environ.get("OTP_TTL_MINUTES", "10"))
    DEVICE_COOKIE_SECURE = _env_bool("DEVICE_COOKIE_SECURE", False)

    # Outbound e-mail (SendGrid v3 API). Unset key means OTP e-mail is not configured.
    SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY", "")
    SENDGRID_FROM_EMAIL = os.environ.get("SENDGRID_FROM_EMAIL", "")
    SENDGRID_API_URL = os.environ.get("SENDGRID_API_URL", "https://api.sendgrid.com/v3/mail/send")
    EMAIL_TIMEOUT_SECONDS = int(os.environ.get("EMAIL_TIMEOUT_SECONDS", "20"))

    CORS_ORIGINS = os.environ.get(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )
