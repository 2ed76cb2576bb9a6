# backend/coldchain/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///coldchain.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Invoicing
    INVOICE_TAX_RATE = Decimal(os.environ.get("INVOICE_TAX_RATE", "0"))
    INVOICE_DEFAULT_DUE_DAYS = int(os.environ.get("INVOICE_DEFAULT_DUE_DAYS", "30"))
    INVOICE_NUMBER_LENGTH = int(os.environ.get("INVOICE_NUMBER_LENGTH", "5"))
    INVOICE_DEFAULT_PAGE_LIMIT = 20
    INVOICE_MAX_PAGE_LIMIT = int(os.environ.get("INVOICE_MAX_PAGE_LIMIT", "100"))

    # MTN MoMo collection API
    MOMO_API_URL = os.environ.get("MOMO_API_URL", "https://sandbox.momodeveloper.mtn.com")
    MOMO_API_USER = os.environ.get("MOMO_API_USER", "")
    MOMO_API_KEY = os.environ.get("MOMO_API_KEY", "")
    MOMO_PRIMARY_KEY = os.environ.get("MOMO_PRIMARY_KEY", "")
    MOMO_CALLBACK_URL = os.environ.get("MOMO_CALLBACK_URL", "")
    MOMO_ENVIRONMENT = os.environ.get("MOMO_ENVIRONMENT", "sandbox")
    MOMO_CURRENCY = os.environ.get("MOMO_CURRENCY", "RWF")
    MOMO_TIMEOUT_SECONDS = float(os.environ.get("MOMO_TIMEOUT_SECONDS", "30"))
    MOMO_WEBHOOK_SECRET = os.environ.get("MOMO_WEBHOOK_SECRET", "")
