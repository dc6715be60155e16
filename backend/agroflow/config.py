# backend/agroflow/config.py
from __future__ import annotations
import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/agroflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///agroflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://localhost:5174,https://agroflow.netlify.app",
        ).split(",")
        if origin.strip()
    ]

    CURRENCY = os.environ.get("CURRENCY", "INR")

    # Credit ledger policies
    # block: a credit sale over the limit is rejected
    # warn:  the sale is posted and flagged with credit_limit_warning
    CREDIT_LIMIT_POLICY = os.environ.get("CREDIT_LIMIT_POLICY", "block")
    # reject: releasing more than the outstanding balance fails
    # clamp:  the release is capped at the outstanding balance
    CREDIT_RELEASE_POLICY = os.environ.get("CREDIT_RELEASE_POLICY", "reject")
    DEFAULT_CREDIT_TERM_DAYS = _env_int("DEFAULT_CREDIT_TERM_DAYS", 30)

    # Notification deriver
    NOTIFICATION_UPCOMING_DAYS = _env_int("NOTIFICATION_UPCOMING_DAYS", 7)
    CREDIT_WARNING_THRESHOLD = _env_float("CREDIT_WARNING_THRESHOLD", 0.9)

    # Payment gateway (Razorpay-style key pair) and UPI payee
    PAYMENT_GATEWAY_KEY_ID = os.environ.get("PAYMENT_GATEWAY_KEY_ID", "rzp_test_agroflow")
    PAYMENT_GATEWAY_KEY_SECRET = os.environ.get("PAYMENT_GATEWAY_KEY_SECRET", "dev-gateway-secret")
    GATEWAY_VERIFY_ATTEMPTS = _env_int("GATEWAY_VERIFY_ATTEMPTS", 5)
    GATEWAY_VERIFY_BACKOFF = _env_float("GATEWAY_VERIFY_BACKOFF", 0.5)
    UPI_PAYEE_VPA = os.environ.get("UPI_PAYEE_VPA", "agroflow@upi")
    UPI_PAYEE_NAME = os.environ.get("UPI_PAYEE_NAME", "AgroFlow")

    # Password hashing cost (bcrypt log rounds)
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
    GATEWAY_VERIFY_BACKOFF = 0.0
    BCRYPT_ROUNDS = 4
