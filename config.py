import logging
import os
import secrets

from dotenv import load_dotenv

load_dotenv(override=False)


def _env_list(name: str, default: str = "") -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# Database
MONGODB_URL = os.getenv("MONGODB_URL", os.getenv("DATABASE_URL", "mongodb://localhost:27017"))
DATABASE_NAME = os.getenv("DATABASE_NAME", "ngo_donations")

# JWT
SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_urlsafe(32))
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30))

# Default admin account, created at startup when the admins collection is empty
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.org")
ADMIN_IP_WHITELIST = _env_list("ADMIN_IP_WHITELIST")

# Payment gateway (Razorpay)
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_API_BASE = os.getenv("RAZORPAY_API_BASE", "https://api.razorpay.com/v1")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", 8))
CURRENCY = os.getenv("CURRENCY", "INR")
# Gateway QR codes close after this many minutes
QR_CODE_TTL_MINUTES = int(os.getenv("QR_CODE_TTL_MINUTES", 30))

# UPI payee shown in generated payment links and QR codes
UPI_PAYEE_ADDRESS = os.getenv("UPI_PAYEE_ADDRESS", "donations@upi")
UPI_PAYEE_NAME = os.getenv("UPI_PAYEE_NAME", "NGO Donation Hub")

# Public views
RECENT_DONATIONS_LIMIT = int(os.getenv("RECENT_DONATIONS_LIMIT", 10))
DEFAULT_CAMPAIGN_TARGET = 50000

# HTTP
ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = LOG_LEVEL):
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
