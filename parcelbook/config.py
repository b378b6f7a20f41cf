import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./parcelbook.db")

# Public URL of this API, used to build payment redirect targets
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

# CORS
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Security - access tokens are issued by the auth service and only verified here
JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    import warnings

    warnings.warn(
        "JWT_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    JWT_SECRET = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Paygic payment gateway
PAYGIC_MID = os.getenv("PAYGIC_MID")
PAYGIC_TOKEN = os.getenv("PAYGIC_TOKEN")
PAYGIC_BASE_URL = os.getenv("PAYGIC_BASE_URL", "https://server.paygic.in/api/v2").rstrip("/")
PAYGIC_TIMEOUT_SECONDS = float(os.getenv("PAYGIC_TIMEOUT_SECONDS", "30"))
PAYGIC_SUCCESS_URL = os.getenv("PAYGIC_SUCCESS_URL", f"{PUBLIC_BASE_URL}/payments/success")
PAYGIC_FAILED_URL = os.getenv("PAYGIC_FAILED_URL", f"{PUBLIC_BASE_URL}/payments/failed")
# Re-check webhook outcomes against checkPaymentStatus before applying them
PAYGIC_WEBHOOK_VERIFY_STATUS = os.getenv("PAYGIC_WEBHOOK_VERIFY_STATUS", "true").lower() == "true"

# OneSignal push notifications
ONESIGNAL_APP_ID = os.getenv("ONESIGNAL_APP_ID")
ONESIGNAL_REST_API_KEY = os.getenv("ONESIGNAL_REST_API_KEY")
ONESIGNAL_TIMEOUT_SECONDS = float(os.getenv("ONESIGNAL_TIMEOUT_SECONDS", "10"))

# Bookings
BOOKING_ID_PREFIX = os.getenv("BOOKING_ID_PREFIX", "PBS")
# Booking ids are dated in local business time (IST by default)
BOOKING_UTC_OFFSET_MINUTES = int(os.getenv("BOOKING_UTC_OFFSET_MINUTES", "330"))

# Staged (pre-payment) bookings
STAGED_BOOKING_TTL_SECONDS = int(os.getenv("STAGED_BOOKING_TTL_SECONDS", "3600"))
STAGED_BOOKING_DELETE_GRACE_SECONDS = float(os.getenv("STAGED_BOOKING_DELETE_GRACE_SECONDS", "30"))

# Pricing
MINIMUM_FARE = int(os.getenv("MINIMUM_FARE", "50"))
DEFAULT_GST_PERCENT = float(os.getenv("DEFAULT_GST_PERCENT", "18"))

# Reconciliation outbox
OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "10"))
OUTBOX_RETRY_DELAY_SECONDS = int(os.getenv("OUTBOX_RETRY_DELAY_SECONDS", "60"))
