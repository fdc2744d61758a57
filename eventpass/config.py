import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ----------------------------
# Database
# ----------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./eventpass.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
# concurrent DB sessions; defaults to the pool size
DB_GATE_LIMIT = int(os.getenv("DB_GATE_LIMIT", "0")) or DB_POOL_SIZE
SQLITE_BUSY_TIMEOUT_MS = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000"))

# ----------------------------
# Admin / sessions
# ----------------------------
SESSION_SECRET = os.getenv("SESSION_SECRET", "dev-secret-change-me")
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "supasecret")
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# ----------------------------
# Payments
# ----------------------------
PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "mock").lower()  # mock | razorpay
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")
PAYMENT_CALLBACK_URL = os.getenv(
    "PAYMENT_CALLBACK_URL", "http://localhost:8000/payments/callback"
)
PAYMENT_LINK_TTL_SECONDS = int(os.getenv("PAYMENT_LINK_TTL_SECONDS", "86400"))
CURRENCY = os.getenv("CURRENCY", "INR")

MOCK_SECRET = os.getenv("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.getenv(
    "MOCK_WEBHOOK_URL", "http://localhost:8000/payments/webhook"
)

# ----------------------------
# WhatsApp
# ----------------------------
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
WHATSAPP_ACCESS_TOKEN = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
WHATSAPP_VERIFY_TOKEN = os.getenv("WHATSAPP_VERIFY_TOKEN", "eventpass-verify")
WHATSAPP_API_VERSION = os.getenv("WHATSAPP_API_VERSION", "v18.0")
# digits only; when empty, event QR codes carry the plain deep-link text
WHATSAPP_QR_PHONE = "".join(
    ch for ch in os.getenv("WHATSAPP_QR_PHONE", "") if ch.isdigit()
)

# ----------------------------
# Key/value store (short links, counters, dedupe)
# ----------------------------
KV_BACKEND = os.getenv("KV_BACKEND", "memory").lower()  # memory | redis
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_MAX_CONN = int(os.getenv("REDIS_MAX_CONN", "64"))

# ----------------------------
# Reconciliation
# ----------------------------
RECONCILE_ENABLED = _flag("RECONCILE_ENABLED", "1")
RECONCILE_INTERVAL_SECONDS = float(os.getenv("RECONCILE_INTERVAL_SECONDS", "60"))
RECONCILE_MAX_ATTEMPTS = int(os.getenv("RECONCILE_MAX_ATTEMPTS", "10"))
RECONCILE_MIN_AGE_SECONDS = float(os.getenv("RECONCILE_MIN_AGE_SECONDS", "60"))
RECONCILE_MAX_AGE_SECONDS = float(
    os.getenv("RECONCILE_MAX_AGE_SECONDS", str(24 * 3600))
)
RECONCILE_CHECK_DELAY_SECONDS = float(
    os.getenv("RECONCILE_CHECK_DELAY_SECONDS", "1.0")
)

# ----------------------------
# Conversation
# ----------------------------
BOOKING_MODE = os.getenv("BOOKING_MODE", "chat").lower()  # chat | form
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
SIGNUP_FORM_URL = os.getenv("SIGNUP_FORM_URL", f"{FRONTEND_URL}/signup")
SHORT_LINK_TTL_SECONDS = int(os.getenv("SHORT_LINK_TTL_SECONDS", "86400"))
DEFAULT_COUNTRY_CODE = os.getenv("DEFAULT_COUNTRY_CODE", "91")
SUPPORT_TEXT = os.getenv(
    "SUPPORT_TEXT",
    "Need help? Reply here and our team will get back to you shortly.",
)

# ----------------------------
# Logging
# ----------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = _flag("LOG_JSON", "0")
