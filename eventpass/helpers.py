import time
import re
import random
import secrets
from datetime import datetime, timezone
import hmac
from typing import Optional

from . import config


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def digits_only(value: Optional[str]) -> str:
    return "".join(ch for ch in (value or "") if ch.isdigit())


def normalize_phone(value: Optional[str],
                    country_code: str = config.DEFAULT_COUNTRY_CODE) -> str:
    """Canonical storage form: digits only, no '+', with country code.

    A bare 10 digit national number gets the default country code, a
    leading trunk '0' is dropped first.
    """
    digits = digits_only(value)
    if len(digits) == 11 and digits.startswith("0"):
        digits = digits[1:]
    if len(digits) == 10:
        digits = country_code + digits
    return digits


def generate_order_number() -> str:
    # UE + epoch millis + 3 random digits
    return f"UE{int(time.time() * 1000)}{random.randint(0, 999):03d}"


def generate_session_token() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def generate_short_id() -> str:
    return secrets.token_urlsafe(6)


def format_amount(minor: int, currency: str = config.CURRENCY) -> str:
    symbol = "₹" if currency.upper() == "INR" else f"{currency.upper()} "
    return f"{symbol}{minor / 100:.2f}"


def format_date(d) -> str:
    if d is None:
        return ""
    return f"{d.day} {d.strftime('%b %Y')}"
