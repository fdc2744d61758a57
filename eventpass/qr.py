import base64
import io
import json
from typing import Optional
from urllib.parse import quote

import qrcode

from . import config
from .helpers import now_ts, to_iso


def credential_payload(order_number: str, order_id: int,
                       issued_at: Optional[float] = None) -> str:
    """The redemption credential printed into a ticket's QR code."""
    return json.dumps({
        "orderNumber": order_number,
        "orderId": order_id,
        "issuedAt": to_iso(issued_at if issued_at is not None else now_ts()),
    }, separators=(",", ":"))


def render_png(data: str) -> bytes:
    img = qrcode.make(data)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode()


def deep_link_text(event_code: str) -> str:
    return f"BOOK EVENT {event_code}"


def deep_link_target(event_code: str,
                     phone: str = config.WHATSAPP_QR_PHONE) -> str:
    # a wa.me link opens the chat with the booking text prefilled
    if phone:
        return f"https://wa.me/{phone}?text={quote(deep_link_text(event_code))}"
    return deep_link_text(event_code)


def event_qr_artifact(event_code: str,
                      phone: str = config.WHATSAPP_QR_PHONE) -> str:
    return to_data_url(render_png(deep_link_target(event_code, phone)))
