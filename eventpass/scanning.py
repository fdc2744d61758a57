import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import unquote

from .errors import ErrorKind, Failure
from .helpers import format_date, to_iso
from .infra.logging import get_logger
from .model import Order, Store

log = get_logger("scanning")


# ----------------------------
# Credential shapes
# ----------------------------
@dataclass(frozen=True)
class Credential:
    # "canonical" | "url" | "bare"
    shape: str
    order_number: str
    order_id: Optional[int] = None


_URL_ORDER = re.compile(r"\b(?:OrderNumber|order)=([^&#\s]+)")


def _from_url(raw: str) -> Optional[str]:
    # hash-routed and query-less forms carry the same key
    match = _URL_ORDER.search(raw)
    if match is None:
        return None
    return unquote(match.group(1)).strip() or None


def parse_credential(raw: Optional[str]) -> Union[Credential, Failure]:
    """Decode a scanned QR string into the order it redeems.

    Accepts the JSON credential issued on payment and the older bare
    order-number and URL forms.
    """
    text = (raw or "").strip()
    if not text:
        return Failure(ErrorKind.INVALID_CREDENTIAL, "Empty QR code")

    if text.startswith("{") or text.startswith("["):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return Failure(ErrorKind.INVALID_CREDENTIAL,
                           "Invalid QR code format")
        if not isinstance(data, dict) or not data.get("orderNumber"):
            return Failure(ErrorKind.INVALID_CREDENTIAL,
                           "QR code does not identify an order")
        order_id = data.get("orderId")
        return Credential(
            "canonical", str(data["orderNumber"]).strip(),
            int(order_id) if isinstance(order_id, int) else None,
        )

    if "OrderNumber=" in text or "order=" in text:
        number = _from_url(text)
        if number:
            return Credential("url", number)
        return Failure(ErrorKind.INVALID_CREDENTIAL,
                       "QR code does not identify an order")

    if any(ch.isspace() for ch in text) or "://" in text:
        log.warning("credential.unknown_shape", raw=text[:80])
    return Credential("bare", text)


def _last_value(value: Any) -> Any:
    # older rows kept a JSON list when a ticket was confirmed twice
    if isinstance(value, str) and value.startswith("["):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return value
    if isinstance(value, list):
        return value[-1] if value else None
    return value


# ----------------------------
# Results
# ----------------------------
@dataclass
class ScanResult:
    scanned: bool
    order_id: int
    detail: Dict[str, Any]


@dataclass
class ConfirmResult:
    order_id: int
    order_number: str
    scanned_at: Optional[str]
    scanned_by: str


class ScanEngine:

    def __init__(self, store: Store) -> None:
        self.store = store

    async def validate(self, qr_payload: Optional[str]
                       ) -> Union[ScanResult, Failure]:
        """Read-only: never mutates the order, safe to repeat."""
        cred = parse_credential(qr_payload)
        if isinstance(cred, Failure):
            return cred

        detail = await self.store.order_detail(cred.order_number)
        if detail is None:
            return Failure(ErrorKind.TICKET_NOT_FOUND, "Ticket not found",
                           {"orderNumber": cred.order_number})
        order: Order = detail["order"]
        if order.status != "completed":
            return Failure(
                ErrorKind.PAYMENT_INCOMPLETE,
                f"Payment not completed. Order status: {order.status}",
                {"orderNumber": order.order_number, "status": order.status},
            )

        body = self._detail(detail)
        if order.is_scanned:
            body["scannedAt"] = to_iso(_last_value(order.scanned_at))
            body["scannedBy"] = _last_value(order.scanned_by)
            return ScanResult(True, order.id, body)
        return ScanResult(False, order.id, body)

    async def confirm(self, order_id: int, operator: str
                      ) -> Union[ConfirmResult, Failure]:
        changed = await self.store.mark_scanned_if_unscanned(
            order_id, operator
        )
        order: Optional[Order] = await self.store.get(Order, order_id)
        if order is None:
            return Failure(ErrorKind.NOT_FOUND, "Order not found")
        if changed:
            log.info("ticket.redeemed", order_number=order.order_number,
                     operator=operator)
            return ConfirmResult(order.id, order.order_number,
                                 to_iso(order.scanned_at), operator)
        if order.status != "completed":
            return Failure(
                ErrorKind.PAYMENT_INCOMPLETE,
                f"Payment not completed. Order status: {order.status}",
                {"orderNumber": order.order_number, "status": order.status},
            )
        log.warning("ticket.rescan", order_number=order.order_number,
                    operator=operator)
        return Failure(
            ErrorKind.ALREADY_SCANNED, "Ticket already scanned",
            {"orderNumber": order.order_number,
             "scannedAt": to_iso(_last_value(order.scanned_at)),
             "scannedBy": _last_value(order.scanned_by)},
        )

    @staticmethod
    def _detail(detail: Dict[str, Any]) -> Dict[str, Any]:
        order, user = detail["order"], detail["user"]
        ev, tt = detail["event"], detail["ticket"]
        return {
            "orderId": order.id,
            "orderNumber": order.order_number,
            "customerName": user.full_name,
            "phoneNumber": user.phone,
            "email": order.email or user.email,
            "eventName": ev.name,
            "eventDate": format_date(ev.event_date),
            "eventTime": ev.event_time,
            "venue": ev.venue,
            "ticketType": tt.name,
            "amount": order.amount,
            "totalAmount": order.amount,
            "currency": order.currency,
            "totalTicketsPurchased": 1,
        }
