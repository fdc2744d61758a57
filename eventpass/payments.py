from abc import ABC, abstractmethod
from typing import Dict, Optional, TypedDict
from fastapi import HTTPException
import uuid
import hmac
import hashlib
import base64
import json

import httpx

from . import config
from .errors import GatewayUnavailable
from .helpers import now_ts
from .infra.logging import get_logger

log = get_logger("payments")


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentRequest(TypedDict):
    provider_reference: str
    pay_url: str


class PaymentStatus(TypedDict):
    # "paid" | "pending" | "expired" | "cancelled"
    status: str
    payment_id: Optional[str]


class PaymentNotification(TypedDict):
    # "paid" | "failed" | "cancelled" | "ignored"
    event_type: str
    provider_reference: Optional[str]
    order_number: Optional[str]
    payment_id: Optional[str]
    event_id: Optional[str]


class PaymentAdapter(ABC):
    # provider references start with this; the reconciler filters on it
    reference_prefix = "plink_"

    @abstractmethod
    async def create_payment_request(
        self, amount: int, currency: str, reference: str, customer: Dict
    ) -> PaymentRequest: ...

    @abstractmethod
    async def check_status(self, provider_reference: str) -> PaymentStatus:
        ...

    # verifies the signature; HTTPException(400) when it does not hold
    @abstractmethod
    def parse_notification(
        self, payload: bytes, headers: Dict
    ) -> PaymentNotification: ...


def _load_json(payload: bytes) -> Dict:
    try:
        return json.loads(payload.decode())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON")


# ----------------------------
# Razorpay payment links
# ----------------------------
class RazorpayAdapter(PaymentAdapter):

    def __init__(self, http: httpx.AsyncClient,
                 key_id: str = config.RAZORPAY_KEY_ID,
                 key_secret: str = config.RAZORPAY_KEY_SECRET,
                 webhook_secret: str = config.RAZORPAY_WEBHOOK_SECRET,
                 api_url: str = config.RAZORPAY_API_URL,
                 callback_url: str = config.PAYMENT_CALLBACK_URL,
                 link_ttl: int = config.PAYMENT_LINK_TTL_SECONDS) -> None:
        self.http = http
        self.auth = (key_id, key_secret)
        self.webhook_secret = webhook_secret
        self.api_url = api_url.rstrip("/")
        self.callback_url = callback_url
        self.link_ttl = link_ttl

    async def _call(self, method: str, path: str,
                    body: Optional[Dict] = None) -> Dict:
        try:
            resp = await self.http.request(
                method, f"{self.api_url}{path}", json=body, auth=self.auth
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            log.error("razorpay.http_error", path=path,
                      status=e.response.status_code,
                      body=e.response.text[:500])
            raise GatewayUnavailable("razorpay", str(e)) from e
        except (httpx.HTTPError, ValueError) as e:
            log.error("razorpay.unreachable", path=path, error=str(e))
            raise GatewayUnavailable("razorpay", str(e)) from e

    async def create_payment_request(
        self, amount: int, currency: str, reference: str, customer: Dict
    ) -> PaymentRequest:
        body = {
            "amount": int(amount),
            "currency": currency,
            "accept_partial": False,
            "expire_by": int(now_ts()) + self.link_ttl,
            "reference_id": reference,
            "description": customer.get("description")
            or f"Ticket {reference}",
            "customer": {
                "name": customer.get("name") or "",
                "email": customer.get("email") or "",
                "contact": customer.get("contact") or "",
            },
            "notify": {"sms": False, "email": bool(customer.get("email"))},
            "reminder_enable": True,
            "notes": {"order_number": reference},
            "callback_url": self.callback_url,
            "callback_method": "get",
        }
        data = await self._call("POST", "/payment_links", body)
        if not data.get("id") or not data.get("short_url"):
            raise GatewayUnavailable("razorpay", "incomplete payment link")
        return {"provider_reference": data["id"],
                "pay_url": data["short_url"]}

    async def check_status(self, provider_reference: str) -> PaymentStatus:
        data = await self._call("GET", f"/payment_links/{provider_reference}")
        status = data.get("status", "")
        payments = data.get("payments") or []
        captured = next(
            (p for p in payments if p.get("status") == "captured"), None
        )
        if status == "paid" and captured is not None:
            return {"status": "paid", "payment_id": captured.get("payment_id")}
        if status in ("expired", "cancelled"):
            return {"status": status, "payment_id": None}
        return {"status": "pending", "payment_id": None}

    def parse_notification(
        self, payload: bytes, headers: Dict
    ) -> PaymentNotification:
        sig = headers.get("x-razorpay-signature")
        expected = hmac.new(
            self.webhook_secret.encode(), payload, hashlib.sha256
        ).hexdigest()
        if not sig or not hmac.compare_digest(expected, sig):
            raise HTTPException(status_code=400, detail="Invalid signature")
        body = _load_json(payload)

        event = body.get("event", "")
        data = body.get("payload") or {}
        link = (data.get("payment_link") or {}).get("entity") or {}
        payment = (data.get("payment") or {}).get("entity") or {}
        notes = payment.get("notes") or link.get("notes") or {}

        kinds = {
            "payment_link.paid": "paid",
            "payment.captured": "paid",
            "payment_link.expired": "failed",
            "payment_link.cancelled": "cancelled",
        }
        return {
            "event_type": kinds.get(event, "ignored"),
            "provider_reference": link.get("id")
            or payment.get("payment_link_id"),
            "order_number": link.get("reference_id")
            or notes.get("order_number"),
            "payment_id": payment.get("id"),
            "event_id": headers.get("x-razorpay-event-id"),
        }


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """In-process gateway for development and tests.

    Links live in memory; ``/mockpay/{ref}/emit`` flips a link's state and
    posts a signed webhook back to ourselves.
    """

    def __init__(self, secret: str = config.MOCK_SECRET,
                 base_url: str = config.PUBLIC_BASE_URL) -> None:
        self.secret = secret
        self.base_url = base_url
        self.links: Dict[str, Dict] = {}

    async def create_payment_request(
        self, amount: int, currency: str, reference: str, customer: Dict
    ) -> PaymentRequest:
        ref = f"plink_mock_{uuid.uuid4().hex[:14]}"
        self.links[ref] = {
            "status": "created",
            "amount": int(amount),
            "currency": currency,
            "reference_id": reference,
            "payment_id": None,
        }
        return {"provider_reference": ref,
                "pay_url": f"{self.base_url}/mockpay/{ref}"}

    async def check_status(self, provider_reference: str) -> PaymentStatus:
        link = self.links.get(provider_reference)
        if link is None:
            return {"status": "pending", "payment_id": None}
        if link["status"] == "paid":
            return {"status": "paid", "payment_id": link["payment_id"]}
        if link["status"] in ("expired", "cancelled"):
            return {"status": link["status"], "payment_id": None}
        return {"status": "pending", "payment_id": None}

    def settle(self, provider_reference: str, kind: str) -> Dict:
        """Move a link to succeeded/failed/canceled, return the event."""
        link = self.links[provider_reference]
        if kind == "succeeded":
            link["status"] = "paid"
            link["payment_id"] = link["payment_id"] or (
                f"pay_mock_{uuid.uuid4().hex[:14]}"
            )
        elif kind == "failed":
            link["status"] = "expired"
        else:
            link["status"] = "cancelled"
        return {
            "type": f"payment.{kind}",
            "provider_reference": provider_reference,
            "order_number": link["reference_id"],
            "payment_id": link["payment_id"],
            "amount": link["amount"],
            "currency": link["currency"],
            "created_at": int(now_ts()),
            "idempotency_key": f"evt_{uuid.uuid4().hex}",
        }

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def parse_notification(
        self, payload: bytes, headers: Dict
    ) -> PaymentNotification:
        sig = headers.get("x-mockpay-signature")
        expected = self.sign(payload)
        if not sig or not hmac.compare_digest(expected, sig):
            raise HTTPException(status_code=400, detail="Invalid signature")
        event = _load_json(payload)

        kind = event.get("type", "").split(".")[-1]
        kinds = {"succeeded": "paid", "failed": "failed",
                 "canceled": "cancelled"}
        return {
            "event_type": kinds.get(kind, "ignored"),
            "provider_reference": event.get("provider_reference"),
            "order_number": event.get("order_number"),
            "payment_id": event.get("payment_id"),
            "event_id": event.get("idempotency_key"),
        }


def new_adapter(provider: str = config.PAYMENT_PROVIDER,
                http: Optional[httpx.AsyncClient] = None) -> PaymentAdapter:
    if provider == "razorpay":
        if http is None:
            raise RuntimeError("RazorpayAdapter requires http=AsyncClient")
        return RazorpayAdapter(http)
    return MockPay()
