from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from typing import Optional

import httpx
import redis.asyncio as redis

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse, PlainTextResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from . import config
from .accounts import AdminAccounts, has_role
from .conversation import ConversationEngine
from .errors import ErrorKind, Failure, GatewayUnavailable
from .helpers import ct_equal, format_date, normalize_phone, now_ts, to_iso
from .infra.logging import configure_logging, get_logger
from .infra.sql import create_schema, make_async_engine
from .lifecycle import OrderLifecycle
from .messaging import NotificationChannel, new_channel, parse_inbound
from .model import (
    ORDER_STATUSES, AdminUser, Base, Event, Order, Store, TicketType,
)
from .model import kv
from .payments import MockPay, PaymentAdapter, new_adapter
from . import qr
from .reconcile import Reconciler
from .scanning import ScanEngine

configure_logging()
log = get_logger("server")

# ----------------------------
# Config & Constants
# ----------------------------
engine, SessionAsync, _, gated = make_async_engine(config.DATABASE_URL)

app = FastAPI(
    title="EventPass",
    default_response_class=ORJSONResponse,
)
app.add_middleware(SessionMiddleware, secret_key=config.SESSION_SECRET)


@dataclass
class Services:
    store: Store
    gateway: PaymentAdapter
    channel: NotificationChannel
    kv: kv.KVStore
    lifecycle: OrderLifecycle
    scanner: ScanEngine
    conversation: ConversationEngine
    reconciler: Reconciler
    accounts: AdminAccounts


def build_services(store: Store, gateway: PaymentAdapter,
                   channel: NotificationChannel, kvs: kv.KVStore,
                   booking_mode: str = config.BOOKING_MODE) -> Services:
    lifecycle = OrderLifecycle(store, gateway, channel, kvs)
    return Services(
        store=store,
        gateway=gateway,
        channel=channel,
        kv=kvs,
        lifecycle=lifecycle,
        scanner=ScanEngine(store),
        conversation=ConversationEngine(store, lifecycle, channel, kvs,
                                        booking_mode=booking_mode),
        reconciler=Reconciler(store, gateway, lifecycle, kvs),
        accounts=AdminAccounts(store),
    )


def services(request: Request) -> Services:
    return request.app.state.services


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _db_init():
    await create_schema(engine, Base.metadata)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=10.0,
        limits=httpx.Limits(
            max_connections=64, max_keepalive_connections=32
        ),
    )


@app.on_event("startup")
async def _redis_start():
    app.state.redis = None
    if kv.BACKEND == "redis":
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            max_connections=config.REDIS_MAX_CONN,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("startup")
async def _services_start():
    http = app.state.http
    app.state.services = build_services(
        Store(SessionAsync, gated),
        new_adapter(config.PAYMENT_PROVIDER, http),
        new_channel(http),
        kv.new_store(r=app.state.redis),
    )
    if config.RECONCILE_ENABLED:
        app.state.services.reconciler.start()
    log.info("startup", provider=config.PAYMENT_PROVIDER,
             kv_backend=kv.BACKEND, booking_mode=config.BOOKING_MODE,
             reconcile=config.RECONCILE_ENABLED)


@app.on_event("shutdown")
async def _services_stop():
    svc = getattr(app.state, "services", None)
    if svc is not None:
        await svc.reconciler.stop()


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.close()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_dispose():
    await engine.dispose()


# ----------------------------
# Envelopes
# ----------------------------
def fail(f: Failure) -> ORJSONResponse:
    return ORJSONResponse(f.to_body(), status_code=f.http_status)


def ok(**body) -> dict:
    return {"success": True, **body}


_STATUS_KINDS = {401: ErrorKind.UNAUTHORIZED, 403: ErrorKind.FORBIDDEN,
                 404: ErrorKind.NOT_FOUND}


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    kind = _STATUS_KINDS.get(exc.status_code, ErrorKind.INVALID_INPUT)
    return ORJSONResponse(
        {"success": False, "message": str(exc.detail), "kind": kind.value},
        status_code=exc.status_code, headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return ORJSONResponse(
        {"success": False, "message": "Invalid request",
         "kind": ErrorKind.INVALID_INPUT.value},
        status_code=400,
    )


@app.exception_handler(GatewayUnavailable)
async def _gateway_error(request: Request, exc: GatewayUnavailable):
    log.error("gateway.unavailable", service=exc.service, error=exc.message,
              path=request.url.path)
    return fail(Failure(ErrorKind.GATEWAY_UNAVAILABLE,
                        f"{exc.service} is unavailable, please retry"))


# ----------------------------
# Helpers
# ----------------------------
def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request, role: str = "scanner") -> str:
    if not is_admin(request):
        raise HTTPException(status_code=401, detail="Admin login required")
    if not has_role(request.session.get("admin_role"), role):
        raise HTTPException(status_code=403, detail=f"{role} role required")
    return request.session["admin_user"]


def _date(value) -> date:
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise HTTPException(400, detail="eventDate must be YYYY-MM-DD")


def _ticket_fields(t: dict) -> dict:
    try:
        price = int(t["price"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(400, detail="ticket price is required")
    if price <= 0 or not t.get("name"):
        raise HTTPException(400, detail="invalid ticket type")
    return {"name": t["name"], "price": price,
            "total_quantity": t.get("totalQuantity") or 100}


_EVENT_COLUMNS = {
    "name": "name",
    "eventTime": "event_time",
    "venue": "venue",
    "description": "description",
    "imageUrl": "image_url",
}


def _event_changes(payload: dict) -> dict:
    fields = {col: payload[key] for key, col in _EVENT_COLUMNS.items()
              if key in payload}
    if "name" in fields:
        fields["name"] = (fields["name"] or "").strip()
        if not fields["name"]:
            raise HTTPException(400, detail="name is required")
    if "eventDate" in payload:
        fields["event_date"] = _date(payload["eventDate"])
    if "isActive" in payload:
        fields["is_active"] = bool(payload["isActive"])
    return fields


def _int(payload: dict, key: str) -> int:
    try:
        return int(payload[key])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(400, detail=f"{key} is required")


def event_json(ev: Event, tickets=None) -> dict:
    out = {
        "eventId": ev.id,
        "name": ev.name,
        "code": ev.code,
        "eventDate": ev.event_date.isoformat(),
        "displayDate": format_date(ev.event_date),
        "eventTime": ev.event_time,
        "venue": ev.venue,
        "description": ev.description,
        "imageUrl": ev.image_url,
        "isActive": ev.is_active,
    }
    if tickets is not None:
        out["ticketTypes"] = [{
            "ticketTypeId": t.id,
            "name": t.name,
            "price": t.price,
            "availableQuantity": t.available_quantity,
            "totalQuantity": t.total_quantity,
        } for t in tickets]
    return out


def order_json(order: Order) -> dict:
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "status": order.status,
        "amount": order.amount,
        "currency": order.currency,
        "paymentUrl": order.payment_url,
        "providerReference": order.provider_reference,
        "paymentId": order.provider_payment_id,
        "isScanned": order.is_scanned,
        "createdAt": to_iso(order.created_at),
        "paidAt": to_iso(order.paid_at),
    }


@app.get("/health")
async def health():
    return {"ok": True}


# ----------------------------
# Events
# ----------------------------
@app.get("/api/events")
async def list_events(limit: int = 20, svc: Services = Depends(services)):
    events = await svc.store.upcoming_events(limit=max(1, min(limit, 100)))
    return ok(events=[event_json(ev) for ev in events])


@app.get("/api/events/{event_id}")
async def get_event(event_id: int, svc: Services = Depends(services)):
    ev = await svc.store.active_event(event_id)
    if ev is None:
        return fail(Failure(ErrorKind.NOT_FOUND, "Event not found"))
    tickets = await svc.store.ticket_types_for_event(ev.id)
    return ok(event=event_json(ev, tickets))


@app.post("/api/admin/events")
async def create_event(payload: dict, request: Request,
                       svc: Services = Depends(services)):
    require_admin(request, "admin")
    fields = {col: payload.get(key) for key, col in _EVENT_COLUMNS.items()}
    fields.update(_event_changes(payload))
    if not fields.get("name"):
        raise HTTPException(400, detail="name is required")
    fields["event_date"] = _date(payload.get("eventDate"))
    fields.pop("is_active", None)
    tickets = [_ticket_fields(t) for t in payload.get("ticketTypes") or []]

    ev, rows = await svc.store.create_event(fields, tickets)
    artifact = qr.event_qr_artifact(ev.code)
    await svc.store.update_where(Event, (Event.id == ev.id,),
                                 {"qr_artifact": artifact})
    log.info("event.created", event_id=ev.id, code=ev.code)
    return ok(event=event_json(ev, rows), qrCode=artifact,
              deepLink=qr.deep_link_target(ev.code))


@app.get("/api/admin/events")
async def admin_list_events(request: Request, limit: int = 100,
                            svc: Services = Depends(services)):
    require_admin(request, "admin")
    events = await svc.store.all_events(limit=max(1, min(limit, 500)))
    return ok(events=[event_json(ev) for ev in events])


@app.put("/api/admin/events/{event_id}")
async def update_event(event_id: int, payload: dict, request: Request,
                       svc: Services = Depends(services)):
    require_admin(request, "admin")
    if await svc.store.get(Event, event_id) is None:
        return fail(Failure(ErrorKind.NOT_FOUND, "Event not found"))
    fields = _event_changes(payload)
    fields["updated_at"] = now_ts()
    await svc.store.update_where(Event, (Event.id == event_id,), fields)

    # name/price edits only; quantities move with sales
    for t in payload.get("ticketTypes") or []:
        changes = _ticket_fields(t)
        changes.pop("total_quantity")
        changed = await svc.store.update_where(
            TicketType,
            (TicketType.id == _int(t, "ticketTypeId"),
             TicketType.event_id == event_id),
            changes,
        )
        if not changed:
            return fail(Failure(ErrorKind.NOT_FOUND,
                                "Ticket type not found for this event"))

    ev = await svc.store.get(Event, event_id)
    tickets = await svc.store.ticket_types_for_event(event_id)
    log.info("event.updated", event_id=event_id, fields=sorted(fields))
    return ok(event=event_json(ev, tickets))


@app.delete("/api/admin/events/{event_id}")
async def deactivate_event(event_id: int, request: Request,
                           svc: Services = Depends(services)):
    require_admin(request, "admin")
    changed = await svc.store.update_where(
        Event, (Event.id == event_id,),
        {"is_active": False, "updated_at": now_ts()},
    )
    if not changed:
        return fail(Failure(ErrorKind.NOT_FOUND, "Event not found"))
    log.info("event.deactivated", event_id=event_id)
    return ok(message="Event deactivated", eventId=event_id)


@app.get("/api/admin/orders")
async def admin_list_orders(request: Request, status: Optional[str] = None,
                            event_id: Optional[int] = Query(None,
                                                            alias="eventId"),
                            limit: int = 50,
                            offset: int = 0,
                            svc: Services = Depends(services)):
    require_admin(request, "admin")
    if status is not None and status not in ORDER_STATUSES:
        raise HTTPException(400, detail="unknown status")
    total, rows = await svc.store.list_orders(
        status=status, event_id=event_id,
        limit=max(1, min(limit, 200)), offset=max(0, offset),
    )
    orders = [{
        **order_json(r["order"]),
        "customerName": r["user"].full_name,
        "phoneNumber": r["user"].phone,
        "email": r["order"].email or r["user"].email,
        "eventName": r["event"].name,
        "ticketType": r["ticket"].name,
        "scannedAt": to_iso(r["order"].scanned_at),
        "scannedBy": r["order"].scanned_by,
    } for r in rows]
    return ok(total=total, orders=orders)


@app.get("/api/admin/stats")
async def admin_stats(request: Request, svc: Services = Depends(services)):
    require_admin(request, "admin")
    return ok(stats=await svc.store.order_stats())


# ----------------------------
# Admin accounts
# ----------------------------
def admin_json(a: AdminUser) -> dict:
    return {
        "adminId": a.id,
        "username": a.username,
        "fullName": a.full_name,
        "role": a.role,
        "isActive": a.is_active,
        "lastLoginAt": to_iso(a.last_login_at),
    }


@app.get("/api/admin/users")
async def admin_list_accounts(request: Request,
                              svc: Services = Depends(services)):
    require_admin(request, "superadmin")
    return ok(users=[admin_json(a) for a in await svc.store.list_admins()])


@app.post("/api/admin/users")
async def admin_create_account(payload: dict, request: Request,
                               svc: Services = Depends(services)):
    creator = require_admin(request, "superadmin")
    result = await svc.accounts.create(
        payload.get("username") or "", payload.get("password") or "",
        role=payload.get("role") or "scanner",
        full_name=payload.get("fullName"),
    )
    if isinstance(result, Failure):
        return fail(result)
    log.info("admin.account_created", by=creator, username=result.username)
    return ok(user=admin_json(result))


@app.put("/api/admin/users/{admin_id}")
async def admin_update_account(admin_id: int, payload: dict,
                               request: Request,
                               svc: Services = Depends(services)):
    require_admin(request, "superadmin")
    result = await svc.accounts.update(
        admin_id,
        role=payload.get("role"),
        is_active=payload.get("isActive"),
        password=payload.get("password"),
    )
    if isinstance(result, Failure):
        return fail(result)
    return ok(user=admin_json(result))


# ----------------------------
# Users & orders
# ----------------------------
@app.post("/api/users")
async def upsert_user(payload: dict, svc: Services = Depends(services)):
    phone = normalize_phone(payload.get("phoneNumber"))
    if len(phone) < 10:
        raise HTTPException(400, detail="phoneNumber is required")
    user = await svc.store.upsert_user(
        phone, (payload.get("fullName") or "").strip() or None,
        (payload.get("email") or "").strip() or None,
    )
    return ok(userId=user.id, phoneNumber=user.phone,
              fullName=user.full_name, email=user.email)


@app.post("/api/orders")
async def create_order(payload: dict, svc: Services = Depends(services)):
    # the ticket type sets the price; a client "amount" is ignored
    result = await svc.lifecycle.create_order(
        _int(payload, "userId"),
        _int(payload, "eventId"),
        _int(payload, "ticketTypeId"),
        session_token=payload.get("sessionToken"),
    )
    if isinstance(result, Failure):
        return fail(result)
    return ok(order=order_json(result.order), paymentUrl=result.pay_url,
              created=result.created)


@app.get("/api/orders/{order_number}")
async def get_order(order_number: str, svc: Services = Depends(services)):
    detail = await svc.store.order_detail(order_number)
    if detail is None:
        return fail(Failure(ErrorKind.NOT_FOUND, "Order not found"))
    return ok(order=order_json(detail["order"]),
              event=event_json(detail["event"]),
              ticketType=detail["ticket"].name,
              customerName=detail["user"].full_name)


@app.post("/api/orders/{order_id}/payment-success")
async def manual_payment_success(order_id: int, request: Request,
                                 payload: Optional[dict] = None,
                                 svc: Services = Depends(services)):
    require_admin(request, "admin")
    result = await svc.lifecycle.apply_payment_success(
        order_id, (payload or {}).get("paymentId")
    )
    if result.order is None:
        return fail(Failure(ErrorKind.NOT_FOUND, "Order not found"))
    return ok(outcome=result.outcome.value, order=order_json(result.order))


# ----------------------------
# Payments: webhook, callback, manual check
# ----------------------------
async def _settle(svc: Services, order: Order, kind: str,
                  payment_id: Optional[str]) -> str:
    if kind == "paid":
        result = await svc.lifecycle.apply_payment_success(order.id,
                                                           payment_id)
        return result.outcome.value
    if kind == "failed":
        await svc.lifecycle.mark_failed(order.id, "gateway reported failure")
    elif kind == "cancelled":
        await svc.lifecycle.mark_cancelled(order.id, "gateway reported cancel")
    return kind


@app.post("/payments/webhook")
@app.post("/webhook/razorpay")
async def payments_webhook(request: Request,
                           svc: Services = Depends(services)):
    payload = await request.body()
    headers = dict(request.headers)

    note = svc.gateway.parse_notification(payload, headers)
    if note["event_type"] == "ignored":
        return {"ok": True, "ignored": True}
    if note["event_id"] and not await svc.kv.set_if_absent(
            f"idemp:{note['event_id']}", "1", ttl=24 * 3600):
        return {"ok": True, "idempotent": True}

    order = await svc.lifecycle.resolve(note["provider_reference"],
                                        note["order_number"])
    if order is None:
        # acknowledged anyway; redelivery would not find it either
        log.warning("webhook.order_not_found",
                    ref=note["provider_reference"],
                    order_number=note["order_number"],
                    payment_id=note["payment_id"])
        return {"ok": True, "found": False}
    outcome = await _settle(svc, order, note["event_type"], note["payment_id"])
    return {"ok": True, "outcome": outcome}


@app.get("/payments/callback")
async def payments_callback(request: Request,
                            svc: Services = Depends(services)):
    params = request.query_params
    ref = params.get("razorpay_payment_link_id") or params.get("ref")
    order = await svc.lifecycle.find_by_provider_reference(ref) if ref else None
    if order is None:
        return RedirectResponse(f"{config.FRONTEND_URL}/payment/error",
                                status_code=HTTP_303_SEE_OTHER)

    # the query string is not signed; ask the gateway
    try:
        status = await svc.gateway.check_status(ref)
    except GatewayUnavailable:
        status = {"status": "pending", "payment_id": None}
    if status["status"] == "paid":
        await svc.lifecycle.apply_payment_success(order.id,
                                                  status["payment_id"])
        return RedirectResponse(
            f"{config.FRONTEND_URL}/payment/success?order="
            f"{order.order_number}",
            status_code=HTTP_303_SEE_OTHER,
        )
    return RedirectResponse(
        f"{config.FRONTEND_URL}/payment/error?order={order.order_number}",
        status_code=HTTP_303_SEE_OTHER,
    )


@app.get("/api/payments/check/{provider_reference}")
async def check_payment(provider_reference: str,
                        svc: Services = Depends(services)):
    order = await svc.lifecycle.find_by_provider_reference(provider_reference)
    if order is None:
        return fail(Failure(ErrorKind.NOT_FOUND, "Order not found"))
    status = await svc.gateway.check_status(provider_reference)
    outcome = None
    if status["status"] == "paid":
        result = await svc.lifecycle.apply_payment_success(
            order.id, status["payment_id"]
        )
        outcome, order = result.outcome.value, result.order
    return ok(gatewayStatus=status["status"], outcome=outcome,
              order=order_json(order))


# ----------------------------
# Admin: login & scanning
# ----------------------------
@app.post("/api/admin/login")
async def admin_login(payload: dict, request: Request,
                      svc: Services = Depends(services)):
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    principal = await svc.accounts.authenticate(username, password)
    if principal is not None:
        request.session["admin_user"] = principal.username
        request.session["admin_role"] = principal.role
        log.info("admin.login", username=principal.username,
                 role=principal.role)
        return ok(username=principal.username, role=principal.role)
    log.warning("admin.login_failed", username=username)
    return fail(Failure(ErrorKind.UNAUTHORIZED, "Invalid credentials"))


@app.post("/api/admin/logout")
async def admin_logout(request: Request):
    request.session.clear()
    return ok()


@app.post("/api/admin/scan")
async def scan_validate(payload: dict, request: Request,
                        svc: Services = Depends(services)):
    require_admin(request)
    raw = payload.get("qrData")
    if isinstance(raw, dict):
        raw = json.dumps(raw)
    result = await svc.scanner.validate(raw)
    if isinstance(result, Failure):
        return fail(result)
    message = ("Ticket already scanned" if result.scanned
               else "Valid ticket")
    return ok(alreadyScanned=result.scanned, message=message,
              order=result.detail)


@app.post("/api/admin/scan/confirm")
async def scan_confirm(payload: dict, request: Request,
                       svc: Services = Depends(services)):
    operator = require_admin(request)
    result = await svc.scanner.confirm(_int(payload, "orderId"), operator)
    if isinstance(result, Failure):
        return fail(result)
    return ok(message="Entry confirmed", orderId=result.order_id,
              orderNumber=result.order_number,
              scannedAt=result.scanned_at, scannedBy=result.scanned_by)


# ----------------------------
# WhatsApp
# ----------------------------
@app.get("/webhook/whatsapp")
async def whatsapp_verify(request: Request):
    params = request.query_params
    if (params.get("hub.mode") == "subscribe"
            and ct_equal(params.get("hub.verify_token") or "",
                         config.WHATSAPP_VERIFY_TOKEN)):
        return PlainTextResponse(params.get("hub.challenge") or "")
    raise HTTPException(403, detail="Verification failed")


@app.post("/webhook/whatsapp")
async def whatsapp_inbound(payload: dict, svc: Services = Depends(services)):
    handled = 0
    for msg in parse_inbound(payload):
        if not msg.text:
            continue
        await svc.conversation.handle(msg)
        handled += 1
    return {"ok": True, "handled": handled}


@app.post("/api/whatsapp/user-form-submit")
async def whatsapp_form_submit(payload: dict,
                               svc: Services = Depends(services)):
    token = payload.get("sessionToken") or payload.get("sessionId")
    if not token:
        raise HTTPException(400, detail="sessionToken is required")
    result = await svc.conversation.submit_form(
        token, payload.get("fullName") or "",
        payload.get("phoneNumber") or "", payload.get("email") or "",
    )
    if isinstance(result, Failure):
        return fail(result)
    return ok(order=order_json(result.order), paymentUrl=result.pay_url,
              created=result.created)


@app.get("/s/{short_id}")
async def short_link(short_id: str, svc: Services = Depends(services)):
    target = await svc.kv.get(f"short:{short_id}")
    if not target:
        raise HTTPException(404, detail="Link expired")
    return RedirectResponse(target, status_code=302)


# ----------------------------
# MockPay
# ----------------------------
def _mockpay(svc: Services) -> MockPay:
    if not isinstance(svc.gateway, MockPay):
        raise HTTPException(404, detail="mock gateway disabled")
    return svc.gateway


@app.get("/mockpay/{ref}")
async def mockpay_screen(ref: str, svc: Services = Depends(services)):
    link = _mockpay(svc).links.get(ref)
    if link is None:
        raise HTTPException(404, detail="payment link not found")
    return {"ref": ref, **link, "webhook_url": config.MOCK_WEBHOOK_URL}


@app.post("/mockpay/{ref}/emit")
async def mockpay_emit(ref: str, payload: dict, request: Request,
                       svc: Services = Depends(services)):
    gateway = _mockpay(svc)
    kind = payload.get("t")  # succeeded|failed|canceled
    if kind not in {"succeeded", "failed", "canceled"}:
        raise HTTPException(400, detail="invalid kind")
    if ref not in gateway.links:
        raise HTTPException(404, detail="payment link not found")

    event = gateway.settle(ref, kind)
    body = json.dumps(event).encode()
    try:
        await request.app.state.http.post(
            config.MOCK_WEBHOOK_URL,
            content=body,
            headers={
                "x-mockpay-signature": gateway.sign(body),
                "content-type": "application/json",
            },
        )
    except httpx.HTTPError as e:
        # the callback redirect and the reconciler still pick it up
        log.warning("mockpay.webhook_failed", error=str(e))

    if kind == "succeeded":
        return RedirectResponse(f"/payments/callback?ref={ref}",
                                status_code=HTTP_303_SEE_OTHER)
    return RedirectResponse(
        f"{config.FRONTEND_URL}/payment/error?order={event['order_number']}",
        status_code=HTTP_303_SEE_OTHER,
    )
