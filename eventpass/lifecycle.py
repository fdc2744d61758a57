import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError

from . import config
from .errors import ErrorKind, Failure, GatewayUnavailable
from .helpers import format_amount, format_date, generate_order_number, now_ts
from .infra.logging import get_logger
from .messaging import NotificationChannel
from .model import Event, Order, Store, TicketType, User
from .model.kv import KVStore
from .payments import PaymentAdapter
from . import qr

log = get_logger("lifecycle")

CLAIM_TTL_SECONDS = 60
CLAIM_WAIT_SECONDS = 15.0
CLAIM_POLL_SECONDS = 0.05


def k_claim(session_token: str) -> str:
    return f"order:claim:{session_token}"


class Outcome(str, Enum):
    APPLIED = "applied"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_TERMINAL = "already_terminal"
    NOT_FOUND = "not_found"


@dataclass
class PaymentResult:
    outcome: Outcome
    order: Optional[Order] = None

    @property
    def applied(self) -> bool:
        return self.outcome is Outcome.APPLIED


@dataclass
class OrderHandle:
    order: Order
    pay_url: str
    created: bool = True


class OrderLifecycle:
    """Opens orders against the gateway and settles them exactly once.

    Every success signal (webhook, redirect callback, reconciliation poll,
    manual admin call) ends up in ``apply_payment_success``; the
    conditional ``pending -> completed`` update decides which one wins.
    """

    def __init__(self, store: Store, gateway: PaymentAdapter,
                 channel: NotificationChannel,
                 kv: Optional[KVStore] = None,
                 currency: str = config.CURRENCY) -> None:
        self.store = store
        self.gateway = gateway
        self.channel = channel
        self.kv = kv
        self.currency = currency

    # ----------------------------
    # create
    # ----------------------------
    async def create_order(
        self, user_id: int, event_id: int, ticket_type_id: int,
        session_token: Optional[str] = None,
    ) -> Union[OrderHandle, Failure]:
        """Open a pending order for one ticket at the ticket type's price.

        With a session token the call is idempotent: a second call returns
        the first order instead of opening another payment link.
        """
        tt: Optional[TicketType] = await self.store.get(
            TicketType, ticket_type_id
        )
        if tt is None or tt.event_id != event_id:
            return Failure(ErrorKind.NOT_FOUND, "Ticket type not found")
        ev: Optional[Event] = await self.store.active_event(event_id)
        if ev is None:
            return Failure(ErrorKind.NOT_FOUND, "Event not found")
        user: Optional[User] = await self.store.get(User, user_id)
        if user is None:
            return Failure(ErrorKind.NOT_FOUND, "User not found")

        if tt.available_quantity <= 0:
            return Failure(ErrorKind.INVENTORY_EXHAUSTED,
                           f"{tt.name} tickets are sold out")

        amount = tt.price
        if amount <= 0:
            return Failure(ErrorKind.INVALID_INPUT,
                           "Ticket price must be positive")

        if session_token:
            existing = await self.store.order_by_session_token(session_token)
            if existing is not None:
                log.info("order.reused", order_number=existing.order_number,
                         session_token=session_token)
                return OrderHandle(existing, existing.payment_url or "",
                                   created=False)
            if not await self._claim(session_token):
                return await self._await_claimed(session_token)

        order_number = generate_order_number()
        try:
            req = await self.gateway.create_payment_request(
                amount, self.currency, order_number,
                {"name": user.full_name, "email": user.email,
                 "contact": f"+{user.phone}",
                 "description": f"{ev.name} - {tt.name}"},
            )
        except GatewayUnavailable:
            # nothing has been written; let the next attempt claim again
            await self._release(session_token)
            raise

        now = now_ts()
        order = Order(
            order_number=order_number,
            user_id=user.id,
            event_id=ev.id,
            ticket_type_id=tt.id,
            amount=amount,
            currency=self.currency,
            email=user.email,
            status="pending",
            provider_reference=req["provider_reference"],
            payment_url=req["pay_url"],
            session_token=session_token,
            is_scanned=False,
            created_at=now,
            updated_at=now,
        )
        try:
            await self.store.add(order)
        except IntegrityError:
            # same session token committed by a concurrent turn
            if session_token:
                existing = await self.store.order_by_session_token(
                    session_token
                )
                if existing is not None:
                    return OrderHandle(existing, existing.payment_url or "",
                                       created=False)
            raise
        log.info("order.created", order_number=order_number,
                 order_id=order.id, ref=req["provider_reference"],
                 amount=amount)
        return OrderHandle(order, req["pay_url"])

    async def _claim(self, session_token: str) -> bool:
        if self.kv is None:
            return True
        return await self.kv.set_if_absent(k_claim(session_token), "1",
                                           ttl=CLAIM_TTL_SECONDS)

    async def _release(self, session_token: Optional[str]) -> None:
        if self.kv is not None and session_token:
            await self.kv.delete(k_claim(session_token))

    async def _await_claimed(self, session_token: str
                             ) -> Union[OrderHandle, Failure]:
        """Another turn holds the token; wait for its order to land."""
        deadline = time.monotonic() + CLAIM_WAIT_SECONDS
        while time.monotonic() < deadline:
            await asyncio.sleep(CLAIM_POLL_SECONDS)
            existing = await self.store.order_by_session_token(session_token)
            if existing is not None:
                return OrderHandle(existing, existing.payment_url or "",
                                   created=False)
        log.warning("order.claim_timeout", session_token=session_token)
        return Failure(ErrorKind.INVALID_INPUT,
                       "Your order is still being created, please retry")

    # ----------------------------
    # settle
    # ----------------------------
    async def apply_payment_success(
        self, order_id: int, provider_payment_id: Optional[str]
    ) -> PaymentResult:
        order: Optional[Order] = await self.store.get(Order, order_id)
        if order is None:
            log.error("payment.order_not_found", order_id=order_id,
                      payment_id=provider_payment_id)
            return PaymentResult(Outcome.NOT_FOUND)
        if order.status == "completed":
            return PaymentResult(Outcome.ALREADY_COMPLETED, order)
        if order.status != "pending":
            log.warning("payment.for_terminal_order", order_id=order_id,
                        status=order.status, payment_id=provider_payment_id)
            return PaymentResult(Outcome.ALREADY_TERMINAL, order)

        payload = qr.credential_payload(order.order_number, order.id)
        applied, decremented = await self.store.complete_order_if_pending(
            order.id, provider_payment_id, payload
        )
        order = await self.store.get(Order, order_id)
        if not applied:
            if order is not None and order.status == "completed":
                return PaymentResult(Outcome.ALREADY_COMPLETED, order)
            return PaymentResult(Outcome.ALREADY_TERMINAL, order)

        if not decremented:
            log.warning("inventory.oversold", order_id=order_id,
                        ticket_type_id=order.ticket_type_id)
        log.info("payment.applied", order_number=order.order_number,
                 payment_id=provider_payment_id)
        await self._notify_ticket(order)
        return PaymentResult(Outcome.APPLIED, order)

    async def _notify_ticket(self, order: Order) -> None:
        try:
            detail = await self.store.order_detail(order.order_number)
            if detail is None:
                return
            ev, tt, user = detail["event"], detail["ticket"], detail["user"]
            lines = [
                "🎉 *Payment Successful!*",
                "",
                "✅ Your ticket has been confirmed!",
                "",
                "📦 *Order Details:*",
                f"Order Number: {order.order_number}",
                f"Event: {ev.name}",
                f"Ticket: {tt.name}",
                f"Amount: {format_amount(order.amount, order.currency)}",
                f"Date: {format_date(ev.event_date)}",
            ]
            if ev.event_time:
                lines.append(f"Time: {ev.event_time}")
            lines += [f"Venue: {ev.venue or ''}", "",
                      "Show the QR code below at the venue for entry."]
            await self.channel.send_text(user.phone, "\n".join(lines))
            await self.channel.send_image(
                user.phone, qr.render_png(order.qr_payload),
                "Your Event Ticket QR Code",
            )
        except Exception:
            # the order stays completed; the ticket can be re-sent
            log.exception("ticket.notify_failed",
                          order_number=order.order_number)

    # ----------------------------
    # demote
    # ----------------------------
    async def mark_failed(self, order_id: int, reason: str = "") -> bool:
        changed = await self.store.transition_if_pending(order_id, "failed")
        if changed:
            log.info("order.failed", order_id=order_id, reason=reason)
        return bool(changed)

    async def mark_cancelled(self, order_id: int, reason: str = "") -> bool:
        changed = await self.store.transition_if_pending(order_id,
                                                         "cancelled")
        if changed:
            log.info("order.cancelled", order_id=order_id, reason=reason)
        return bool(changed)

    # ----------------------------
    # lookups
    # ----------------------------
    async def find_by_provider_reference(self, ref: str) -> Optional[Order]:
        return await self.store.order_by_reference(ref)

    async def resolve(self, provider_reference: Optional[str],
                      order_number: Optional[str]) -> Optional[Order]:
        order = None
        if provider_reference:
            order = await self.store.order_by_reference(provider_reference)
        if order is None and order_number:
            order = await self.store.order_by_number(order_number)
        return order
