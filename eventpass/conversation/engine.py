import re
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from .. import config
from ..errors import ErrorKind, Failure, GatewayUnavailable
from ..helpers import digits_only, is_valid_email, normalize_phone
from ..infra.logging import get_logger
from ..lifecycle import OrderHandle, OrderLifecycle
from ..messaging import InboundMessage, NotificationChannel, Text
from ..model import Store
from ..model.kv import KVStore
from .handlers import (
    HANDLERS, Context, Reply, payment_link_message, show_event_by_code,
)
from .steps import Step, StateData

log = get_logger("conversation")

RESET_KEYWORDS = {
    "start", "menu", "restart", "begin", "home",
    "back to menu", "back to start", "back_to_menu", "back_to_start",
}
DEEP_LINK = re.compile(r"book\s+event\s+([a-z0-9\-]+)", re.IGNORECASE)
SEEN_TTL_SECONDS = 24 * 3600
SORRY = "Something went wrong. Please type START to retry."


class ConversationEngine:
    """Drives one WhatsApp dialogue turn at a time.

    A turn loads the persisted step, runs exactly one handler, writes the
    next step back with a single upsert, and only then sends the replies.
    """

    def __init__(self, store: Store, lifecycle: OrderLifecycle,
                 channel: NotificationChannel, kv: KVStore,
                 booking_mode: str = config.BOOKING_MODE,
                 base_url: str = config.PUBLIC_BASE_URL,
                 signup_form_url: str = config.SIGNUP_FORM_URL) -> None:
        self.store = store
        self.lifecycle = lifecycle
        self.channel = channel
        self.kv = kv
        self.booking_mode = booking_mode
        self.base_url = base_url
        self.signup_form_url = signup_form_url

    def _context(self, phone: str) -> Context:
        return Context(phone=phone, store=self.store,
                       lifecycle=self.lifecycle, kv=self.kv,
                       booking_mode=self.booking_mode,
                       base_url=self.base_url,
                       signup_form_url=self.signup_form_url)

    async def handle(self, msg: InboundMessage) -> Optional[Step]:
        """Process one inbound message; returns the persisted step.

        Returns None when the message was a duplicate delivery or the turn
        failed.
        """
        phone = normalize_phone(msg.phone)
        if msg.message_id and not await self.kv.set_if_absent(
                f"wa:msg:{msg.message_id}", "1", ttl=SEEN_TTL_SECONDS):
            log.info("message.duplicate", phone=phone,
                     message_id=msg.message_id)
            return None

        try:
            reply = await self._turn(phone, msg.text.strip())
            await self.store.save_conversation(
                phone, reply.step.value, reply.data.to_dict()
            )
        except (SQLAlchemyError, GatewayUnavailable):
            log.exception("turn.failed", phone=phone)
            await self._send(phone, [Text(SORRY)])
            return None

        await self._send(phone, reply.messages)
        return reply.step

    async def _turn(self, phone: str, text: str) -> Reply:
        state = await self.store.load_conversation(phone)
        step = Step.parse(state.current_step) if state else Step.WELCOME
        data = StateData.from_dict(state.state_data if state else None)
        ctx = self._context(phone)
        lowered = text.lower()

        if lowered in RESET_KEYWORDS:
            log.info("conversation.reset", phone=phone, step=step.value)
            await self.store.save_conversation(phone, Step.WELCOME.value, {})
            return await HANDLERS[Step.WELCOME](ctx, StateData(), text)

        link = DEEP_LINK.search(text)
        if link:
            code = link.group(1).upper()
            log.info("conversation.deep_link", phone=phone, code=code)
            return await show_event_by_code(ctx, data, code, step)

        return await HANDLERS[step](ctx, data, text)

    async def _send(self, phone: str, messages) -> None:
        for m in messages:
            try:
                await self.channel.deliver(phone, m)
            except Exception:
                # state is already persisted; the user can resend
                log.exception("message.send_failed", phone=phone)
                return

    # ----------------------------
    # sign-up form
    # ----------------------------
    async def submit_form(self, session_token: str, full_name: str,
                          phone_number: str, email: str
                          ) -> Union[OrderHandle, Failure]:
        existing = await self.store.order_by_session_token(session_token)
        if existing is not None:
            return OrderHandle(existing, existing.payment_url or "",
                               created=False)

        state = await self.store.conversation_by_session_token(session_token)
        if state is None:
            return Failure(ErrorKind.NOT_FOUND,
                           "Session expired. Please start again on "
                           "WhatsApp.")
        full_name = (full_name or "").strip()
        if len(full_name) < 2:
            return Failure(ErrorKind.INVALID_INPUT,
                           "Full name must be at least 2 characters")
        if len(digits_only(phone_number)) < 10:
            return Failure(ErrorKind.INVALID_INPUT,
                           "Phone number must have at least 10 digits")
        if not is_valid_email(email):
            return Failure(ErrorKind.INVALID_INPUT,
                           "A valid email address is required")

        data = StateData.from_dict(state.state_data)
        if data.selected_event_id is None or data.selected_ticket_id is None:
            return Failure(ErrorKind.NOT_FOUND,
                           "No ticket selected for this session")

        user = await self.store.upsert_user(state.phone, full_name,
                                            email.strip())
        # GatewayUnavailable propagates; the conversation stays put
        result = await self.lifecycle.create_order(
            user.id, data.selected_event_id, data.selected_ticket_id,
            session_token=session_token,
        )
        if isinstance(result, Failure):
            return result

        await self.store.save_conversation(state.phone,
                                           Step.MAIN_MENU.value, {})
        await self._send(state.phone, [
            payment_link_message(result.order, result.pay_url)
        ])
        return result
