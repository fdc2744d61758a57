from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from .. import config
from ..errors import ErrorKind, Failure, GatewayUnavailable
from ..helpers import (
    digits_only, format_amount, format_date, generate_session_token,
    generate_short_id, normalize_phone,
)
from ..infra.logging import get_logger
from ..lifecycle import OrderLifecycle
from ..messaging import Choice, ListChoice, Message, Text
from ..model import Event, Order, Store, TicketType
from ..model.kv import KVStore
from .steps import Step, StateData

log = get_logger("conversation")

WELCOME_EVENTS = 5
LIST_EVENTS = 10

BUY_WORDS = {"yes", "buy", "purchase", "yes_buy_ticket"}
BACK_WORDS = {"back", "view_other_events"}
FORM_WORDS = {"open_signup_form", "signup", "complete signup"}

MENU = Choice("What would you like to do?",
              (("view_events", "View Events"), ("support", "Support")))
EVENT_ACTIONS = (("yes_buy_ticket", "Buy Ticket"),
                 ("view_other_events", "Other Events"))


@dataclass
class Reply:
    messages: List[Message]
    step: Step
    data: StateData


@dataclass
class Context:
    phone: str
    store: Store
    lifecycle: OrderLifecycle
    kv: KVStore
    booking_mode: str = config.BOOKING_MODE
    base_url: str = config.PUBLIC_BASE_URL
    signup_form_url: str = config.SIGNUP_FORM_URL
    short_link_ttl: int = config.SHORT_LINK_TTL_SECONDS
    support_text: str = config.SUPPORT_TEXT


Handler = Callable[[Context, StateData, str], Awaitable[Reply]]


# ----------------------------
# Message builders
# ----------------------------
def events_list(events: Sequence[Event], body: str) -> ListChoice:
    rows = tuple(
        (f"event_{ev.id}", ev.name,
         " | ".join(x for x in (format_date(ev.event_date), ev.venue) if x))
        for ev in events
    )
    return ListChoice(body, "View Events", rows, title="Upcoming Events")


def event_details(ev: Event, tickets: Sequence[TicketType]) -> List[Message]:
    lines = [f"🎫 *{ev.name}*", "",
             f"📅 Date: {format_date(ev.event_date)}"]
    if ev.event_time:
        lines.append(f"⏰ Time: {ev.event_time}")
    if ev.venue:
        lines.append(f"📍 Venue: {ev.venue}")
    if ev.description:
        lines += ["", ev.description]
    if tickets:
        lines += ["", "*Tickets:*"]
        lines += [f"• {t.name}: {format_amount(t.price)}"
                  + ("" if t.available_quantity > 0 else " (sold out)")
                  for t in tickets]
    return [Text("\n".join(lines)),
            Choice("Would you like to buy a ticket?", EVENT_ACTIONS)]


def ticket_buttons(tickets: Sequence[TicketType]) -> List[Message]:
    options = [(f"ticket_{t.id}", f"{t.name} {format_amount(t.price)}")
               for t in tickets]
    out: List[Message] = []
    for i in range(0, len(options), 3):
        body = "Select your ticket type:" if i == 0 else "More tickets:"
        out.append(Choice(body, tuple(options[i:i + 3])))
    return out


def payment_link_message(order: Order, pay_url: str) -> Text:
    lines = ["✅ *Order created!*", "",
             f"Order Number: {order.order_number}",
             f"Amount: {format_amount(order.amount, order.currency)}", "",
             f"💳 Complete your payment here:\n{pay_url}", "",
             "Your ticket QR code will be sent here once the payment "
             "goes through."]
    return Text("\n".join(lines))


def _pick(text: str, prefix: str, listed: Sequence[int]) -> Optional[int]:
    """``<prefix>_<id>`` reply ids, or a 1-based index into ``listed``."""
    if text.startswith(f"{prefix}_"):
        tail = text[len(prefix) + 1:]
        return int(tail) if tail.isdigit() else None
    if text.isdigit():
        idx = int(text) - 1
        if 0 <= idx < len(listed):
            return listed[idx]
    return None


# ----------------------------
# Shared transitions
# ----------------------------
async def show_events(ctx: Context, data: StateData,
                      stay: Step) -> Reply:
    events = await ctx.store.upcoming_events(limit=LIST_EVENTS)
    if not events:
        return Reply([Text("There are no upcoming events right now. "
                           "Please check back soon!")], stay, data)
    data = replace(data, listed_event_ids=[ev.id for ev in events])
    return Reply([events_list(events, "Here are our upcoming events:")],
                 Step.VIEWING_EVENTS, data)


async def show_event(ctx: Context, data: StateData, event_id: int,
                     stay: Step) -> Reply:
    ev = await ctx.store.active_event(event_id)
    if ev is None:
        return Reply([Text("Sorry, that event is not available.")],
                     stay, data)
    tickets = await ctx.store.ticket_types_for_event(ev.id)
    data = StateData(name=data.name, selected_event_id=ev.id)
    return Reply(event_details(ev, tickets), Step.VIEWING_EVENT_DETAILS,
                 data)


async def show_event_by_code(ctx: Context, data: StateData, code: str,
                             stay: Step) -> Reply:
    ev = await ctx.store.event_by_code(code)
    if ev is None:
        return Reply([Text(f"Sorry, event {code} is not available.")],
                     stay, data)
    return await show_event(ctx, data, ev.id, stay)


async def show_tickets(ctx: Context, data: StateData, stay: Step) -> Reply:
    tickets = await ctx.store.ticket_types_for_event(data.selected_event_id)
    if not tickets:
        return Reply([Text("Sorry, tickets are not available for this "
                           "event yet.")], stay, data)
    data = replace(data, listed_ticket_ids=[t.id for t in tickets])
    return Reply(ticket_buttons(tickets), Step.SELECTING_TICKET, data)


async def place_order(ctx: Context, data: StateData) -> Reply:
    if data.selected_event_id is None or data.selected_ticket_id is None:
        return Reply([Text("Your ticket selection expired. Please pick an "
                           "event again."), MENU],
                     Step.MAIN_MENU, StateData(name=data.name))
    user = await ctx.store.upsert_user(ctx.phone, data.full_name or data.name,
                                       data.email)
    try:
        result = await ctx.lifecycle.create_order(
            user.id, data.selected_event_id, data.selected_ticket_id,
            session_token=data.session_token,
        )
    except GatewayUnavailable:
        log.warning("order.gateway_unavailable", phone=ctx.phone)
        return Reply([Text("We couldn't reach the payment service. "
                           "Please send your email again to retry.")],
                     Step.AWAITING_EMAIL, data)

    if isinstance(result, Failure):
        if result.kind is ErrorKind.INVENTORY_EXHAUSTED:
            return Reply([Text("Sorry, this ticket type just sold out. "
                               "Please pick another one.")],
                         Step.VIEWING_EVENT_DETAILS,
                         StateData(name=data.name,
                                   selected_event_id=data.selected_event_id))
        return Reply([Text(f"Sorry, we couldn't create your order: "
                           f"{result.message}"), MENU],
                     Step.MAIN_MENU, StateData(name=data.name))

    return Reply([payment_link_message(result.order, result.pay_url)],
                 Step.MAIN_MENU, StateData())


# ----------------------------
# Step handlers
# ----------------------------
async def on_welcome(ctx: Context, data: StateData, text: str) -> Reply:
    greeting = "👋 Welcome to EventPass! Book tickets for the best " \
               "events right here on WhatsApp."
    messages: List[Message] = [Text(greeting)]
    events = await ctx.store.upcoming_events(limit=WELCOME_EVENTS)
    if events:
        messages.append(events_list(
            events, "Tap an event to see details, or tell us your name."
        ))
    messages.append(Text("What's your name?"))
    data = StateData(listed_event_ids=[ev.id for ev in events])
    return Reply(messages, Step.AWAITING_NAME, data)


async def on_awaiting_name(ctx: Context, data: StateData,
                           text: str) -> Reply:
    if text.lower().startswith("event_"):
        event_id = _pick(text.lower(), "event", data.listed_event_ids)
        if event_id is None:
            return Reply([Text("Invalid selection. Please pick an event "
                               "from the list or tell us your name.")],
                         Step.AWAITING_NAME, data)
        return await show_event(ctx, data, event_id, Step.AWAITING_NAME)
    name = text.strip()
    if len(name) < 2:
        return Reply([Text("Please enter a valid name "
                           "(at least 2 characters).")],
                     Step.AWAITING_NAME, data)
    await ctx.store.upsert_user(ctx.phone, name)
    body = f"Nice to meet you, {name}! What would you like to do?"
    return Reply([Choice(body, MENU.options)], Step.MAIN_MENU,
                 StateData(name=name))


async def on_main_menu(ctx: Context, data: StateData, text: str) -> Reply:
    lowered = text.lower()
    if lowered == "view_events" or "event" in lowered:
        return await show_events(ctx, data, Step.MAIN_MENU)
    if lowered == "support":
        return Reply([Text(ctx.support_text)], Step.MAIN_MENU, data)
    return Reply([MENU], Step.MAIN_MENU, data)


async def on_viewing_events(ctx: Context, data: StateData,
                            text: str) -> Reply:
    event_id = _pick(text.lower(), "event", data.listed_event_ids)
    if event_id is None:
        return Reply([Text("Invalid selection. Please choose an event "
                           "from the list.")], Step.VIEWING_EVENTS, data)
    return await show_event(ctx, data, event_id, Step.VIEWING_EVENTS)


async def on_viewing_event_details(ctx: Context, data: StateData,
                                   text: str) -> Reply:
    lowered = text.lower()
    if lowered in BUY_WORDS:
        return await show_tickets(ctx, data, Step.VIEWING_EVENT_DETAILS)
    if lowered in BACK_WORDS:
        return await show_events(ctx, data, Step.VIEWING_EVENT_DETAILS)
    return Reply([Choice("Would you like to buy a ticket?", EVENT_ACTIONS)],
                 Step.VIEWING_EVENT_DETAILS, data)


async def on_selecting_ticket(ctx: Context, data: StateData,
                              text: str) -> Reply:
    ticket_id = _pick(text.lower(), "ticket", data.listed_ticket_ids)
    tt = None
    if ticket_id is not None:
        tt = await ctx.store.get(TicketType, ticket_id)
    if tt is None or tt.event_id != data.selected_event_id:
        reply = await show_tickets(ctx, data, Step.SELECTING_TICKET)
        reply.messages.insert(0, Text("Invalid selection. Please pick a "
                                      "ticket type."))
        return reply
    if tt.available_quantity <= 0:
        return Reply([Text(f"Sorry, {tt.name} tickets are sold out.")],
                     Step.SELECTING_TICKET, data)

    data = replace(data, selected_ticket_id=tt.id,
                   selected_ticket_price=tt.price,
                   session_token=generate_session_token())
    picked = f"Great choice! {tt.name} ({format_amount(tt.price)})."

    if ctx.booking_mode == "form":
        short_id = generate_short_id()
        target = f"{ctx.signup_form_url}?session={data.session_token}"
        await ctx.kv.set(f"short:{short_id}", target, ttl=ctx.short_link_ttl)
        link = f"{ctx.base_url}/s/{short_id}"
        data = replace(data, signup_link=link)
        return Reply([Text(f"{picked}\n\nPlease complete your details "
                           f"here:\n{link}")],
                     Step.AWAITING_FORM_SUBMIT, data)

    return Reply([Text(f"{picked}\n\nPlease enter your full name.")],
                 Step.AWAITING_FULL_NAME, data)


async def on_awaiting_full_name(ctx: Context, data: StateData,
                                text: str) -> Reply:
    name = text.strip()
    if len(name) < 2:
        return Reply([Text("Please enter your full name "
                           "(at least 2 characters).")],
                     Step.AWAITING_FULL_NAME, data)
    return Reply([Text("Please enter your phone number.")],
                 Step.AWAITING_PHONE, replace(data, full_name=name))


async def on_awaiting_phone(ctx: Context, data: StateData,
                            text: str) -> Reply:
    if len(digits_only(text)) < 10:
        return Reply([Text("Please enter a valid phone number "
                           "(at least 10 digits).")],
                     Step.AWAITING_PHONE, data)
    return Reply([Text("Please enter your email address.")],
                 Step.AWAITING_EMAIL,
                 replace(data, contact_phone=normalize_phone(text)))


async def on_awaiting_email(ctx: Context, data: StateData,
                            text: str) -> Reply:
    email = text.strip()
    if "@" not in email or "." not in email:
        return Reply([Text("Please enter a valid email address.")],
                     Step.AWAITING_EMAIL, data)
    return await place_order(ctx, replace(data, email=email))


async def on_awaiting_form_submit(ctx: Context, data: StateData,
                                  text: str) -> Reply:
    if text.lower() in FORM_WORDS:
        return Reply([], Step.AWAITING_FORM_SUBMIT, data)
    link = data.signup_link or "the link above"
    return Reply([Text(f"Please complete your details using {link} "
                       "to continue, or type MENU to start over.")],
                 Step.AWAITING_FORM_SUBMIT, data)


HANDLERS: Dict[Step, Handler] = {
    Step.WELCOME: on_welcome,
    Step.AWAITING_NAME: on_awaiting_name,
    Step.MAIN_MENU: on_main_menu,
    Step.VIEWING_EVENTS: on_viewing_events,
    Step.VIEWING_EVENT_DETAILS: on_viewing_event_details,
    Step.SELECTING_TICKET: on_selecting_ticket,
    Step.AWAITING_FULL_NAME: on_awaiting_full_name,
    Step.AWAITING_PHONE: on_awaiting_phone,
    Step.AWAITING_EMAIL: on_awaiting_email,
    Step.AWAITING_FORM_SUBMIT: on_awaiting_form_submit,
}

_missing = set(Step) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"steps without a handler: {sorted(_missing)}")
