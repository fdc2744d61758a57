from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from . import config
from .errors import GatewayUnavailable
from .infra.logging import get_logger

log = get_logger("messaging")

# (id, title) for buttons, (id, title, description) for list rows
Option = Tuple[str, str]
Row = Tuple[str, str, str]

MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_LIST_ROWS = 10
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72


# ----------------------------
# Outgoing messages
# ----------------------------
@dataclass(frozen=True)
class Text:
    body: str


@dataclass(frozen=True)
class Image:
    png: bytes
    caption: str = ""


@dataclass(frozen=True)
class Choice:
    """Up to 3 options render as reply buttons, more as a list."""
    body: str
    options: Tuple[Option, ...]
    button: str = "Select"


@dataclass(frozen=True)
class ListChoice:
    body: str
    button: str
    rows: Tuple[Row, ...]
    title: str = "Options"


Message = Union[Text, Image, Choice, ListChoice]


@dataclass
class InboundMessage:
    phone: str
    text: str
    message_id: Optional[str] = None
    profile_name: Optional[str] = None


# ----------------------------
# Channel interface
# ----------------------------
class NotificationChannel(ABC):

    @abstractmethod
    async def send_text(self, phone: str, body: str) -> None: ...

    @abstractmethod
    async def send_image(self, phone: str, png: bytes,
                         caption: str = "") -> None: ...

    @abstractmethod
    async def send_buttons(self, phone: str, body: str,
                           options: Sequence[Option]) -> None: ...

    @abstractmethod
    async def send_list(self, phone: str, body: str, button: str,
                        rows: Sequence[Row],
                        title: str = "Options") -> None: ...

    async def send_structured_choice(self, phone: str, body: str,
                                     options: Sequence[Option],
                                     button: str = "Select") -> None:
        if len(options) <= MAX_BUTTONS:
            await self.send_buttons(phone, body, options)
        else:
            await self.send_list(
                phone, body, button, [(oid, t, "") for oid, t in options]
            )

    async def deliver(self, phone: str, msg: Message) -> None:
        if isinstance(msg, Text):
            await self.send_text(phone, msg.body)
        elif isinstance(msg, Image):
            await self.send_image(phone, msg.png, msg.caption)
        elif isinstance(msg, Choice):
            await self.send_structured_choice(
                phone, msg.body, msg.options, msg.button
            )
        elif isinstance(msg, ListChoice):
            await self.send_list(phone, msg.body, msg.button, msg.rows,
                                 msg.title)
        else:
            raise TypeError(f"unsupported message: {msg!r}")


def _as_text(body: str, titles: Sequence[str]) -> str:
    return body + "\n\n" + "\n".join(f"• {t}" for t in titles)


# ----------------------------
# WhatsApp Cloud API
# ----------------------------
class WhatsAppCloudChannel(NotificationChannel):

    def __init__(self, http: httpx.AsyncClient,
                 phone_number_id: str = config.WHATSAPP_PHONE_NUMBER_ID,
                 access_token: str = config.WHATSAPP_ACCESS_TOKEN,
                 api_version: str = config.WHATSAPP_API_VERSION) -> None:
        self.http = http
        self.base = (
            f"https://graph.facebook.com/{api_version}/{phone_number_id}"
        )
        self.headers = {"Authorization": f"Bearer {access_token}"}

    async def _post(self, path: str, **kw) -> Dict[str, Any]:
        try:
            resp = await self.http.post(
                f"{self.base}{path}", headers=self.headers, **kw
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            log.error("whatsapp.http_error", path=path,
                      status=e.response.status_code,
                      body=e.response.text[:500])
            raise GatewayUnavailable("whatsapp", str(e)) from e
        except (httpx.HTTPError, ValueError) as e:
            log.error("whatsapp.unreachable", path=path, error=str(e))
            raise GatewayUnavailable("whatsapp", str(e)) from e

    async def _message(self, phone: str, kind: str,
                       content: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post("/messages", json={
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": f"+{phone}",
            "type": kind,
            kind: content,
        })

    async def send_text(self, phone: str, body: str) -> None:
        await self._message(phone, "text", {"body": body})

    async def send_image(self, phone: str, png: bytes,
                         caption: str = "") -> None:
        uploaded = await self._post(
            "/media",
            data={"messaging_product": "whatsapp", "type": "image/png"},
            files={"file": ("qrcode.png", png, "image/png")},
        )
        await self._message(phone, "image", {
            "id": uploaded["id"], "caption": caption or "Your QR Code",
        })

    async def send_buttons(self, phone: str, body: str,
                           options: Sequence[Option]) -> None:
        buttons = [
            {"type": "reply",
             "reply": {"id": oid, "title": title[:MAX_BUTTON_TITLE]}}
            for oid, title in list(options)[:MAX_BUTTONS]
        ]
        try:
            await self._message(phone, "interactive", {
                "type": "button",
                "body": {"text": body},
                "action": {"buttons": buttons},
            })
        except GatewayUnavailable:
            # plain text still gets the options across
            await self.send_text(phone, _as_text(body, [t for _, t in options]))

    async def send_list(self, phone: str, body: str, button: str,
                        rows: Sequence[Row], title: str = "Options") -> None:
        section = {
            "title": title[:MAX_ROW_TITLE],
            "rows": [
                {"id": rid, "title": rtitle[:MAX_ROW_TITLE],
                 "description": (desc or "")[:MAX_ROW_DESCRIPTION]}
                for rid, rtitle, desc in list(rows)[:MAX_LIST_ROWS]
            ],
        }
        try:
            await self._message(phone, "interactive", {
                "type": "list",
                "body": {"text": body},
                "footer": {"text": "Select an option from the list"},
                "action": {"button": button[:MAX_BUTTON_TITLE],
                           "sections": [section]},
            })
        except GatewayUnavailable:
            await self.send_text(phone, _as_text(body, [r[1] for r in rows]))


# ----------------------------
# Log / outbox channel (dev, tests)
# ----------------------------
@dataclass
class Sent:
    phone: str
    kind: str
    body: str
    options: List[str] = field(default_factory=list)


class LogChannel(NotificationChannel):
    """Logs instead of sending; keeps an outbox for inspection."""

    def __init__(self, fail: bool = False) -> None:
        self.outbox: List[Sent] = []
        self.fail = fail

    def _record(self, sent: Sent) -> None:
        if self.fail:
            raise GatewayUnavailable("log", "delivery disabled")
        self.outbox.append(sent)
        log.info("message.sent", phone=sent.phone, kind=sent.kind,
                 body=sent.body[:80], options=sent.options)

    async def send_text(self, phone: str, body: str) -> None:
        self._record(Sent(phone, "text", body))

    async def send_image(self, phone: str, png: bytes,
                         caption: str = "") -> None:
        self._record(Sent(phone, "image", caption))

    async def send_buttons(self, phone: str, body: str,
                           options: Sequence[Option]) -> None:
        self._record(Sent(phone, "buttons", body, [oid for oid, _ in options]))

    async def send_list(self, phone: str, body: str, button: str,
                        rows: Sequence[Row], title: str = "Options") -> None:
        self._record(Sent(phone, "list", body, [r[0] for r in rows]))

    def sent_to(self, phone: str) -> List[Sent]:
        return [s for s in self.outbox if s.phone == phone]


def new_channel(http: Optional[httpx.AsyncClient] = None
                ) -> NotificationChannel:
    if config.WHATSAPP_PHONE_NUMBER_ID and config.WHATSAPP_ACCESS_TOKEN:
        if http is None:
            raise RuntimeError("WhatsAppCloudChannel requires http=AsyncClient")
        return WhatsAppCloudChannel(http)
    log.warning("whatsapp.credentials_missing", fallback="log")
    return LogChannel()


# ----------------------------
# Inbound webhook payloads
# ----------------------------
def _message_text(msg: Dict[str, Any]) -> str:
    kind = msg.get("type")
    if kind == "text":
        return (msg.get("text") or {}).get("body", "")
    if kind == "button":
        button = msg.get("button") or {}
        return button.get("payload") or button.get("text", "")
    if kind == "interactive":
        inter = msg.get("interactive") or {}
        reply = inter.get("button_reply") or inter.get("list_reply") or {}
        return reply.get("id", "")
    return ""


def parse_inbound(payload: Dict[str, Any]) -> List[InboundMessage]:
    """Flatten a WhatsApp Cloud webhook body into inbound messages.

    Status callbacks (delivered/read) carry no messages and yield nothing.
    """
    out: List[InboundMessage] = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            names = {
                c.get("wa_id"): (c.get("profile") or {}).get("name")
                for c in value.get("contacts") or []
            }
            for msg in value.get("messages") or []:
                sender = msg.get("from")
                if not sender:
                    continue
                out.append(InboundMessage(
                    phone=sender,
                    text=_message_text(msg).strip(),
                    message_id=msg.get("id"),
                    profile_name=names.get(sender),
                ))
    return out
