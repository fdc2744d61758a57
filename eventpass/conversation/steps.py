from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional


class Step(str, Enum):
    WELCOME = "welcome"
    AWAITING_NAME = "awaiting_name"
    MAIN_MENU = "main_menu"
    VIEWING_EVENTS = "viewing_events"
    VIEWING_EVENT_DETAILS = "viewing_event_details"
    SELECTING_TICKET = "selecting_ticket"
    AWAITING_FULL_NAME = "awaiting_full_name"
    AWAITING_PHONE = "awaiting_phone"
    AWAITING_EMAIL = "awaiting_email"
    AWAITING_FORM_SUBMIT = "awaiting_form_submit"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Step":
        try:
            return cls(value)
        except ValueError:
            return cls.WELCOME


@dataclass
class StateData:
    """Slots collected while walking the purchase dialogue."""
    name: Optional[str] = None
    listed_event_ids: List[int] = field(default_factory=list)
    selected_event_id: Optional[int] = None
    listed_ticket_ids: List[int] = field(default_factory=list)
    selected_ticket_id: Optional[int] = None
    selected_ticket_price: Optional[int] = None
    session_token: Optional[str] = None
    signup_link: Optional[str] = None
    full_name: Optional[str] = None
    contact_phone: Optional[str] = None
    email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items()
                if v is not None and v != []}

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "StateData":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (raw or {}).items() if k in known})
