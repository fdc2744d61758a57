from .orm import (
    Base, AdminUser, ConversationState, Event, Order, TicketType, User,
    ADMIN_ROLES, ORDER_STATUSES, TERMINAL_STATUSES,
)
from .store import Store

__all__ = [
    "Base", "AdminUser", "ConversationState", "Event", "Order",
    "TicketType", "User", "ADMIN_ROLES", "ORDER_STATUSES",
    "TERMINAL_STATUSES", "Store",
]
