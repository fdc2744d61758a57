from .engine import ConversationEngine, RESET_KEYWORDS
from .handlers import HANDLERS, Reply
from .steps import Step, StateData

__all__ = ["ConversationEngine", "RESET_KEYWORDS", "HANDLERS", "Reply",
           "Step", "StateData"]
