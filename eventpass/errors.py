from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    TICKET_NOT_FOUND = "ticket_not_found"
    ALREADY_TERMINAL = "already_terminal"
    ALREADY_SCANNED = "already_scanned"
    INVENTORY_EXHAUSTED = "inventory_exhausted"
    PAYMENT_INCOMPLETE = "payment_incomplete"
    INVALID_CREDENTIAL = "invalid_credential"
    INVALID_INPUT = "invalid_input"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


_HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TICKET_NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.GATEWAY_UNAVAILABLE: 500,
}


@dataclass(frozen=True)
class Failure:
    """Business-level outcome that callers branch on (never raised)."""
    kind: ErrorKind
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self.kind, 400)

    def to_body(self) -> Dict[str, Any]:
        body = {"success": False, "message": self.message,
                "kind": self.kind.value}
        body.update(self.data)
        return body


class GatewayUnavailable(Exception):
    """An external collaborator (payment gateway, messaging API) failed."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message
