from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    EXHAUSTED = "EXHAUSTED"
    BOOK_UNAVAILABLE = "BOOK_UNAVAILABLE"
    CODE_GENERATION_FAILED = "CODE_GENERATION_FAILED"
    INVALID_STATE = "INVALID_STATE"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    FORBIDDEN = "FORBIDDEN"
    UNAVAILABLE = "UNAVAILABLE"


HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INACTIVE: 400,
    ErrorKind.EXPIRED: 410,
    ErrorKind.EXHAUSTED: 409,
    ErrorKind.BOOK_UNAVAILABLE: 409,
    ErrorKind.CODE_GENERATION_FAILED: 503,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.AMOUNT_MISMATCH: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UNAVAILABLE: 503,
}

FORBIDDEN_MESSAGE = "You do not have access to this book"


class CheckoutError(Exception):
    """A classified, caller-recoverable failure of a checkout operation."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or kind.value.replace("_", " ").lower()
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]


class UnavailableError(CheckoutError):
    """Storage or another backing service failed; retry with backoff."""

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(ErrorKind.UNAVAILABLE, message)


def forbidden() -> CheckoutError:
    # same response whether the user never bought the book or payment is pending
    return CheckoutError(ErrorKind.FORBIDDEN, FORBIDDEN_MESSAGE)
