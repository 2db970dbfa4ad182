"""Error types raised by the hold engine, pricing ledger and admin session."""

from enum import Enum


class ErrorCode(Enum):
    TICKETS_UNAVAILABLE = "TICKETS_UNAVAILABLE"
    NOT_FOUND = "NOT_FOUND"
    STORAGE_ERROR = "STORAGE_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    ADMIN_AUTH_REQUIRED = "ADMIN_AUTH_REQUIRED"


class LotteryError(Exception):
    """Base error with a code, a user-safe message and an HTTP status."""

    code = ErrorCode.INVALID_INPUT
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict:
        return {"status": "error", "code": self.code.value, "message": self.message}


class ConflictError(LotteryError):
    """Raised when requested tickets are already sold or actively held."""

    code = ErrorCode.TICKETS_UNAVAILABLE
    status_code = 409

    def __init__(self, tickets):
        self.tickets = sorted(tickets)
        listed = ", ".join(str(t) for t in self.tickets)
        noun = "Ticket" if len(self.tickets) == 1 else "Tickets"
        verb = "is" if len(self.tickets) == 1 else "are"
        super().__init__(f"{noun} {listed} {verb} no longer available")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["tickets"] = self.tickets
        return data


class NotFoundError(LotteryError):
    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class StorageError(LotteryError):
    """Transient persistence failure. Nothing was written; safe to retry."""

    code = ErrorCode.STORAGE_ERROR
    status_code = 503

    def __init__(self, message: str = "The ticket service is temporarily unavailable, try again later"):
        super().__init__(message)


class ValidationError(LotteryError):
    code = ErrorCode.INVALID_INPUT
    status_code = 400

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message)


class AuthenticationError(LotteryError):
    code = ErrorCode.ADMIN_AUTH_REQUIRED
    status_code = 401

    def __init__(self, message: str = "Admin authentication required"):
        super().__init__(message)
