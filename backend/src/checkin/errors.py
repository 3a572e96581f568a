from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class CheckinError(Exception):
    """Base error with a stable code and a caller-safe message."""

    code: ErrorCode

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(CheckinError):
    code = ErrorCode.INVALID_INPUT


class EventNotFoundError(CheckinError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, event_id: str) -> None:
        super().__init__("Event not found")
        self.event_id = event_id


class UserNotFoundError(CheckinError):
    code = ErrorCode.USER_NOT_FOUND

    def __init__(self, email: str) -> None:
        super().__init__("User not found")
        self.email = email


class StoreUnavailableError(CheckinError):
    code = ErrorCode.STORE_UNAVAILABLE

    def __init__(self, message: str = "Store unavailable") -> None:
        super().__init__(message)
