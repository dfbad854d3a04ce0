"""Error types for the intent layer.

Transport failures carry an ``ErrorKind`` so callers can tell tolerated
duplicates (user in use, already in the room) and the forbidden-join fallback
apart from fatal failures without inspecting message text.
"""

from __future__ import annotations

from enum import Enum

from .constants import (
    M_BAD_JSON,
    M_FORBIDDEN,
    M_INVALID_USERNAME,
    M_LIMIT_EXCEEDED,
    M_MISSING_TOKEN,
    M_NOT_FOUND,
    M_NOT_JSON,
    M_UNKNOWN_TOKEN,
    M_USER_IN_USE,
)


class ErrorKind(str, Enum):
    FORBIDDEN = "forbidden"
    USER_IN_USE = "user_in_use"
    ALREADY_IN_ROOM = "already_in_room"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNKNOWN_TOKEN = "unknown_token"
    BAD_REQUEST = "bad_request"
    NETWORK = "network"
    UNKNOWN = "unknown"


_ERRCODE_KINDS: dict[str, ErrorKind] = {
    M_FORBIDDEN: ErrorKind.FORBIDDEN,
    M_USER_IN_USE: ErrorKind.USER_IN_USE,
    M_NOT_FOUND: ErrorKind.NOT_FOUND,
    M_LIMIT_EXCEEDED: ErrorKind.RATE_LIMITED,
    M_UNKNOWN_TOKEN: ErrorKind.UNKNOWN_TOKEN,
    M_MISSING_TOKEN: ErrorKind.UNKNOWN_TOKEN,
    M_BAD_JSON: ErrorKind.BAD_REQUEST,
    M_NOT_JSON: ErrorKind.BAD_REQUEST,
    M_INVALID_USERNAME: ErrorKind.BAD_REQUEST,
}

_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNKNOWN_TOKEN,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    429: ErrorKind.RATE_LIMITED,
}


def classify_error(
    status: int | None, errcode: str | None, message: str | None = None
) -> ErrorKind:
    """Map a homeserver error response to an ErrorKind."""
    text = (message or "").lower()
    # Homeservers report "already in the room" as a plain M_FORBIDDEN.
    if "is already in the room" in text:
        return ErrorKind.ALREADY_IN_ROOM

    if errcode:
        kind = _ERRCODE_KINDS.get(errcode.strip().upper())
        if kind is not None:
            return kind

    if status is not None:
        return _STATUS_KINDS.get(int(status), ErrorKind.UNKNOWN)
    return ErrorKind.UNKNOWN


class MatrixRequestError(Exception):
    """A failed request to the homeserver."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        errcode: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.errcode = errcode
        self.http_status = http_status

    def __str__(self) -> str:
        if self.errcode:
            return f"{self.errcode}: {self.message}"
        return self.message


class IntentError(Exception):
    """A precondition (registration or join) could not be satisfied."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage}: {cause}")
        self.stage = stage
        self.cause = cause

    @property
    def kind(self) -> ErrorKind:
        if isinstance(self.cause, (MatrixRequestError, IntentError)):
            return self.cause.kind
        return ErrorKind.UNKNOWN
