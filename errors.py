from dataclasses import dataclass
from typing import Any, Optional


class MovieNoteError(Exception):
    reason = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason)


class Unauthenticated(MovieNoteError):
    reason = "unauthenticated"


class InvalidCredentials(MovieNoteError):
    reason = "invalid_credentials"


class AlreadyExists(MovieNoteError):
    reason = "already_exists"


class RemoteUnavailable(MovieNoteError):
    reason = "remote_unavailable"


class NotFound(MovieNoteError):
    reason = "not_found"


class Busy(MovieNoteError):
    """The same operation on the same key is already in flight."""
    reason = "busy"


class InvalidInput(MovieNoteError):
    reason = "invalid_input"


class Cancelled(MovieNoteError):
    """The result arrived after sign-out or teardown and was not applied."""
    reason = "cancelled"


@dataclass(frozen=True)
class Result:
    ok: bool
    value: Any = None
    error: Optional[MovieNoteError] = None

    @classmethod
    def success(cls, value=None) -> "Result":
        return cls(True, value)

    @classmethod
    def failure(cls, error: MovieNoteError) -> "Result":
        return cls(False, None, error)

    @property
    def reason(self) -> Optional[str]:
        return self.error.reason if self.error else None

    def __bool__(self):
        return self.ok
