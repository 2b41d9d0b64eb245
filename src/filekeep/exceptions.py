"""Custom exception hierarchy for the filekeep lifecycle engine.

Every error carries a stable :class:`ErrorKind` and a ``public_message``
that is safe to hand to untrusted callers.  The full message (``str(exc)``)
may contain internal detail and is meant for logs only.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Stable error categories exposed to callers."""

    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    PRECONDITION_FAILED = "precondition_failed"
    STORE_UNAVAILABLE = "store_unavailable"
    PARTIAL_FAILURE = "partial_failure"


class FileKeepError(Exception):
    """Base exception for all filekeep errors."""

    kind: ErrorKind = ErrorKind.PRECONDITION_FAILED
    default_public_message = "Request could not be completed"

    def __init__(self, message: str = "", *, public_message: str | None = None) -> None:
        super().__init__(message or self.default_public_message)
        self._public_message = public_message

    @property
    def public_message(self) -> str:
        if self._public_message is not None:
            return self._public_message
        return str(self)


class NotFoundError(FileKeepError):
    """Raised when a file, folder, lineage or link does not exist."""

    kind = ErrorKind.NOT_FOUND
    default_public_message = "Resource not found"


class InvalidArgumentError(FileKeepError, ValueError):
    """Raised for missing or malformed ids, resource types and permission tiers."""

    kind = ErrorKind.INVALID_ARGUMENT
    default_public_message = "Invalid argument"


class PreconditionFailedError(FileKeepError):
    """Raised when an item is not in the state the operation requires."""

    kind = ErrorKind.PRECONDITION_FAILED
    default_public_message = "Precondition failed"


class ConflictError(PreconditionFailedError):
    """Raised when a compare-and-swap loop gives up after repeated conflicts."""


class LinkAccessError(PreconditionFailedError):
    """Raised when a shareable link cannot be used.

    ``reason`` is one of ``"expired"``, ``"exhausted"`` or ``"password"``.
    The public message never says which check failed for a password miss.
    """

    def __init__(self, message: str, *, reason: str, public_message: str) -> None:
        super().__init__(message, public_message=public_message)
        self.reason = reason


class StoreUnavailableError(FileKeepError):
    """Raised on storage backend failures (DB connection, disk I/O, etc.)."""

    kind = ErrorKind.STORE_UNAVAILABLE
    default_public_message = "Storage temporarily unavailable"

    @property
    def public_message(self) -> str:
        return self._public_message or self.default_public_message


class ConditionFailedError(FileKeepError):
    """Raised by a store when a conditional write does not match the stored revision."""

    kind = ErrorKind.PRECONDITION_FAILED
    default_public_message = "Concurrent modification detected"


class PartialFailureError(FileKeepError):
    """Raised when a multi-record operation was only partly applied.

    ``applied`` and ``failed`` hold the ids on each side.  Retrying the
    operation is safe: items already stamped are skipped.
    """

    kind = ErrorKind.PARTIAL_FAILURE
    default_public_message = "Operation partially applied; retry to complete it"

    def __init__(
        self,
        message: str,
        *,
        applied: list[str] | None = None,
        failed: list[str] | None = None,
    ) -> None:
        super().__init__(message, public_message=self.default_public_message)
        self.applied = list(applied or [])
        self.failed = list(failed or [])
