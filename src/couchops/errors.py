"""Error taxonomy for operations.

Validation errors are raised synchronously when an operation is built or
submitted. Everything else is delivered on the terminal ``Outcome`` of the
operation that produced it.
"""

from __future__ import annotations

from enum import StrEnum


class CouchError(Exception):
    """Base class for every error raised or reported by couchops."""

    status_code: int | None = None


class ValidationError(CouchError, ValueError):
    """Caller misuse detected before anything is sent over the wire."""


class TransportErrorKind(StrEnum):
    """Why the transport gave up on a request."""

    CONNECTION = "connection"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class TransportError(CouchError):
    """The request did not produce a complete HTTP response."""

    def __init__(self, message: str, kind: TransportErrorKind = TransportErrorKind.CONNECTION):
        """Initialize with a message and the failure kind."""
        super().__init__(message)
        self.kind = kind


class OperationCancelled(TransportError):
    """The operation was cancelled through its handle."""

    def __init__(self, message: str = "operation cancelled") -> None:
        """Initialize a cancellation error."""
        super().__init__(message, TransportErrorKind.CANCELLED)


class OperationTimeout(TransportError):
    """The operation deadline expired or the transport timed out."""

    def __init__(self, message: str = "operation timed out") -> None:
        """Initialize a timeout error."""
        super().__init__(message, TransportErrorKind.TIMEOUT)


class HTTPStatusError(CouchError):
    """The server answered with a non-success status code."""

    def __init__(
        self,
        status_code: int,
        error: str | None = None,
        reason: str | None = None,
        *,
        method: str | None = None,
        url: str | None = None,
    ) -> None:
        """Initialize from the status code and the decoded error body."""
        self.status_code = status_code
        self.error = error
        self.reason = reason
        self.method = method
        self.url = url
        super().__init__(str(self))

    def __str__(self) -> str:
        parts = [str(self.status_code)]
        if self.error:
            parts.append(self.error)
        if self.reason:
            parts.append(f"({self.reason})")
        if self.method and self.url:
            parts.append(f"{self.method} {self.url}")
        return " ".join(parts)


class NotFound(HTTPStatusError):
    """404 Not Found."""


class DocumentNotFound(NotFound):
    """The requested document does not exist or has been deleted."""


class ResourceNotFound(NotFound):
    """A database, design document, view or index does not exist."""


class Conflict(HTTPStatusError):
    """409 Conflict or 412 Precondition Failed: revision mismatch or existing resource."""


class Unauthorized(HTTPStatusError):
    """401 Unauthorized."""


class Forbidden(Unauthorized):
    """403 Forbidden."""


class RequestRejected(HTTPStatusError):
    """Any other 4xx response, e.g. 400 Bad Request for an invalid selector."""


class ServerError(HTTPStatusError):
    """5xx response, or a response the server should never have produced."""


class DecodingError(CouchError):
    """The response body did not match the expected shape."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialize with a message and the status code of the response, if any."""
        super().__init__(message)
        self.status_code = status_code
