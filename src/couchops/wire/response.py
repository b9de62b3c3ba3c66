"""Map HTTP responses onto typed results and the error taxonomy."""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from couchops.errors import (
    Conflict,
    DecodingError,
    DocumentNotFound,
    Forbidden,
    HTTPStatusError,
    RequestRejected,
    ResourceNotFound,
    ServerError,
    Unauthorized,
)
from couchops.models.operations import (
    CreateDatabase,
    CreateQueryIndex,
    DeleteDatabase,
    DeleteDocument,
    DeleteQueryIndex,
    FindDocuments,
    GetDocument,
    Operation,
    PutDocument,
    QueryView,
)
from couchops.models.results import (
    DatabaseResult,
    DeleteResult,
    Document,
    IndexResult,
    Result,
    RowsResult,
    WriteResult,
)
from couchops.wire.stream import RowStreamParser

logger = logging.getLogger(__name__)

RowCallback = Callable[[dict[str, Any]], Awaitable[None] | None]

_STATUS_ERRORS: dict[int, type[HTTPStatusError]] = {
    401: Unauthorized,
    403: Forbidden,
    409: Conflict,
    412: Conflict,
}

# Reasons CouchDB gives when the database itself is missing.
_MISSING_DATABASE_REASONS = ("database does not exist", "no_db_file")


def _decode_error_body(body: bytes) -> tuple[str | None, str | None]:
    """Pull ``error`` and ``reason`` out of a CouchDB error body, best effort."""
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None, body.decode("utf-8", "replace").strip() or None
    if not isinstance(data, dict):
        return None, None
    error, reason = data.get("error"), data.get("reason")
    return (
        str(error) if error is not None else None,
        str(reason) if reason is not None else None,
    )


def _names_missing_database(reason: str | None) -> bool:
    return reason is not None and any(
        marker in reason.lower() for marker in _MISSING_DATABASE_REASONS
    )


class ResponseParser:
    """Parses status and body into results, rows, or typed errors."""

    def error_for(
        self,
        operation: Operation,
        status_code: int,
        body: bytes,
        *,
        method: str | None = None,
        url: str | None = None,
    ) -> HTTPStatusError:
        """Build the error for a non-success response."""
        error, reason = _decode_error_body(body)
        if status_code == 404:
            cls: type[HTTPStatusError] = (
                DocumentNotFound
                if type(operation).document_scoped and not _names_missing_database(reason)
                else ResourceNotFound
            )
        elif status_code >= 500:
            cls = ServerError
        else:
            cls = _STATUS_ERRORS.get(status_code, RequestRejected)
        logger.debug("%s %s answered %d (%s)", method, url, status_code, error)
        return cls(status_code, error, reason, method=method, url=url)

    def parse_body(self, operation: Operation, status_code: int, body: bytes) -> Result:
        """Decode a whole-body success response into its typed result."""
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise DecodingError(
                f"response body is not valid JSON: {exc}", status_code=status_code
            ) from exc
        if not isinstance(data, dict):
            raise DecodingError(
                f"expected a JSON object, got {type(data).__name__}", status_code=status_code
            )

        try:
            match operation:
                case GetDocument():
                    return Document.from_body(data)
                case PutDocument():
                    return WriteResult(
                        id=data["id"],
                        rev=data["rev"],
                        status_code=status_code,
                        ok=data.get("ok", True),
                    )
                case DeleteDocument() | DeleteQueryIndex():
                    return DeleteResult(
                        status_code=status_code,
                        id=data.get("id"),
                        rev=data.get("rev"),
                        ok=data.get("ok", True),
                    )
                case CreateQueryIndex():
                    return IndexResult(
                        result=data["result"], id=data.get("id"), name=data.get("name")
                    )
                case CreateDatabase() | DeleteDatabase():
                    return DatabaseResult(status_code=status_code, ok=data.get("ok", True))
                case QueryView() | FindDocuments():
                    raise DecodingError("row responses must be parsed with stream_rows()")
        except (KeyError, TypeError, PydanticValidationError) as exc:
            raise DecodingError(
                f"unexpected {operation.kind} response shape: {exc!r}", status_code=status_code
            ) from exc
        raise AssertionError(f"unhandled operation kind {operation.kind}")

    async def stream_rows(
        self,
        operation: QueryView | FindDocuments,
        chunks: AsyncIterator[bytes],
        on_row: Callable[[dict[str, Any]], Awaitable[None]],
    ) -> RowsResult:
        """Feed body chunks through the row parser, awaiting ``on_row`` per row in order.

        On a decoding failure the rows already handed to ``on_row`` stay
        delivered; the raised ``DecodingError`` reports how many there were.
        """
        row_field = type(operation).row_field
        assert row_field is not None
        parser = RowStreamParser(row_field)
        async for chunk in chunks:
            for row in parser.feed(chunk):
                await on_row(_as_row(row, parser))
        for row in parser.close():
            await on_row(_as_row(row, parser))
        return _rows_result(parser)


def _as_row(row: Any, parser: RowStreamParser) -> dict[str, Any]:
    if not isinstance(row, dict):
        raise DecodingError(
            f"row {parser.rows_parsed} is a {type(row).__name__}, not an object"
        )
    return row


def _rows_result(parser: RowStreamParser) -> RowsResult:
    members = parser.members
    try:
        return RowsResult(
            rows_delivered=parser.rows_parsed,
            total_rows=members.get("total_rows"),
            offset=members.get("offset"),
            bookmark=members.get("bookmark"),
            warning=members.get("warning"),
            execution_stats=members.get("execution_stats"),
        )
    except PydanticValidationError as exc:
        raise DecodingError(f"unexpected row response members: {exc}") from exc


async def call_row_callback(callback: RowCallback, row: dict[str, Any]) -> None:
    """Invoke a plain or coroutine row callback."""
    result = callback(row)
    if inspect.isawaitable(result):
        await result
