"""Incremental parsing of row-array responses.

View and find responses are one JSON object holding a potentially large
array (``rows`` or ``docs``) next to a few scalar members. The parser is fed
raw byte chunks as they arrive, hands out each array element as soon as it
is complete, and discards consumed input so the whole body is never held in
memory at once.
"""

import codecs
import json
import logging
from enum import Enum, auto
from typing import Any

from couchops.errors import DecodingError

logger = logging.getLogger(__name__)

_WHITESPACE = " \t\n\r"
# Characters that may open a JSON value.
_VALUE_START = '{["-0123456789tfnNI'
# Numbers and literals run until one of these.
_SCALAR_END = _WHITESPACE + ",:]}"


class _State(Enum):
    START = auto()
    KEY = auto()
    COLON = auto()
    VALUE = auto()
    MEMBER_END = auto()
    ROW = auto()
    ROW_END = auto()
    DONE = auto()


class RowStreamParser:
    """Push parser for ``{"<row_field>": [row, ...], ...}`` bodies.

    ``feed()`` returns the rows completed by that chunk, in order. ``close()``
    must be called once the transport is exhausted; it raises
    ``DecodingError`` if the body was truncated or malformed. Malformed input
    is reported as soon as it is seen. When a chunk completes some rows and
    then breaks, those rows are returned first and the error is raised by the
    next ``feed()`` or ``close()``. Rows returned before an error are complete
    and valid.
    """

    def __init__(self, row_field: str) -> None:
        """Initialize for a body whose row array lives under ``row_field``."""
        self.row_field = row_field
        self.members: dict[str, Any] = {}
        self.rows_parsed = 0
        self._decoder = json.JSONDecoder()
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._buf = ""
        self._pos = 0
        self._state = _State.START
        self._key: str | None = None
        self._seen_rows = False
        self._consumed = 0
        self._failure: DecodingError | None = None
        # Scan progress through the pending value, relative to self._pos.
        self._scan_offset = 0
        self._scan_depth = 0
        self._scan_in_string = False
        self._scan_escaped = False

    @property
    def done(self) -> bool:
        """Whether the closing brace of the top-level object has been read."""
        return self._state is _State.DONE

    def feed(self, chunk: bytes) -> list[Any]:
        """Consume a chunk of the body and return the rows it completed."""
        if self._failure is not None:
            raise self._failure
        try:
            text = self._utf8.decode(chunk)
        except UnicodeDecodeError as exc:
            raise self._error(f"response is not valid UTF-8: {exc}") from exc
        self._buf += text
        rows: list[Any] = []
        try:
            self._advance(rows, eof=False)
        except DecodingError as exc:
            if not rows:
                raise
            self._failure = exc
        self._compact()
        return rows

    def close(self) -> list[Any]:
        """Signal end of input; returns any final rows or raises on bad input."""
        if self._failure is not None:
            raise self._failure
        try:
            self._buf += self._utf8.decode(b"", final=True)
        except UnicodeDecodeError as exc:
            raise self._error(f"response ends inside a UTF-8 sequence: {exc}") from exc
        rows: list[Any] = []
        self._advance(rows, eof=True)
        if self._state is not _State.DONE:
            raise self._error("response ended before the top-level object was closed")
        if not self._seen_rows:
            raise self._error(f"response has no {self.row_field!r} array")
        return rows

    def _advance(self, rows: list[Any], *, eof: bool) -> None:
        while True:
            self._skip_whitespace()
            if self._pos >= len(self._buf):
                return
            ch = self._buf[self._pos]
            state = self._state

            if state is _State.START:
                self._expect(ch, "{")
                self._state = _State.KEY
            elif state is _State.KEY:
                if ch == "}" and not self.members and not self._seen_rows:
                    self._pos += 1
                    self._state = _State.DONE
                    continue
                if ch != '"':
                    raise self._error(f"expected an object key, found {ch!r}")
                key = self._decode_value(eof=eof)
                if key is _INCOMPLETE:
                    return
                self._key = key
                self._state = _State.COLON
            elif state is _State.COLON:
                self._expect(ch, ":")
                self._state = _State.VALUE
            elif state is _State.VALUE:
                if self._key == self.row_field:
                    if ch != "[":
                        raise self._error(f"{self.row_field!r} is not an array")
                    self._pos += 1
                    self._seen_rows = True
                    self._state = _State.ROW
                    continue
                value = self._decode_value(eof=eof)
                if value is _INCOMPLETE:
                    return
                assert self._key is not None
                self.members[self._key] = value
                self._state = _State.MEMBER_END
            elif state is _State.MEMBER_END:
                self._pos += 1
                if ch == ",":
                    self._state = _State.KEY
                elif ch == "}":
                    self._state = _State.DONE
                else:
                    raise self._error(f"expected ',' or '}}' after a member, found {ch!r}")
            elif state is _State.ROW:
                if ch == "]" and self.rows_parsed == 0:
                    self._pos += 1
                    self._state = _State.MEMBER_END
                    continue
                row = self._decode_value(eof=eof)
                if row is _INCOMPLETE:
                    return
                self.rows_parsed += 1
                rows.append(row)
                self._state = _State.ROW_END
            elif state is _State.ROW_END:
                self._pos += 1
                if ch == ",":
                    self._state = _State.ROW
                elif ch == "]":
                    self._state = _State.MEMBER_END
                else:
                    raise self._error(f"expected ',' or ']' after a row, found {ch!r}")
            else:
                raise self._error(f"unexpected data after the response object: {ch!r}")

    def _decode_value(self, *, eof: bool) -> Any:
        """Decode one JSON value at the cursor, or report that more input is needed.

        The value's extent is found first by scanning brackets and strings, so
        the decoder runs once per value and a malformed value fails as soon as
        its end has arrived.
        """
        end = self._scan_value(eof=eof)
        if end is None:
            if eof:
                raise self._error("response ended inside a value")
            return _INCOMPLETE
        try:
            value, stop = self._decoder.raw_decode(self._buf, self._pos)
        except json.JSONDecodeError as exc:
            raise self._error(f"malformed JSON: {exc.msg}") from exc
        if stop != end:
            raise self._error(f"malformed JSON value {self._buf[self._pos : end]!r}")
        self._pos = end
        return value

    def _scan_value(self, *, eof: bool) -> int | None:
        """Return the end of the value at the cursor, or None until all of it has arrived.

        Objects, arrays and strings end at their closing character. Numbers
        and literals end at the next delimiter, or at EOF, since ``12`` may
        still be growing into ``123``.
        """
        buf, start = self._buf, self._pos
        first = buf[start]
        if first not in _VALUE_START and first != '"':
            raise self._error(f"expected a JSON value, found {first!r}")

        if first not in '{["':
            i = start + max(self._scan_offset, 1)
            while i < len(buf) and buf[i] not in _SCALAR_END:
                i += 1
            if i >= len(buf) and not eof:
                self._scan_offset = i - start
                return None
            self._scan_offset = 0
            return i

        depth = self._scan_depth
        in_string = self._scan_in_string
        escaped = self._scan_escaped
        i = start + self._scan_offset
        while i < len(buf):
            ch = buf[i]
            i += 1
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                    if depth == 0:
                        return self._scan_done(i)
            elif ch == '"':
                in_string = True
            elif ch in "{[":
                depth += 1
            elif ch in "}]":
                depth -= 1
                if depth == 0:
                    return self._scan_done(i)
        self._scan_offset = i - start
        self._scan_depth = depth
        self._scan_in_string = in_string
        self._scan_escaped = escaped
        return None

    def _scan_done(self, end: int) -> int:
        self._scan_offset = 0
        self._scan_depth = 0
        self._scan_in_string = False
        self._scan_escaped = False
        return end

    def _expect(self, ch: str, wanted: str) -> None:
        if ch != wanted:
            raise self._error(f"expected {wanted!r}, found {ch!r}")
        self._pos += 1

    def _skip_whitespace(self) -> None:
        buf, pos = self._buf, self._pos
        while pos < len(buf) and buf[pos] in _WHITESPACE:
            pos += 1
        self._pos = pos

    def _compact(self) -> None:
        if self._pos:
            self._consumed += self._pos
            self._buf = self._buf[self._pos :]
            self._pos = 0

    def _error(self, message: str) -> DecodingError:
        offset = self._consumed + self._pos
        logger.debug("Row stream decoding failed at offset %d: %s", offset, message)
        return DecodingError(f"{message} (at character {offset}, after {self.rows_parsed} rows)")


class _Incomplete:
    """Sentinel: the value at the cursor needs more input."""

    def __repr__(self) -> str:
        return "<incomplete>"


_INCOMPLETE: Any = _Incomplete()
