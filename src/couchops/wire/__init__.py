"""Request encoding and response decoding."""

from couchops.wire.request import RequestBuilder, WireRequest
from couchops.wire.response import ResponseParser
from couchops.wire.stream import RowStreamParser

__all__ = ["RequestBuilder", "ResponseParser", "RowStreamParser", "WireRequest"]
