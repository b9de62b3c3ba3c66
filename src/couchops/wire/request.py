"""Turn an operation plus its database context into a wire request.

Everything here is synchronous and side-effect free: validation failures
surface as ``ValidationError`` before any network call is attempted.
"""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, assert_never
from urllib.parse import quote

from couchops.codec.params import encode_json, encode_param
from couchops.errors import ValidationError
from couchops.models.operations import (
    CreateDatabase,
    CreateQueryIndex,
    DeleteDatabase,
    DeleteDocument,
    DeleteQueryIndex,
    FindDocuments,
    GetDocument,
    IndexType,
    Operation,
    PutDocument,
    QueryView,
)

if TYPE_CHECKING:
    import httpx

    from couchops.models.settings import ClientSettings

logger = logging.getLogger(__name__)

_DB_NAME_RE = re.compile(r"^[a-z][a-z0-9_$()+/-]*$")
# Reserved-prefix ids whose slash is part of the id, not a separator to escape.
_PREFIXED_ID_NAMESPACES = ("_design/", "_local/")


class RequestContext(Protocol):
    """What the builder needs from a database context."""

    @property
    def name(self) -> str:
        """Database name."""
        ...

    @property
    def settings(self) -> ClientSettings:
        """Shared client settings."""
        ...


@dataclass(frozen=True)
class WireRequest:
    """A fully encoded HTTP request, ready for the transport."""

    method: str
    url: str
    path: str
    query: tuple[tuple[str, str], ...] = ()
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None

    @property
    def query_string(self) -> str:
        """The percent-encoded query string, without the leading ``?``."""
        return encode_query(self.query)

    def to_httpx(self, client: httpx.AsyncClient | httpx.Client) -> httpx.Request:
        """Build the equivalent httpx request on the given client."""
        return client.build_request(self.method, self.url, headers=self.headers, content=self.body)


def encode_query(items: tuple[tuple[str, str], ...]) -> str:
    """Percent-encode every name and value; nothing is left as a reserved character."""
    return "&".join(f"{quote(name, safe='')}={quote(value, safe='')}" for name, value in items)


def encode_path_segment(segment: str) -> str:
    """Percent-encode one path segment so that ``/`` cannot split it."""
    return quote(segment, safe="")


def encode_doc_id(doc_id: str) -> str:
    """Encode a document id as a path segment, keeping reserved-prefix slashes."""
    for prefix in _PREFIXED_ID_NAMESPACES:
        if doc_id.startswith(prefix):
            rest = doc_id[len(prefix) :]
            if not rest:
                raise ValidationError(f"document id {doc_id!r} has an empty name after its prefix")
            return prefix + encode_path_segment(rest)
    if doc_id.startswith("_"):
        raise ValidationError(
            f"document id {doc_id!r} starts with '_' but is not a design or local document"
        )
    return encode_path_segment(doc_id)


def validate_database_name(name: str) -> str:
    """Return the name unchanged, or raise when the server would reject it."""
    if not _DB_NAME_RE.match(name):
        raise ValidationError(
            f"invalid database name {name!r}: must start with a lowercase letter and "
            "contain only a-z, 0-9, _, $, (, ), +, - and /"
        )
    return name


def _require_segment(value: str, what: str) -> str:
    if not value or value.isspace():
        raise ValidationError(f"{what} must not be empty")
    return encode_path_segment(value)


def query_items(operation: Operation) -> tuple[tuple[str, str], ...]:
    """Encode an operation's query fields, sorted by wire name."""
    items = []
    for attr, spec in type(operation).query_params.items():
        encoded = encode_param(spec, getattr(operation, attr))
        if encoded is not None:
            items.append(encoded)
    return tuple(sorted(items))


def _find_body(op: FindDocuments) -> dict[str, Any]:
    body: dict[str, Any] = {"selector": op.selector}
    if op.fields is not None:
        body["fields"] = op.fields
    if op.sort is not None:
        body["sort"] = op.sort
    if op.limit >= 0:
        body["limit"] = op.limit
    if op.skip >= 0:
        body["skip"] = op.skip
    if op.bookmark is not None:
        body["bookmark"] = op.bookmark
    if op.use_index is not None:
        body["use_index"] = op.use_index
    if op.r >= 0:
        body["r"] = op.r
    if op.execution_stats:
        body["execution_stats"] = True
    return body


def _index_body(op: CreateQueryIndex) -> dict[str, Any]:
    index: dict[str, Any] = {"fields": op.fields}
    if op.index_type is IndexType.JSON:
        if op.partial_filter_selector is not None:
            index["partial_filter_selector"] = op.partial_filter_selector
    else:
        if op.partial_filter_selector is not None:
            index["selector"] = op.partial_filter_selector
        if op.default_field is not None:
            index["default_field"] = op.default_field
        if op.analyzer is not None:
            index["analyzer"] = op.analyzer
    body: dict[str, Any] = {"index": index, "type": op.index_type.value}
    if op.index_name is not None:
        body["name"] = op.index_name
    if op.design_doc is not None:
        body["ddoc"] = op.design_doc.removeprefix("_design/")
    return body


class RequestBuilder:
    """Builds deterministic wire requests from operations."""

    def build(self, operation: Operation, context: RequestContext) -> WireRequest:
        """Resolve path, query, headers and body for one operation."""
        settings = context.settings
        db = encode_path_segment(validate_database_name(context.name))
        body: dict[str, Any] | None = None

        match operation:
            case CreateDatabase() | DeleteDatabase():
                path = f"/{db}"
            case GetDocument() | DeleteDocument():
                path = f"/{db}/{encode_doc_id(operation.doc_id)}"
            case PutDocument():
                path = f"/{db}/{encode_doc_id(operation.doc_id)}"
                body = operation.body
            case QueryView():
                ddoc = _require_segment(operation.design_doc_name, "design document name")
                view = _require_segment(operation.view, "view name")
                path = f"/{db}/_design/{ddoc}/_view/{view}"
            case FindDocuments():
                path = f"/{db}/_find"
                body = _find_body(operation)
            case CreateQueryIndex():
                path = f"/{db}/_index"
                body = _index_body(operation)
            case DeleteQueryIndex():
                ddoc = _require_segment(operation.design_doc_name, "design document name")
                name = _require_segment(operation.index_name, "index name")
                path = f"/{db}/_index/_design/{ddoc}/{operation.index_type.value}/{name}"
            case _:
                assert_never(operation)

        query = query_items(operation)
        url = settings.base_url + path
        if query:
            url += "?" + encode_query(query)

        headers = self.headers(settings, has_body=body is not None)
        content = encode_json(body).encode("utf-8") if body is not None else None

        logger.debug("Built %s %s", operation.method, url)
        return WireRequest(
            method=operation.method,
            url=url,
            path=path,
            query=query,
            headers=headers,
            body=content,
        )

    @staticmethod
    def headers(settings: ClientSettings, *, has_body: bool = False) -> dict[str, str]:
        """Default, auth and content-type headers for a request."""
        headers = {"Accept": "application/json", "User-Agent": settings.user_agent}
        headers.update(settings.default_headers)
        if settings.credentials is not None:
            creds = settings.credentials
            token = f"{creds.username}:{creds.password.get_secret_value()}"
            headers["Authorization"] = "Basic " + base64.b64encode(token.encode()).decode("ascii")
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers
