"""Operation execution engine for CouchDB/Cloudant-style document databases."""

from couchops.client import CouchClient
from couchops.database import Database
from couchops.dispatch.dispatcher import OperationHandle, OperationState
from couchops.errors import (
    Conflict,
    CouchError,
    DecodingError,
    DocumentNotFound,
    Forbidden,
    HTTPStatusError,
    NotFound,
    OperationCancelled,
    OperationTimeout,
    RequestRejected,
    ResourceNotFound,
    ServerError,
    TransportError,
    TransportErrorKind,
    Unauthorized,
    ValidationError,
)
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
    Stale,
    parse_operation,
)
from couchops.models.results import (
    DatabaseResult,
    DeleteResult,
    Document,
    IndexResult,
    Outcome,
    RowsResult,
    WriteResult,
)
from couchops.models.settings import ClientSettings, Credentials

__version__ = "0.1.0"

__all__ = [
    "ClientSettings",
    "Conflict",
    "CouchClient",
    "CouchError",
    "CreateDatabase",
    "CreateQueryIndex",
    "Credentials",
    "Database",
    "DatabaseResult",
    "DecodingError",
    "DeleteDatabase",
    "DeleteDocument",
    "DeleteQueryIndex",
    "DeleteResult",
    "Document",
    "DocumentNotFound",
    "FindDocuments",
    "Forbidden",
    "GetDocument",
    "HTTPStatusError",
    "IndexResult",
    "IndexType",
    "NotFound",
    "Operation",
    "OperationCancelled",
    "OperationHandle",
    "OperationState",
    "OperationTimeout",
    "Outcome",
    "PutDocument",
    "QueryView",
    "RequestRejected",
    "ResourceNotFound",
    "RowsResult",
    "ServerError",
    "Stale",
    "TransportError",
    "TransportErrorKind",
    "Unauthorized",
    "ValidationError",
    "WriteResult",
    "parse_operation",
]
