"""Database context and convenience wrappers around single operations."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import JsonValue

from couchops.dispatch.dispatcher import CompletionCallback, OperationHandle
from couchops.errors import CouchError, NotFound
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
from couchops.models.results import (
    DatabaseResult,
    DeleteResult,
    Document,
    IndexResult,
    Outcome,
    WriteResult,
)
from couchops.models.settings import ClientSettings
from couchops.wire.response import RowCallback

if TYPE_CHECKING:
    from couchops.client import CouchClient

logger = logging.getLogger(__name__)


class Database:
    """A named database on a client. Read-only and safe to share between operations."""

    def __init__(self, client: CouchClient, name: str) -> None:
        """Bind a client and a (validated) database name."""
        self._client = client
        self._name = name

    def __repr__(self) -> str:
        return f"Database({self._client.settings.base_url!r}, {self._name!r})"

    @property
    def name(self) -> str:
        """Database name."""
        return self._name

    @property
    def settings(self) -> ClientSettings:
        """Settings of the owning client."""
        return self._client.settings

    def submit(
        self,
        operation: Operation,
        *,
        on_row: RowCallback | None = None,
        on_complete: CompletionCallback | None = None,
        timeout: float | None = None,
    ) -> OperationHandle:
        """Submit an operation against this database.

        Raises ``ValidationError`` immediately for an operation that cannot be
        encoded; every other outcome is delivered through ``on_complete`` and
        the returned handle.
        """
        return self._client.dispatcher.submit(
            operation, self, on_row=on_row, on_complete=on_complete, timeout=timeout
        )

    # -- synchronous access --

    def __getitem__(self, doc_id: str) -> dict[str, Any] | None:
        """Fetch a document synchronously. Returns None if it cannot be fetched."""
        op = GetDocument(doc_id=doc_id)
        wire = self._client.builder.build(op, self)
        parser = self._client.parser
        client = self._client.sync_client
        try:
            response = client.send(wire.to_httpx(client))
        except httpx.HTTPError:
            logger.warning("Fetching %s from %s failed", doc_id, self._name, exc_info=True)
            return None
        if response.status_code >= 400:
            error = parser.error_for(
                op, response.status_code, response.content, method=wire.method, url=wire.url
            )
            if not isinstance(error, NotFound):
                logger.warning("Fetching %s from %s failed: %s", doc_id, self._name, error)
            return None
        try:
            document = parser.parse_body(op, response.status_code, response.content)
        except CouchError:
            logger.warning("Unreadable document %s in %s", doc_id, self._name, exc_info=True)
            return None
        assert isinstance(document, Document)
        return document.to_dict()

    # -- convenience wrappers --

    async def create(self) -> DatabaseResult:
        """Create this database on the server."""
        result = await self.submit(CreateDatabase()).result()
        assert isinstance(result, DatabaseResult)
        return result

    async def delete(self) -> DatabaseResult:
        """Delete this database from the server."""
        result = await self.submit(DeleteDatabase()).result()
        assert isinstance(result, DatabaseResult)
        return result

    async def get_document(self, doc_id: str, rev: str | None = None) -> Document:
        """Fetch the latest (or the given) revision of a document."""
        result = await self.submit(GetDocument(doc_id=doc_id, rev=rev)).result()
        assert isinstance(result, Document)
        return result

    async def put_document(
        self, doc_id: str, body: dict[str, JsonValue], rev: str | None = None
    ) -> WriteResult:
        """Create a document, or update it when ``rev`` is given."""
        result = await self.submit(PutDocument(doc_id=doc_id, body=body, rev=rev)).result()
        assert isinstance(result, WriteResult)
        return result

    async def delete_document(self, doc_id: str, rev: str) -> DeleteResult:
        """Delete a document at the given revision."""
        result = await self.submit(DeleteDocument(doc_id=doc_id, rev=rev)).result()
        assert isinstance(result, DeleteResult)
        return result

    async def find_documents(
        self,
        selector: dict[str, JsonValue],
        on_document: RowCallback,
        **options: Any,
    ) -> Outcome:
        """Stream documents matching ``selector`` to ``on_document``.

        Returns the outcome rather than raising so that documents delivered
        before a failure, and the bookmark of a successful page, are both
        visible to the caller.
        """
        op = FindDocuments(selector=selector, **options)
        return await self.submit(op, on_row=on_document).outcome()

    async def query_view(
        self, ddoc: str, view: str, on_row: RowCallback, **options: Any
    ) -> Outcome:
        """Stream the rows of a view to ``on_row``; see ``find_documents`` for the outcome."""
        op = QueryView(ddoc=ddoc, view=view, **options)
        return await self.submit(op, on_row=on_row).outcome()

    async def create_json_index(
        self,
        index_name: str,
        fields: Sequence[str | dict[str, str]],
        design_doc: str | None = None,
    ) -> IndexResult:
        """Create a json query index over ``fields``."""
        return await self._create_index(index_name, fields, design_doc, IndexType.JSON)

    async def create_text_index(
        self,
        index_name: str,
        fields: Sequence[dict[str, str]],
        design_doc: str | None = None,
    ) -> IndexResult:
        """Create a text query index; an empty ``fields`` list indexes every field."""
        return await self._create_index(index_name, fields, design_doc, IndexType.TEXT)

    async def _create_index(
        self,
        index_name: str,
        fields: Sequence[str | dict[str, str]],
        design_doc: str | None,
        index_type: IndexType,
    ) -> IndexResult:
        op = CreateQueryIndex(
            index_name=index_name,
            fields=list(fields),
            design_doc=design_doc,
            index_type=index_type,
        )
        result = await self.submit(op).result()
        assert isinstance(result, IndexResult)
        return result

    async def delete_json_index(self, index_name: str, design_doc: str) -> DeleteResult:
        """Delete a json query index."""
        return await self._delete_index(index_name, design_doc, IndexType.JSON)

    async def delete_text_index(self, index_name: str, design_doc: str) -> DeleteResult:
        """Delete a text query index."""
        return await self._delete_index(index_name, design_doc, IndexType.TEXT)

    async def _delete_index(
        self, index_name: str, design_doc: str, index_type: IndexType
    ) -> DeleteResult:
        op = DeleteQueryIndex(index_name=index_name, design_doc=design_doc, index_type=index_type)
        result = await self.submit(op).result()
        assert isinstance(result, DeleteResult)
        return result
