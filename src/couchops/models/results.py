"""Typed results and the terminal outcome of an operation."""

from typing import Any

from pydantic import BaseModel, ConfigDict, JsonValue


class Document(BaseModel):
    """A fetched document: its identity plus the full body as the server sent it."""

    id: str
    rev: str | None = None
    body: dict[str, JsonValue]

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "Document":
        """Build from a decoded document body carrying ``_id`` and ``_rev``."""
        return cls(id=body["_id"], rev=body.get("_rev"), body=body)

    def __getitem__(self, key: str) -> Any:
        return self.body[key]

    def get(self, key: str, default: Any = None) -> Any:
        """Return a body member, or ``default`` when absent."""
        return self.body.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        """Return a copy of the body, ``_id``/``_rev`` included."""
        return dict(self.body)


class WriteResult(BaseModel):
    """Result of creating or updating a document."""

    id: str
    rev: str
    status_code: int
    ok: bool = True


class DeleteResult(BaseModel):
    """Result of deleting a document or a query index."""

    status_code: int
    id: str | None = None
    rev: str | None = None
    ok: bool = True


class IndexResult(BaseModel):
    """Result of creating a query index: ``created`` or ``exists``."""

    result: str
    id: str | None = None
    name: str | None = None


class DatabaseResult(BaseModel):
    """Result of creating or deleting a database."""

    status_code: int
    ok: bool = True


class RowsResult(BaseModel):
    """Summary of a streamed view or find response, once every row is delivered."""

    rows_delivered: int = 0
    total_rows: int | None = None
    offset: int | None = None
    bookmark: str | None = None
    warning: str | None = None
    execution_stats: dict[str, JsonValue] | None = None


Result = Document | WriteResult | DeleteResult | IndexResult | DatabaseResult | RowsResult


class Outcome(BaseModel):
    """Terminal value of an operation, delivered exactly once.

    Rows delivered before a failure stay delivered: ``rows_delivered`` counts
    them and ``partial`` reports that a failure came after some rows.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    result: Result | None = None
    error: Exception | None = None
    status_code: int | None = None
    rows_delivered: int = 0
    bookmark: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the operation completed without error."""
        return self.error is None

    @property
    def partial(self) -> bool:
        """Whether rows were delivered before a terminal error."""
        return self.error is not None and self.rows_delivered > 0

    def unwrap(self) -> Result:
        """Return the result, raising the error when there is one."""
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result
