"""Operation models: one frozen variant per database action.

Operations describe WHAT to send; the request builder decides HOW. Every
variant is validated completely at construction and is immutable afterwards,
so whatever reaches the dispatcher is already known to be well-formed.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from couchops.codec.params import OmitRule, ParamSpec, ValueType, WireEncoding
from couchops.errors import ValidationError

DESIGN_PREFIX = "_design/"


class Stale(StrEnum):
    """Allow a view to answer from a stale index."""

    OK = "ok"
    UPDATE_AFTER = "update_after"


class IndexType(StrEnum):
    """Query index flavours."""

    JSON = "json"
    TEXT = "text"


def _describe(exc: PydanticValidationError) -> str:
    """Flatten pydantic's error list into one readable line."""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        msg = err["msg"].removeprefix("Value error, ")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return f"{exc.title}: " + "; ".join(messages)


class OperationBase(BaseModel):
    """Fields and class-level metadata shared by all operation variants."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    method: ClassVar[str] = "GET"
    # Attribute name -> encoding policy, for everything that travels in the query string.
    query_params: ClassVar[dict[str, ParamSpec]] = {}
    # Name of the top-level array streamed row by row, or None for whole-body responses.
    row_field: ClassVar[str | None] = None
    # Whether a 404 can mean "this document" rather than "some container resource".
    document_scoped: ClassVar[bool] = False

    def __init__(self, **data: Any) -> None:
        """Validate and freeze; failures surface as couchops ValidationError."""
        try:
            super().__init__(**data)
        except PydanticValidationError as exc:
            raise ValidationError(_describe(exc)) from exc


class CreateDatabase(OperationBase):
    """Create the database bound to the submitting context."""

    kind: Literal["create_database"] = "create_database"
    method: ClassVar[str] = "PUT"


class DeleteDatabase(OperationBase):
    """Delete the database bound to the submitting context."""

    kind: Literal["delete_database"] = "delete_database"
    method: ClassVar[str] = "DELETE"


class GetDocument(OperationBase):
    """Fetch a document, optionally at a specific revision."""

    kind: Literal["get_document"] = "get_document"
    doc_id: str = Field(min_length=1)
    rev: str | None = Field(default=None, min_length=1)
    revs: bool = False
    conflicts: bool = False
    revs_info: bool = False

    document_scoped: ClassVar[bool] = True
    query_params: ClassVar[dict[str, ParamSpec]] = {
        "rev": ParamSpec("rev", ValueType.STRING),
        "revs": ParamSpec("revs", ValueType.BOOLEAN, OmitRule.IF_FALSE),
        "conflicts": ParamSpec("conflicts", ValueType.BOOLEAN, OmitRule.IF_FALSE),
        "revs_info": ParamSpec("revs_info", ValueType.BOOLEAN, OmitRule.IF_FALSE),
    }


class PutDocument(OperationBase):
    """Create a document, or update it when ``rev`` names the current revision."""

    kind: Literal["put_document"] = "put_document"
    doc_id: str = Field(min_length=1)
    body: dict[str, JsonValue]
    rev: str | None = Field(default=None, min_length=1)

    method: ClassVar[str] = "PUT"
    query_params: ClassVar[dict[str, ParamSpec]] = {
        "rev": ParamSpec("rev", ValueType.STRING),
    }

    @model_validator(mode="after")
    def _check_body_identity(self) -> PutDocument:
        body_id = self.body.get("_id")
        if body_id is not None and body_id != self.doc_id:
            raise ValueError(f"body _id {body_id!r} does not match doc_id {self.doc_id!r}")
        body_rev = self.body.get("_rev")
        if body_rev is not None and self.rev is not None and body_rev != self.rev:
            raise ValueError(f"body _rev {body_rev!r} does not match rev {self.rev!r}")
        return self


class DeleteDocument(OperationBase):
    """Delete a document at a known revision."""

    kind: Literal["delete_document"] = "delete_document"
    doc_id: str = Field(min_length=1)
    rev: str = Field(min_length=1)

    method: ClassVar[str] = "DELETE"
    document_scoped: ClassVar[bool] = True
    query_params: ClassVar[dict[str, ParamSpec]] = {
        "rev": ParamSpec("rev", ValueType.STRING, OmitRule.NEVER),
    }


class QueryView(OperationBase):
    """Query a map/reduce view; each result row is streamed to the row callback.

    Negative ``limit``, ``skip`` and ``group_level`` mean "not set". ``reduce``
    and ``inclusive_end`` are left to the server unless given explicitly.
    """

    kind: Literal["query_view"] = "query_view"
    ddoc: str = Field(min_length=1)
    view: str = Field(min_length=1)
    descending: bool = False
    end_key: JsonValue = None
    end_key_doc_id: str | None = None
    group: bool = False
    group_level: int = -1
    include_docs: bool = False
    inclusive_end: bool | None = None
    key: JsonValue = None
    keys: list[JsonValue] | None = None
    limit: int = -1
    reduce: bool | None = None
    skip: int = -1
    stale: Stale | None = None
    start_key: JsonValue = None
    start_key_doc_id: str | None = None

    row_field: ClassVar[str | None] = "rows"
    query_params: ClassVar[dict[str, ParamSpec]] = {
        "descending": ParamSpec("descending", ValueType.BOOLEAN, OmitRule.IF_FALSE),
        "end_key": ParamSpec("endkey", ValueType.JSON, encoding=WireEncoding.JSON),
        "end_key_doc_id": ParamSpec("endkey_docid", ValueType.STRING),
        "group": ParamSpec("group", ValueType.BOOLEAN, OmitRule.IF_FALSE),
        "group_level": ParamSpec("group_level", ValueType.INTEGER, OmitRule.IF_NEGATIVE),
        "include_docs": ParamSpec("include_docs", ValueType.BOOLEAN, OmitRule.IF_FALSE),
        "inclusive_end": ParamSpec("inclusive_end", ValueType.BOOLEAN),
        "key": ParamSpec("key", ValueType.JSON, encoding=WireEncoding.JSON),
        "keys": ParamSpec("keys", ValueType.KEY_LIST, encoding=WireEncoding.JSON),
        "limit": ParamSpec("limit", ValueType.INTEGER, OmitRule.IF_NEGATIVE),
        "reduce": ParamSpec("reduce", ValueType.BOOLEAN),
        "skip": ParamSpec("skip", ValueType.INTEGER, OmitRule.IF_NEGATIVE),
        "stale": ParamSpec("stale", ValueType.STRING),
        "start_key": ParamSpec("startkey", ValueType.JSON, encoding=WireEncoding.JSON),
        "start_key_doc_id": ParamSpec("startkey_docid", ValueType.STRING),
    }

    @model_validator(mode="after")
    def _check_key_selection(self) -> QueryView:
        if self.key is not None and self.keys is not None:
            raise ValueError("key and keys are mutually exclusive")
        return self

    @property
    def design_doc_name(self) -> str:
        """Design document name without the ``_design/`` prefix."""
        return self.ddoc.removeprefix(DESIGN_PREFIX)


class FindDocuments(OperationBase):
    """Run a selector query; each matching document is streamed to the row callback.

    The selector and every option travel in the JSON body. The completion
    outcome carries the server's bookmark for fetching the next page.
    """

    kind: Literal["find_documents"] = "find_documents"
    selector: dict[str, JsonValue]
    fields: list[str] | None = None
    sort: list[str | dict[str, Literal["asc", "desc"]]] | None = None
    limit: int = -1
    skip: int = -1
    bookmark: str | None = None
    use_index: str | list[str] | None = None
    r: int = -1
    execution_stats: bool = False

    method: ClassVar[str] = "POST"
    row_field: ClassVar[str | None] = "docs"


class CreateQueryIndex(OperationBase):
    """Create a json or text query index.

    JSON indexes need at least one field, given as a name or as a
    ``{name: "asc" | "desc"}`` mapping. Text indexes take ``{"name", "type"}``
    mappings and index every field when none are given.
    """

    kind: Literal["create_query_index"] = "create_query_index"
    fields: list[str | dict[str, str]] = Field(default_factory=list)
    index_name: str | None = Field(default=None, min_length=1)
    design_doc: str | None = Field(default=None, min_length=1)
    index_type: IndexType = IndexType.JSON
    partial_filter_selector: dict[str, JsonValue] | None = None
    default_field: dict[str, JsonValue] | None = None
    analyzer: JsonValue = None

    method: ClassVar[str] = "POST"

    @model_validator(mode="after")
    def _check_fields(self) -> CreateQueryIndex:
        if self.index_type is IndexType.JSON:
            if not self.fields:
                raise ValueError("json indexes need at least one field")
            for field in self.fields:
                if isinstance(field, dict) and (
                    len(field) != 1 or next(iter(field.values())) not in ("asc", "desc")
                ):
                    raise ValueError(f"json index field {field!r} must be {{name: 'asc'|'desc'}}")
            if self.default_field is not None or self.analyzer is not None:
                raise ValueError("default_field and analyzer only apply to text indexes")
        else:
            for field in self.fields:
                if not isinstance(field, dict) or set(field) != {"name", "type"}:
                    raise ValueError(f"text index field {field!r} must be {{'name', 'type'}}")
                if field["type"] not in ("string", "number", "boolean"):
                    raise ValueError(f"unsupported text index field type {field['type']!r}")
        return self


class DeleteQueryIndex(OperationBase):
    """Delete a query index from the design document that holds it."""

    kind: Literal["delete_query_index"] = "delete_query_index"
    index_name: str = Field(min_length=1)
    design_doc: str = Field(min_length=1)
    index_type: IndexType = IndexType.JSON

    method: ClassVar[str] = "DELETE"

    @property
    def design_doc_name(self) -> str:
        """Design document name without the ``_design/`` prefix."""
        return self.design_doc.removeprefix(DESIGN_PREFIX)


Operation = Annotated[
    CreateDatabase
    | DeleteDatabase
    | GetDocument
    | PutDocument
    | DeleteDocument
    | QueryView
    | FindDocuments
    | CreateQueryIndex
    | DeleteQueryIndex,
    Field(discriminator="kind"),
]

_OPERATION_ADAPTER: TypeAdapter[Operation] = TypeAdapter(Operation)


def parse_operation(data: dict[str, Any]) -> Operation:
    """Build an operation from a plain mapping with a ``kind`` key."""
    try:
        return _OPERATION_ADAPTER.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc)) from exc
