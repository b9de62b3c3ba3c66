"""Tests for operation validation and immutability."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from couchops.errors import ValidationError
from couchops.models.operations import (
    CreateQueryIndex,
    DeleteDocument,
    DeleteQueryIndex,
    FindDocuments,
    GetDocument,
    IndexType,
    PutDocument,
    QueryView,
    Stale,
    parse_operation,
)


class TestQueryView:
    def test_defaults_leave_everything_to_the_server(self):
        op = QueryView(ddoc="app", view="by_name")
        assert op.limit == -1
        assert op.skip == -1
        assert op.group_level == -1
        assert op.reduce is None
        assert op.inclusive_end is None
        assert op.stale is None

    def test_key_and_keys_are_mutually_exclusive(self):
        with pytest.raises(ValidationError, match="mutually exclusive"):
            QueryView(ddoc="app", view="by_name", key="a", keys=["a", "b"])

    def test_validation_error_is_also_value_error(self):
        with pytest.raises(ValueError):
            QueryView(ddoc="app", view="by_name", key="a", keys=["b"])

    def test_array_keys_accepted(self):
        op = QueryView(ddoc="app", view="by_name", start_key=["a", "b"], end_key=["a", {}])
        assert op.start_key == ["a", "b"]

    def test_stale_from_token(self):
        assert QueryView(ddoc="d", view="v", stale="update_after").stale is Stale.UPDATE_AFTER

    def test_unknown_stale_token_rejected(self):
        with pytest.raises(ValidationError):
            QueryView(ddoc="d", view="v", stale="sometimes")

    def test_missing_view_rejected(self):
        with pytest.raises(ValidationError, match="view"):
            QueryView(ddoc="app")

    def test_design_prefix_is_stripped_for_paths(self):
        assert QueryView(ddoc="_design/app", view="v").design_doc_name == "app"


class TestImmutability:
    def test_fields_cannot_be_reassigned(self):
        op = GetDocument(doc_id="doc1")
        with pytest.raises(PydanticValidationError):
            op.doc_id = "doc2"
        assert op.doc_id == "doc1"

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError, match="revision"):
            GetDocument(doc_id="doc1", revision="1-a")


class TestDocumentOperations:
    def test_empty_doc_id_rejected(self):
        with pytest.raises(ValidationError):
            GetDocument(doc_id="")

    def test_delete_requires_rev(self):
        with pytest.raises(ValidationError, match="rev"):
            DeleteDocument(doc_id="doc1")

    def test_put_body_id_must_match(self):
        with pytest.raises(ValidationError, match="does not match doc_id"):
            PutDocument(doc_id="doc1", body={"_id": "doc2"})

    def test_put_body_rev_must_match(self):
        with pytest.raises(ValidationError, match="does not match rev"):
            PutDocument(doc_id="doc1", body={"_rev": "1-a"}, rev="2-b")

    def test_put_body_with_matching_identity(self):
        op = PutDocument(doc_id="doc1", body={"_id": "doc1", "_rev": "1-a"}, rev="1-a")
        assert op.body["_id"] == "doc1"


class TestIndexOperations:
    def test_json_index_needs_fields(self):
        with pytest.raises(ValidationError, match="at least one field"):
            CreateQueryIndex(index_name="idx")

    def test_json_index_sort_direction(self):
        op = CreateQueryIndex(fields=["name", {"age": "desc"}])
        assert op.index_type is IndexType.JSON
        with pytest.raises(ValidationError):
            CreateQueryIndex(fields=[{"age": "sideways"}])

    def test_text_only_options_rejected_on_json(self):
        with pytest.raises(ValidationError, match="text indexes"):
            CreateQueryIndex(fields=["name"], default_field={"enabled": True})

    def test_text_index_may_index_everything(self):
        op = CreateQueryIndex(index_type=IndexType.TEXT)
        assert op.fields == []

    def test_text_index_field_shape(self):
        CreateQueryIndex(index_type="text", fields=[{"name": "title", "type": "string"}])
        with pytest.raises(ValidationError):
            CreateQueryIndex(index_type="text", fields=["title"])
        with pytest.raises(ValidationError, match="unsupported"):
            CreateQueryIndex(index_type="text", fields=[{"name": "t", "type": "date"}])

    def test_delete_index_strips_design_prefix(self):
        op = DeleteQueryIndex(index_name="idx", design_doc="_design/ddoc")
        assert op.design_doc_name == "ddoc"


class TestParseOperation:
    def test_dispatches_on_kind(self):
        op = parse_operation({"kind": "find_documents", "selector": {"type": "user"}})
        assert isinstance(op, FindDocuments)
        assert op.selector == {"type": "user"}

    def test_unknown_kind(self):
        with pytest.raises(ValidationError):
            parse_operation({"kind": "replicate"})

    def test_cross_field_rules_apply(self):
        with pytest.raises(ValidationError, match="mutually exclusive"):
            parse_operation({"kind": "query_view", "ddoc": "d", "view": "v", "key": 1, "keys": []})
