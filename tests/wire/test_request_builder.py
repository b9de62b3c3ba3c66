"""Tests for request building: paths, query strings, headers and bodies."""

import base64
import json
from dataclasses import dataclass

import pytest

from couchops.errors import ValidationError
from couchops.models.operations import (
    CreateDatabase,
    CreateQueryIndex,
    DeleteDatabase,
    DeleteDocument,
    DeleteQueryIndex,
    FindDocuments,
    GetDocument,
    PutDocument,
    QueryView,
)
from couchops.models.settings import ClientSettings, Credentials
from couchops.wire.request import RequestBuilder, encode_doc_id, validate_database_name
from tests.conftest import BASE_URL


@dataclass
class Context:
    name: str
    settings: ClientSettings


@pytest.fixture
def builder():
    return RequestBuilder()


@pytest.fixture
def ctx(settings):
    return Context("testdb", settings)


class TestPaths:
    def test_database_operations(self, builder, ctx):
        create = builder.build(CreateDatabase(), ctx)
        assert (create.method, create.path) == ("PUT", "/testdb")
        delete = builder.build(DeleteDatabase(), ctx)
        assert (delete.method, delete.path) == ("DELETE", "/testdb")

    def test_slash_in_doc_id_is_escaped(self, builder, ctx):
        req = builder.build(GetDocument(doc_id="a/b c"), ctx)
        assert req.path == "/testdb/a%2Fb%20c"
        assert req.url == BASE_URL + "/testdb/a%2Fb%20c"

    def test_design_doc_prefix_is_kept(self, builder, ctx):
        req = builder.build(GetDocument(doc_id="_design/app"), ctx)
        assert req.path == "/testdb/_design/app"

    def test_local_doc_prefix_is_kept(self, builder, ctx):
        req = builder.build(GetDocument(doc_id="_local/a/b"), ctx)
        assert req.path == "/testdb/_local/a%2Fb"

    def test_view_path(self, builder, ctx):
        req = builder.build(QueryView(ddoc="_design/app", view="by name"), ctx)
        assert req.method == "GET"
        assert req.path == "/testdb/_design/app/_view/by%20name"

    def test_find_and_index_paths(self, builder, ctx):
        assert builder.build(FindDocuments(selector={}), ctx).path == "/testdb/_find"
        assert builder.build(CreateQueryIndex(fields=["a"]), ctx).path == "/testdb/_index"

    def test_delete_index_path(self, builder, ctx):
        op = DeleteQueryIndex(index_name="by-name", design_doc="_design/idx", index_type="text")
        req = builder.build(op, ctx)
        assert req.method == "DELETE"
        assert req.path == "/testdb/_index/_design/idx/text/by-name"

    def test_database_name_with_slash(self, builder, settings):
        req = builder.build(CreateDatabase(), Context("team/users", settings))
        assert req.path == "/team%2Fusers"


class TestPathValidation:
    @pytest.mark.parametrize("doc_id", ["_bad", "_design/", "_local/"])
    def test_reserved_ids_rejected(self, doc_id):
        with pytest.raises(ValidationError):
            encode_doc_id(doc_id)

    @pytest.mark.parametrize("name", ["Users", "1db", "", "has space", "_users"])
    def test_invalid_database_names(self, name):
        with pytest.raises(ValidationError, match="invalid database name"):
            validate_database_name(name)

    def test_invalid_database_name_fails_build(self, builder, settings):
        with pytest.raises(ValidationError):
            builder.build(CreateDatabase(), Context("Bad", settings))

    def test_blank_view_name_rejected(self, builder, ctx):
        with pytest.raises(ValidationError, match="view name"):
            builder.build(QueryView(ddoc="app", view=" "), ctx)

    def test_bare_design_prefix_rejected(self, builder, ctx):
        with pytest.raises(ValidationError, match="design document name"):
            builder.build(QueryView(ddoc="_design/", view="v"), ctx)


class TestQueryString:
    def test_defaults_send_no_query(self, builder, ctx):
        req = builder.build(QueryView(ddoc="app", view="v"), ctx)
        assert req.query == ()
        assert "?" not in req.url

    def test_parameters_sorted_by_wire_name(self, builder, ctx):
        op = QueryView(
            ddoc="app",
            view="v",
            skip=5,
            limit=10,
            descending=True,
            start_key=["a", 1],
            reduce=False,
        )
        req = builder.build(op, ctx)
        assert [name for name, _ in req.query] == [
            "descending",
            "limit",
            "reduce",
            "skip",
            "startkey",
        ]
        assert req.query_string == (
            "descending=true&limit=10&reduce=false&skip=5&startkey=%5B%22a%22%2C1%5D"
        )

    def test_negative_values_are_omitted(self, builder, ctx):
        op = QueryView(ddoc="app", view="v", limit=-1, skip=-3, group_level=-1)
        assert builder.build(op, ctx).query == ()

    def test_zero_is_sent(self, builder, ctx):
        op = QueryView(ddoc="app", view="v", limit=0, group_level=0)
        assert dict(builder.build(op, ctx).query) == {"limit": "0", "group_level": "0"}

    def test_doc_id_bounds_use_wire_names(self, builder, ctx):
        op = QueryView(ddoc="app", view="v", start_key_doc_id="a", end_key_doc_id="z")
        assert dict(builder.build(op, ctx).query) == {"startkey_docid": "a", "endkey_docid": "z"}

    def test_keys_are_json_encoded(self, builder, ctx):
        op = QueryView(ddoc="app", view="v", keys=["a", ["b", 2]])
        req = builder.build(op, ctx)
        assert req.query == (("keys", '["a",["b",2]]'),)
        assert "keys=%5B%22a%22%2C%5B%22b%22%2C2%5D%5D" in req.url

    def test_non_ascii_key_is_utf8_percent_encoded(self, builder, ctx):
        req = builder.build(QueryView(ddoc="app", view="v", key="é"), ctx)
        assert req.query_string == "key=%22%C3%A9%22"

    def test_stale_token(self, builder, ctx):
        req = builder.build(QueryView(ddoc="app", view="v", stale="ok"), ctx)
        assert req.query == (("stale", "ok"),)

    def test_delete_always_sends_rev(self, builder, ctx):
        req = builder.build(DeleteDocument(doc_id="doc1", rev="3-abc"), ctx)
        assert req.query == (("rev", "3-abc"),)

    def test_document_flags(self, builder, ctx):
        req = builder.build(GetDocument(doc_id="doc1", conflicts=True, rev="1-a"), ctx)
        assert req.query == (("conflicts", "true"), ("rev", "1-a"))

    def test_building_is_deterministic(self, builder, ctx):
        op = QueryView(ddoc="app", view="v", key={"b": 1, "a": 2}, include_docs=True)
        assert builder.build(op, ctx) == builder.build(op, ctx)


class TestHeaders:
    def test_basic_auth(self, builder, ctx):
        req = builder.build(GetDocument(doc_id="doc1"), ctx)
        expected = base64.b64encode(b"admin:s3cret").decode("ascii")
        assert req.headers["Authorization"] == f"Basic {expected}"
        assert req.headers["Accept"] == "application/json"
        assert req.headers["User-Agent"].startswith("couchops/")

    def test_no_auth_without_credentials(self, builder):
        ctx = Context("testdb", ClientSettings(base_url=BASE_URL))
        assert "Authorization" not in builder.build(CreateDatabase(), ctx).headers

    def test_content_type_only_with_body(self, builder, ctx):
        get = builder.build(GetDocument(doc_id="doc1"), ctx)
        assert "Content-Type" not in get.headers
        assert get.body is None
        put = builder.build(PutDocument(doc_id="doc1", body={"a": 1}), ctx)
        assert put.headers["Content-Type"] == "application/json"

    def test_default_headers_are_added(self, builder):
        settings = ClientSettings(
            base_url=BASE_URL,
            credentials=Credentials(username="u", password="p"),
            default_headers={"X-Cloudant-User": "acct"},
        )
        req = builder.build(CreateDatabase(), Context("testdb", settings))
        assert req.headers["X-Cloudant-User"] == "acct"
        assert "Authorization" in req.headers


class TestBodies:
    def test_put_body(self, builder, ctx):
        req = builder.build(PutDocument(doc_id="doc1", body={"name": "café"}, rev="1-a"), ctx)
        assert json.loads(req.body) == {"name": "café"}
        assert req.query == (("rev", "1-a"),)

    def test_find_body_skips_unset_options(self, builder, ctx):
        op = FindDocuments(selector={"type": "user"}, fields=["_id", "name"], limit=5)
        req = builder.build(op, ctx)
        assert req.method == "POST"
        assert req.query == ()
        assert json.loads(req.body) == {
            "selector": {"type": "user"},
            "fields": ["_id", "name"],
            "limit": 5,
        }

    def test_find_body_with_bookmark_and_sort(self, builder, ctx):
        op = FindDocuments(
            selector={"age": {"$gt": 21}},
            sort=[{"age": "desc"}],
            bookmark="g1AAAA",
            use_index="_design/idx",
            execution_stats=True,
        )
        assert json.loads(builder.build(op, ctx).body) == {
            "selector": {"age": {"$gt": 21}},
            "sort": [{"age": "desc"}],
            "bookmark": "g1AAAA",
            "use_index": "_design/idx",
            "execution_stats": True,
        }

    def test_json_index_body(self, builder, ctx):
        op = CreateQueryIndex(
            fields=["name", {"age": "desc"}],
            index_name="by-name",
            design_doc="_design/idx",
            partial_filter_selector={"type": "user"},
        )
        assert json.loads(builder.build(op, ctx).body) == {
            "index": {
                "fields": ["name", {"age": "desc"}],
                "partial_filter_selector": {"type": "user"},
            },
            "type": "json",
            "name": "by-name",
            "ddoc": "idx",
        }

    def test_text_index_body(self, builder, ctx):
        op = CreateQueryIndex(
            index_type="text",
            fields=[{"name": "title", "type": "string"}],
            partial_filter_selector={"type": "post"},
            default_field={"enabled": False},
        )
        assert json.loads(builder.build(op, ctx).body) == {
            "index": {
                "fields": [{"name": "title", "type": "string"}],
                "selector": {"type": "post"},
                "default_field": {"enabled": False},
            },
            "type": "text",
        }
