"""
Tests for TableService table and entity operations.
"""

import json
from datetime import datetime, timezone

import pytest

from azstore.auth.sharedkey import TableSharedKeySigner
from azstore.core.models import AccessPolicy, SignedIdentifier
from azstore.services.table.models import Entity

TABLES_URL = "https://account.table.core.windows.net/Tables"

ENTITIES_JSON = json.dumps({
    "odata.metadata": "https://account.table.core.windows.net/$metadata#people",
    "value": [
        {
            "odata.etag": "W/\"datetime'2019-06-19T10%3A00%3A00Z'\"",
            "PartitionKey": "smith",
            "RowKey": "john",
            "Timestamp@odata.type": "Edm.DateTime",
            "Timestamp": "2019-06-19T10:00:00.1234567Z",
            "Age": 42,
            "Balance@odata.type": "Edm.Int64",
            "Balance": "9999999999",
            "Active": True,
        },
        {"PartitionKey": "smith", "RowKey": "mary"},
    ],
}).encode()


def _json(request):
    return json.loads(request.content)


class TestTables:
    """Test suite for table operations."""

    def test_create_table(self, table_service, transport):
        """Test table creation posts the table name as JSON."""
        transport.queue(204)

        table_service.create_table("people")

        request = transport.last
        assert request.method == "POST"
        assert str(request.url) == TABLES_URL
        assert _json(request) == {"TableName": "people"}
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Accept"] == "application/json;odata=minimalmetadata"
        assert request.headers["DataServiceVersion"] == "3.0;NetFx"
        assert request.headers["x-ms-version"] == "2016-05-31"

    def test_table_signer(self, table_service, transport):
        """Test Table requests use the Table SharedKey scheme."""
        table_service.create_table("people")

        assert isinstance(table_service.signer, TableSharedKeySigner)
        assert transport.last.headers["Authorization"].startswith("SharedKey account:")

    def test_create_table_invalid_name(self, table_service, transport):
        """Test table names must be alphanumeric."""
        with pytest.raises(ValueError, match="alphanumeric"):
            table_service.create_table("my-table")

        assert transport.requests == []

    def test_delete_table(self, table_service, transport):
        """Test table deletion."""
        transport.queue(204)

        table_service.delete_table("people")

        assert transport.last.method == "DELETE"
        assert transport.last.url.raw_path == b"/Tables('people')"

    def test_get_table(self, table_service, transport):
        """Test a single table entry with full metadata."""
        transport.queue(content=b'{"odata.type": "account.Tables", "TableName": "people"}')

        entry = table_service.get_table("people")

        assert transport.last.headers["Accept"] == "application/json;odata=fullmetadata"
        assert entry["TableName"] == "people"

    def test_query_tables(self, table_service, transport):
        """Test listing tables with a continuation token."""
        transport.queue(
            headers={"x-ms-continuation-nexttablename": "reports"},
            content=b'{"value": [{"TableName": "people"}, {"TableName": "places"}]}',
        )

        tables = table_service.query_tables(next_table_token="people", accept="no_meta")

        request = transport.last
        assert request.url.params["NextTableName"] == "people"
        assert request.headers["Accept"] == "application/json;odata=nometadata"
        assert [t["TableName"] for t in tables] == ["people", "places"]
        assert tables.continuation_token == "reports"

    def test_query_tables_last_page(self, table_service, transport):
        """Test the last page has no continuation token."""
        transport.queue(content=b'{"value": []}')

        tables = table_service.query_tables()

        assert list(tables) == []
        assert tables.continuation_token is None

    def test_table_acl(self, table_service, transport):
        """Test stored access policies use the older service version."""
        identifier = SignedIdentifier(
            id="policy-1",
            access_policy=AccessPolicy(start="2019-01-01T00:00:00Z", expiry="2019-02-01T00:00:00Z", permission="raud"),
        )

        table_service.set_table_acl("people", signed_identifiers=[identifier])

        request = transport.last
        assert request.method == "PUT"
        assert request.url.params["comp"] == "acl"
        assert request.url.path == "/people"
        assert request.headers["x-ms-version"] == "2012-02-12"
        assert b"<Id>policy-1</Id>" in request.content

    def test_get_table_acl_empty(self, table_service, transport):
        """Test a table without stored policies."""
        assert table_service.get_table_acl("people") == []


class TestEntities:
    """Test suite for entity operations."""

    def test_insert_entity(self, table_service, transport):
        """Test typed properties are annotated."""
        transport.queue(
            201,
            headers={"ETag": 'W/"1"'},
            content=b'{"PartitionKey": "smith", "RowKey": "john", "Age": 42}',
        )

        entity = table_service.insert_entity(
            "people",
            {"PartitionKey": "smith", "RowKey": "john", "Age": 42, "Balance": 2**40, "Joined": datetime(2020, 1, 2)},
        )

        request = transport.last
        assert request.method == "POST"
        assert request.url.raw_path == b"/people()"
        body = _json(request)
        assert body["Age"] == 42
        assert body["Age@odata.type"] == "Edm.Int32"
        assert body["Balance"] == "1099511627776"
        assert body["Balance@odata.type"] == "Edm.Int64"
        assert body["Joined"] == "2020-01-02T00:00:00.0000000Z"
        assert "PartitionKey@odata.type" not in body
        assert isinstance(entity, Entity)
        assert entity.etag == 'W/"1"'
        assert entity.properties["Age"] == 42

    def test_insert_entity_no_content(self, table_service, transport):
        """Test inserts with Prefer return-no-content."""
        transport.queue(204, headers={"ETag": 'W/"2"'})

        entity = table_service.insert_entity("people", {"PartitionKey": "smith", "RowKey": "john"})

        assert entity.etag == 'W/"2"'
        assert entity.properties == {}

    def test_query_entities(self, table_service, transport):
        """Test query options and typed results."""
        transport.queue(
            headers={
                "x-ms-continuation-nextpartitionkey": "1!8!c21pdGg-",
                "x-ms-continuation-nextrowkey": "1!8!bWFyeQ--",
            },
            content=ENTITIES_JSON,
        )

        entities = table_service.query_entities(
            "people",
            select=["Name", "Age"],
            filter="Age gt 30",
            top=10,
            continuation_token={"next_partition_key": "a", "next_row_key": "b"},
        )

        request = transport.last
        params = request.url.params
        assert params["$select"] == "Name,Age"
        assert params["$filter"] == "Age gt 30"
        assert params["$top"] == "10"
        assert params["NextPartitionKey"] == "a"
        assert params["NextRowKey"] == "b"
        assert b"$filter=Age%20gt%2030" in request.url.query

        john = entities[0]
        assert john.partition_key == "smith"
        assert john.row_key == "john"
        assert john.etag.startswith("W/")
        assert john.properties["Balance"] == 9999999999
        assert john.properties["Active"] is True
        assert john.properties["Timestamp"] == datetime(2019, 6, 19, 10, 0, 0, 123456, tzinfo=timezone.utc)
        assert "odata.etag" not in john.properties
        assert "Balance@odata.type" not in john.properties
        assert entities.continuation_token == {
            "next_partition_key": "1!8!c21pdGg-",
            "next_row_key": "1!8!bWFyeQ--",
        }

    def test_query_entities_reads_secondary(self, table_service, transport):
        """Test queries may be served from the secondary location."""
        transport.queue(content=b'{"value": []}')

        entities = table_service.query_entities("people", location_mode="secondary_only")

        assert transport.last.url.host == "account-secondary.table.core.windows.net"
        assert entities.continuation_token is None

    def test_get_entity(self, table_service, transport):
        """Test a point query by keys."""
        transport.queue(content=b'{"PartitionKey": "smith", "RowKey": "o\'neil", "Age": 7}')

        entity = table_service.get_entity("people", "smith", "o'neil", top=5)

        request = transport.last
        assert request.method == "GET"
        assert request.url.raw_path == b"/people(PartitionKey='smith',RowKey='o''neil')"
        assert entity.properties["Age"] == 7

    def test_entity_keys_encoded(self, table_service, transport):
        """Test keys with spaces are percent encoded."""
        table_service.delete_entity("people", "new york", "a/b")

        assert transport.last.url.raw_path == b"/people(PartitionKey='new%20york',RowKey='a%2Fb')"

    def test_update_entity(self, table_service, transport):
        """Test replace defaults to an unconditional If-Match."""
        transport.queue(204, headers={"ETag": 'W/"3"'})

        etag = table_service.update_entity("people", {"PartitionKey": "smith", "RowKey": "john", "Age": 43})

        request = transport.last
        assert request.method == "PUT"
        assert request.headers["If-Match"] == "*"
        assert _json(request)["Age"] == 43
        assert etag == 'W/"3"'

    def test_update_entity_with_etag(self, table_service, transport):
        """Test optimistic concurrency with an ETag."""
        table_service.update_entity("people", {"PartitionKey": "smith", "RowKey": "john"}, if_match='W/"1"')

        assert transport.last.headers["If-Match"] == 'W/"1"'

    def test_merge_entity(self, table_service, transport):
        """Test merge is tunnelled through POST."""
        transport.queue(204, headers={"ETag": 'W/"4"'})

        etag = table_service.merge_entity("people", {"PartitionKey": "smith", "RowKey": "john", "City": "Oslo"})

        request = transport.last
        assert request.method == "POST"
        assert request.headers["X-HTTP-Method"] == "MERGE"
        assert request.headers["If-Match"] == "*"
        assert etag == 'W/"4"'

    def test_insert_or_merge_entity(self, table_service, transport):
        """Test upserts send no If-Match."""
        table_service.insert_or_merge_entity("people", {"PartitionKey": "smith", "RowKey": "john"})

        assert transport.last.headers["X-HTTP-Method"] == "MERGE"
        assert "If-Match" not in transport.last.headers

    def test_insert_or_replace_entity(self, table_service, transport):
        """Test replace upserts send no If-Match."""
        table_service.insert_or_replace_entity("people", {"PartitionKey": "smith", "RowKey": "john"})

        assert transport.last.method == "PUT"
        assert "If-Match" not in transport.last.headers

    def test_delete_entity(self, table_service, transport):
        """Test entity deletion."""
        transport.queue(204)

        table_service.delete_entity("people", "smith", "john")

        request = transport.last
        assert request.method == "DELETE"
        assert request.headers["If-Match"] == "*"

    def test_entity_not_found(self, table_service, transport):
        """Test OData JSON errors are raised as HTTPError."""
        from azstore.core.exceptions import HTTPError

        transport.queue(
            404,
            content=b'{"odata.error": {"code": "ResourceNotFound", "message": {"lang": "en-US", "value": "gone"}}}',
        )

        with pytest.raises(HTTPError) as exc_info:
            table_service.delete_entity("people", "smith", "john")

        assert exc_info.value.type == "ResourceNotFound"
        assert exc_info.value.status_code == 404
