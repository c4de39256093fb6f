"""
Azure Table service client.

Table, ACL, entity and batch operations over the Table REST API using
OData JSON.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from azstore.auth.sharedkey import TableSharedKeySigner
from azstore.core.constants import (
    TABLE_STG_VERSION,
    HeaderConstants,
    RequestLocationMode,
    ServiceType,
    TableConstants,
)
from azstore.core.http_client import Body, HttpResponse
from azstore.core.models import EnumerationResults, SignedIdentifier
from azstore.core.serialization import signed_identifiers_from_xml, signed_identifiers_to_xml
from azstore.core.service import StorageService, with_query
from azstore.services.table.batch import Batch
from azstore.services.table.models import Entity, TableNameValidator
from azstore.services.table.serialization import (
    entities_from_json,
    entity_from_json,
    get_accept_string,
    hash_to_json,
    table_entries_from_json,
)

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


def encode_odata_uri_value(value: str) -> str:
    """Quote a key for an entity path: ``'`` is doubled, then URL encoded."""
    return quote(str(value).replace("'", "''"), safe="'")


class TableService(StorageService):
    """
    Client for the Table service.

    Example:
        >>> tables = StorageClient.create_development().table_client()
        >>> tables.create_table("people")
        >>> tables.insert_entity("people", {"PartitionKey": "smith", "RowKey": "john", "Age": 42})
    """

    service_type = ServiceType.TABLE
    api_version = TABLE_STG_VERSION
    shared_key_signer_class = TableSharedKeySigner

    def call(
        self,
        method: str,
        uri: str,
        body: Body = None,
        headers: Optional[Dict[str, str]] = None,
        options: Optional[Dict[str, Any]] = None,
        is_batch: bool = False,
    ) -> HttpResponse:
        headers = dict(headers or {})
        if not is_batch:
            headers[HeaderConstants.CONTENT_TYPE] = JSON_CONTENT_TYPE
        headers["DataServiceVersion"] = TableConstants.DEFAULT_DATA_SERVICE_VERSION
        headers["MaxDataServiceVersion"] = TableConstants.DEFAULT_DATA_SERVICE_VERSION
        return super().call(method, uri, body, headers, options)

    def encode_query(self, query: Mapping[str, Any]) -> str:
        """Encode a query string leaving the ``$`` of OData options intact."""
        pairs = []
        for key, value in query.items():
            if value is None:
                continue
            name = key if key.startswith("$") else quote(key, safe="")
            pairs.append(f"{name}={quote(str(value), safe='')}")
        return "&".join(pairs)

    @staticmethod
    def new_query(options: Mapping[str, Any]) -> Dict[str, str]:
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))
        return query

    # Tables

    def create_table(self, table_name: str, **options: Any) -> None:
        """
        Create a table.

        Args:
            table_name: Table name
            **options: accept, prefer, timeout, request_id

        Raises:
            ValueError: If the table name is invalid
        """
        TableNameValidator.validate_raise(table_name)

        headers = {"Accept": get_accept_string(options.get("accept"))}
        if options.get("prefer") is not None:
            headers["Prefer"] = options["prefer"]
        body = hash_to_json({TableConstants.TABLE_NAME: table_name})

        self.call("POST", self.collection_uri(self.new_query(options), options), body, headers, options)
        logger.debug(f"Created table: {table_name}")

    def delete_table(self, table_name: str, **options: Any) -> None:
        self.call("DELETE", self.table_uri(table_name, self.new_query(options), options), None, {}, options)
        logger.debug(f"Deleted table: {table_name}")

    def get_table(self, table_name: str, **options: Any) -> Dict[str, Any]:
        """
        Get a table entry with full OData metadata.

        Returns:
            The table entry dict (``TableName``, ``odata.*`` fields)
        """
        headers = {"Accept": get_accept_string("full_meta")}
        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.table_uri(table_name, self.new_query(options), options), None, headers, options)
        return table_entries_from_json(response.body)

    def query_tables(self, **options: Any) -> EnumerationResults:
        """
        List tables.

        Args:
            **options: next_table_token, accept, timeout, request_id,
                location_mode

        Returns:
            EnumerationResults of table entry dicts; ``continuation_token``
            is the next table name
        """
        query = self.new_query(options)
        with_query(query, TableConstants.NEXT_TABLE_NAME, options.get("next_table_token"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        headers = {"Accept": get_accept_string(options.get("accept"))}
        response = self.call("GET", self.collection_uri(query, options), None, headers, options)

        entries = table_entries_from_json(response.body) or []
        return EnumerationResults(
            entries if isinstance(entries, list) else [entries],
            response.headers.get(TableConstants.CONTINUATION_NEXT_TABLE_NAME),
        )

    def get_table_acl(self, table_name: str, **options: Any) -> List[SignedIdentifier]:
        """Get the stored access policies of a table."""
        query = self.new_query(options)
        query["comp"] = "acl"

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        headers = {HeaderConstants.STORAGE_VERSION: TableConstants.ACL_VERSION}
        response = self.call("GET", self.generate_uri(table_name, query, options), None, headers, options)
        if not response.body:
            return []
        return signed_identifiers_from_xml(response.body)

    def set_table_acl(self, table_name: str, **options: Any) -> None:
        """
        Set the stored access policies of a table.

        Args:
            table_name: Table name
            **options: signed_identifiers, timeout, request_id
        """
        query = self.new_query(options)
        query["comp"] = "acl"

        signed_identifiers = options.get("signed_identifiers")
        body = signed_identifiers_to_xml(signed_identifiers) if signed_identifiers else None
        headers = {HeaderConstants.STORAGE_VERSION: TableConstants.ACL_VERSION}
        self.call("PUT", self.generate_uri(table_name, query, options), body, headers, options)

    # Entities

    def insert_entity(self, table_name: str, entity_values: Mapping[str, Any], **options: Any) -> Entity:
        """
        Insert an entity.

        Args:
            table_name: Table name
            entity_values: Properties including PartitionKey and RowKey
            **options: accept, timeout, request_id

        Returns:
            The inserted Entity as returned by the service
        """
        body = hash_to_json(entity_values)
        headers = {"Accept": get_accept_string(options.get("accept"))}
        uri = self.entities_uri(table_name, None, None, self.new_query(options), options)
        response = self.call("POST", uri, body, headers, options)

        result = entity_from_json(response.body) if response.body else Entity()
        if result.etag is None:
            result.etag = response.headers.get(HeaderConstants.ETAG)
        return result

    def query_entities(self, table_name: str, **options: Any) -> EnumerationResults:
        """
        Query entities.

        Args:
            table_name: Table name
            **options: partition_key, row_key, select (list of property
                names), filter, top, continuation_token (dict with
                next_partition_key / next_row_key), accept, timeout,
                request_id, location_mode

        Returns:
            EnumerationResults of Entity; ``continuation_token`` is set when
            more results are available
        """
        partition_key = options.get("partition_key")
        row_key = options.get("row_key")

        query = self.new_query(options)
        if options.get("select"):
            query["$select"] = ",".join(options["select"])
        with_query(query, "$filter", options.get("filter"))
        if not (partition_key and row_key):
            with_query(query, "$top", options.get("top"))
        token = options.get("continuation_token") or {}
        with_query(query, TableConstants.NEXT_PARTITION_KEY, token.get("next_partition_key"))
        with_query(query, TableConstants.NEXT_ROW_KEY, token.get("next_row_key"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        uri = self.entities_uri(table_name, partition_key, row_key, query, options)
        headers = {"Accept": get_accept_string(options.get("accept"))}
        response = self.call("GET", uri, None, headers, options)

        entities = EnumerationResults(entities_from_json(response.body))
        next_partition_key = response.headers.get(TableConstants.CONTINUATION_NEXT_PARTITION_KEY)
        if next_partition_key:
            entities.continuation_token = {
                "next_partition_key": next_partition_key,
                "next_row_key": response.headers.get(TableConstants.CONTINUATION_NEXT_ROW_KEY),
            }
        return entities

    def get_entity(self, table_name: str, partition_key: str, row_key: str, **options: Any) -> Optional[Entity]:
        """Get one entity, or None when the query returns nothing."""
        options["partition_key"] = partition_key
        options["row_key"] = row_key
        results = self.query_entities(table_name, **options)
        return results[0] if results else None

    def update_entity(self, table_name: str, entity_values: Mapping[str, Any], **options: Any) -> Optional[str]:
        """
        Replace an entity.

        Args:
            table_name: Table name
            entity_values: Properties including PartitionKey and RowKey
            **options: if_match (default ``*``), create_if_not_exists,
                timeout, request_id

        Returns:
            The new ETag
        """
        uri = self.entities_uri(
            table_name,
            entity_values.get(TableConstants.PARTITION_KEY),
            entity_values.get(TableConstants.ROW_KEY),
            self.new_query(options),
            options,
        )
        headers: Dict[str, str] = {}
        if not options.get("create_if_not_exists"):
            headers[HeaderConstants.IF_MATCH] = options.get("if_match") or "*"

        response = self.call("PUT", uri, hash_to_json(entity_values), headers, options)
        return response.headers.get(HeaderConstants.ETAG)

    def merge_entity(self, table_name: str, entity_values: Mapping[str, Any], **options: Any) -> Optional[str]:
        """
        Merge properties into an entity.

        Sent as ``POST`` with ``X-HTTP-Method: MERGE``.

        Returns:
            The new ETag
        """
        uri = self.entities_uri(
            table_name,
            entity_values.get(TableConstants.PARTITION_KEY),
            entity_values.get(TableConstants.ROW_KEY),
            self.new_query(options),
            options,
        )
        headers = {"X-HTTP-Method": "MERGE"}
        if not options.get("create_if_not_exists"):
            headers[HeaderConstants.IF_MATCH] = options.get("if_match") or "*"

        response = self.call("POST", uri, hash_to_json(entity_values), headers, options)
        return response.headers.get(HeaderConstants.ETAG)

    def insert_or_merge_entity(self, table_name: str, entity_values: Mapping[str, Any], **options: Any) -> Optional[str]:
        options["create_if_not_exists"] = True
        return self.merge_entity(table_name, entity_values, **options)

    def insert_or_replace_entity(self, table_name: str, entity_values: Mapping[str, Any], **options: Any) -> Optional[str]:
        options["create_if_not_exists"] = True
        return self.update_entity(table_name, entity_values, **options)

    def delete_entity(self, table_name: str, partition_key: str, row_key: str, **options: Any) -> None:
        """Delete an entity. ``if_match`` defaults to ``*``."""
        uri = self.entities_uri(table_name, partition_key, row_key, self.new_query(options), options)
        headers = {HeaderConstants.IF_MATCH: options.get("if_match") or "*"}
        self.call("DELETE", uri, None, headers, options)

    def execute_batch(self, batch: Batch, **options: Any) -> List[Any]:
        """
        Send a batch of entity operations as one request.

        Returns:
            One result per operation (Entity, ETag or None)

        Raises:
            HTTPError: If the request or any operation failed
        """
        headers = {
            HeaderConstants.CONTENT_TYPE: f"multipart/mixed; boundary={batch.batch_id}",
            "Accept": get_accept_string(options.get("accept")),
            "Accept-Charset": "UTF-8",
        }
        body = batch.to_body(self)

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        uri = self.generate_uri("$batch", self.new_query(options), options)
        response = self.call("POST", uri, body, headers, options, is_batch=True)
        logger.debug(f"Executed batch of {len(batch.operations)} operations on {batch.table}")
        return batch.parse_response(response)

    # URIs

    def collection_uri(self, query: Dict[str, str], options: Dict[str, Any]) -> str:
        return self.generate_uri(TableConstants.TABLE_SERVICE_TABLE_NAME, query, options)

    def table_uri(self, name: str, query: Dict[str, str], options: Dict[str, Any]) -> str:
        return self.generate_uri(f"Tables('{name}')", query, options)

    def entities_uri(
        self,
        table_name: str,
        partition_key: Optional[str] = None,
        row_key: Optional[str] = None,
        query: Optional[Dict[str, str]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Build the URI of an entity, or of the table's entity set.

        ``Table(PartitionKey='pk',RowKey='rk')`` when both keys are given,
        otherwise ``Table()``.
        """
        if partition_key is not None and row_key is not None:
            path = (
                f"{table_name}(PartitionKey='{encode_odata_uri_value(partition_key)}',"
                f"RowKey='{encode_odata_uri_value(row_key)}')"
            )
        else:
            path = f"{table_name}()"
        return self.generate_uri(path, query or {}, options if options is not None else {})
