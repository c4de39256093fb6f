"""
Entity group transactions for the Table service.

A Batch collects operations on entities of one partition and renders them
as a ``multipart/mixed`` body for ``POST /$batch``. BatchResponse splits the
multipart response back into one result per operation.
"""

import logging
import re
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from azstore.core.constants import HeaderConstants, TableConstants
from azstore.core.exceptions import HTTPError, StorageError
from azstore.core.http_client import HttpResponse
from azstore.services.table.models import Entity
from azstore.services.table.serialization import entity_from_json, get_accept_string, hash_to_json

if TYPE_CHECKING:
    from azstore.services.table.service import TableService

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"

_STATUS_LINE = re.compile(r"HTTP/1\.1 (\d+) ?(.*)")
_HEADER_LINE = re.compile(r"([^:]+): (.*)")


class BatchOperation(BaseModel):
    """One entity operation inside a batch."""

    method: str
    row_key: Optional[str] = None
    body: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    uri: Optional[str] = None


class BatchResponse:
    """Parser for multipart batch responses."""

    @staticmethod
    def parse(data: str, is_get: bool = False) -> List[Dict[str, Any]]:
        """
        Split a batch response into its operation responses.

        Changeset responses are delimited by ``--changesetresponse_``; the
        response to a single get is a ``--batchresponse_`` part.

        Args:
            data: Response body
            is_get: Whether the batch held a single get operation

        Returns:
            One dict per operation with ``status_code``, ``message``,
            ``headers`` (lower-cased names) and ``body``
        """
        delimiter = TableConstants.BATCH_DELIMITER if is_get else TableConstants.CHANGESET_DELIMITER

        parts: List[List[str]] = []
        current: Optional[List[str]] = None
        for line in data.splitlines():
            if line.startswith(delimiter):
                if current is not None:
                    parts.append(current)
                current = None if line.rstrip().endswith("--") else []
                continue
            if line.startswith(TableConstants.BATCH_DELIMITER) or line.startswith(TableConstants.CHANGESET_DELIMITER):
                continue
            if current is not None:
                current.append(line)
        if current is not None:
            parts.append(current)

        responses = []
        for part in parts:
            response = BatchResponse._parse_part(part)
            if response is not None:
                responses.append(response)
        return responses

    @staticmethod
    def _parse_part(lines: List[str]) -> Optional[Dict[str, Any]]:
        index = 0
        while index < len(lines) and not _STATUS_LINE.match(lines[index]):
            index += 1
        if index == len(lines):
            return None

        match = _STATUS_LINE.match(lines[index])
        response: Dict[str, Any] = {
            "status_code": int(match.group(1)),
            "message": match.group(2).strip(),
            "headers": {},
            "body": "",
        }
        index += 1

        while index < len(lines) and lines[index].strip():
            header = _HEADER_LINE.match(lines[index])
            if header:
                response["headers"][header.group(1).strip().lower()] = header.group(2).strip()
            index += 1

        response["body"] = "\n".join(lines[index + 1:]).strip()
        return response


class Batch:
    """
    Operations on entities of one table partition, sent as one request.

    Each row key may appear once; a get must be the only operation.

    Example:
        >>> batch = Batch("people", "smith")
        >>> batch.insert("john", {"Age": 42}).delete("jane")
        >>> results = tables.execute_batch(batch)
    """

    def __init__(self, table: str, partition: str):
        self.table = table
        self.partition = partition
        self.operations: List[BatchOperation] = []
        self.entity_keys: List[str] = []
        self.batch_id = f"batch_{uuid.uuid4()}"
        self.changeset_id = f"changeset_{uuid.uuid4()}"

    @property
    def is_get(self) -> bool:
        return bool(self.operations) and self.operations[0].method == "GET"

    def _add_operation(
        self, method: str, row_key: Optional[str] = None, body: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        if self.operations and (method == "GET" or self.is_get):
            raise StorageError("Get operation should be the only operation in the batch.")

        operation_headers = dict(headers or {})
        operation_headers[HeaderConstants.CONTENT_TYPE] = JSON_CONTENT_TYPE
        operation_headers["DataServiceVersion"] = TableConstants.DEFAULT_DATA_SERVICE_VERSION
        self.operations.append(BatchOperation(method=method, row_key=row_key, body=body, headers=operation_headers))

    def _check_entity_key(self, key: str) -> None:
        if key in self.entity_keys:
            raise ValueError(
                "Only allowed to perform a single operation per entity, and there is already a "
                f"operation registered in this batch for the key: {key}."
            )
        self.entity_keys.append(key)

    def insert(self, row_key: str, entity_values: Mapping[str, Any], **options: Any) -> "Batch":
        """
        Insert an entity.

        Args:
            row_key: Row key of the new entity
            entity_values: Entity properties
            **options: accept, prefer
        """
        self._check_entity_key(row_key)
        headers = {"Accept": get_accept_string(options.get("accept"))}
        if options.get("prefer") is not None:
            headers["Prefer"] = options["prefer"]
        body = hash_to_json(
            {TableConstants.PARTITION_KEY: self.partition, TableConstants.ROW_KEY: row_key, **entity_values}
        )
        self._add_operation("POST", None, body, headers)
        return self

    def get(self, row_key: str, **options: Any) -> "Batch":
        """Read one entity. Must be the only operation in the batch."""
        self._check_entity_key(row_key)
        headers = {"Accept": get_accept_string(options.get("accept"))}
        self._add_operation("GET", row_key, None, headers)
        return self

    def update(self, row_key: str, entity_values: Mapping[str, Any], **options: Any) -> "Batch":
        """
        Replace an entity.

        Args:
            **options: if_match (default ``*``), create_if_not_exists, accept
        """
        self._check_entity_key(row_key)
        headers = {"Accept": get_accept_string(options.get("accept"))}
        if not options.get("create_if_not_exists"):
            headers[HeaderConstants.IF_MATCH] = options.get("if_match") or "*"
        self._add_operation("PUT", row_key, hash_to_json(entity_values), headers)
        return self

    def merge(self, row_key: str, entity_values: Mapping[str, Any], **options: Any) -> "Batch":
        """
        Merge properties into an entity.

        Args:
            **options: if_match (default ``*``), create_if_not_exists, accept
        """
        self._check_entity_key(row_key)
        headers = {"Accept": get_accept_string(options.get("accept"))}
        if not options.get("create_if_not_exists"):
            headers[HeaderConstants.IF_MATCH] = options.get("if_match") or "*"
        self._add_operation("MERGE", row_key, hash_to_json(entity_values), headers)
        return self

    def insert_or_merge(self, row_key: str, entity_values: Mapping[str, Any]) -> "Batch":
        return self.merge(row_key, entity_values, create_if_not_exists=True)

    def insert_or_replace(self, row_key: str, entity_values: Mapping[str, Any]) -> "Batch":
        return self.update(row_key, entity_values, create_if_not_exists=True)

    def delete(self, row_key: str, **options: Any) -> "Batch":
        """Delete an entity. ``if_match`` defaults to ``*``."""
        self._check_entity_key(row_key)
        headers = {
            "Accept": get_accept_string(options.get("accept")),
            HeaderConstants.IF_MATCH: options.get("if_match") or "*",
        }
        self._add_operation("DELETE", row_key, None, headers)
        return self

    def to_body(self, table_service: "TableService") -> str:
        """
        Render the multipart request body.

        Args:
            table_service: Service used to build the operation URIs
        """
        is_get = self.is_get
        lines = [f"--{self.batch_id}"]
        if not is_get:
            lines.append(f"Content-Type: multipart/mixed; boundary={self.changeset_id}")
            lines.append("")

        for operation in self.operations:
            operation.uri = table_service.entities_uri(self.table, self.partition, operation.row_key)
            if not is_get:
                lines.append(f"--{self.changeset_id}")
            lines.append("Content-Type: application/http")
            lines.append("Content-Transfer-Encoding: binary")
            lines.append("")
            lines.append(f"{operation.method} {operation.uri} HTTP/1.1")
            for name, value in operation.headers.items():
                lines.append(f"{name}: {value}")
            if operation.body is not None:
                lines.append(f"Content-Length: {len(operation.body.encode('utf-8'))}")
                lines.append("")
                lines.append(operation.body)
            else:
                lines.append("")

        if not is_get:
            lines.append(f"--{self.changeset_id}--")
        lines.append(f"--{self.batch_id}--")
        return "\n".join(lines) + "\n"

    def parse_response(self, response: HttpResponse) -> List[Any]:
        """
        Map a batch response to per operation results.

        Inserts and gets yield an Entity, updates and merges the new ETag,
        deletes None.

        Raises:
            HTTPError: For the first operation that failed
        """
        responses = BatchResponse.parse(response.text, self.is_get)
        results: List[Any] = []
        for operation, part in zip(self.operations, responses):
            if part["status_code"] > 299:
                logger.debug(f"Batch operation {operation.method} {operation.uri} failed with {part['status_code']}")
                raise HTTPError(
                    HttpResponse(
                        part["status_code"],
                        part["headers"],
                        part["body"].encode("utf-8"),
                        uri=operation.uri or "",
                        reason_phrase=part["message"],
                    )
                )

            if operation.method in ("POST", "GET"):
                entity = entity_from_json(part["body"]) if part["body"] else Entity()
                if entity.etag is None:
                    entity.etag = part["headers"].get("etag")
                results.append(entity)
            elif operation.method in ("PUT", "MERGE"):
                results.append(part["headers"].get("etag"))
            else:
                results.append(None)
        return results
