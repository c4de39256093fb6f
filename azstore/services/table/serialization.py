"""
JSON serialization for the Table service.

Entities travel as OData JSON: each typed property is followed by a
``<name>@odata.type`` annotation, and the entity ETag is carried in
``odata.etag``.
"""

import json
from typing import Any, Dict, List, Mapping, Optional, Union

from azstore.core.constants import ODataAccept, TableConstants
from azstore.services.table.edm import deserialize_value, property_type, serialize_value
from azstore.services.table.models import Entity

JsonInput = Union[str, bytes]


def get_accept_string(accept: Optional[str] = None) -> str:
    """
    Resolve the Accept header for a metadata level.

    ``no_meta``, ``min_meta`` (default) and ``full_meta`` map to the OData
    JSON media types; any other string is used as is.
    """
    if accept is None:
        return ODataAccept.MIN_META
    if accept in ("no_meta", "min_meta", "full_meta"):
        return ODataAccept.for_name(accept)
    return accept


def hash_to_json(values: Mapping[str, Any]) -> str:
    """
    Serialize entity properties to OData JSON.

    Annotations already present in ``values`` are kept as given.
    """
    document: Dict[str, Any] = {}
    for key, value in values.items():
        edm_type = property_type(value)
        document[key] = serialize_value(edm_type, value)
        type_key = f"{key}{TableConstants.ODATA_TYPE_SUFFIX}"
        if edm_type is not None and type_key not in values:
            document[type_key] = edm_type.value
    return json.dumps(document)


def hash_from_json(data: JsonInput) -> Dict[str, Any]:
    if isinstance(data, bytes):
        data = data.decode("utf-8-sig")
    return json.loads(data)


def table_entries_from_json(data: JsonInput) -> Union[List[Dict[str, Any]], Dict[str, Any]]:
    """
    Read a table listing or a single table entry.

    Returns:
        The ``value`` list of a Query Tables response, or the entry itself
        when the document describes one table
    """
    document = hash_from_json(data)
    if "value" in document:
        return list(document["value"])
    if TableConstants.TABLE_NAME in document:
        return document
    return []


def entity_from_dict(document: Mapping[str, Any]) -> Entity:
    """
    Build an Entity from an OData JSON object.

    Annotated properties are converted to their EDM type; ``odata.*``
    metadata and the annotations themselves are dropped.
    """
    properties: Dict[str, Any] = {}
    for key, value in document.items():
        if key.startswith(TableConstants.ODATA_PREFIX) or key.endswith(TableConstants.ODATA_TYPE_SUFFIX):
            continue
        edm_type = document.get(f"{key}{TableConstants.ODATA_TYPE_SUFFIX}")
        properties[key] = deserialize_value(value, edm_type)
    return Entity(etag=document.get(TableConstants.ODATA_ETAG), properties=properties)


def entity_from_json(data: JsonInput) -> Entity:
    return entity_from_dict(hash_from_json(data))


def entities_from_json(data: JsonInput) -> List[Entity]:
    """Read a Query Entities response, or a single entity document."""
    document = hash_from_json(data)
    if "value" not in document:
        return [entity_from_dict(document)]
    return [entity_from_dict(item) for item in document["value"]]
