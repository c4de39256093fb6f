"""
XML serialization helpers shared by the storage services.

Reads and writes service properties, stats, signed identifiers and
metadata, and extracts continuation markers from listing responses.
"""

import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from azstore.core.constants import AclConstants, HeaderConstants
from azstore.core.models import (
    AccessPolicy,
    Cors,
    CorsRule,
    EnumerationResults,
    GeoReplication,
    Logging,
    Metrics,
    RetentionPolicy,
    SignedIdentifier,
    StorageServiceProperties,
    StorageServiceStats,
    UserDelegationKey,
)

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>\n'

XmlInput = Union[str, bytes, ET.Element]


def parse_xml(xml: XmlInput) -> ET.Element:
    """Return the root element of an XML document (or the element itself)."""
    if isinstance(xml, ET.Element):
        return xml
    if isinstance(xml, bytes):
        # Service responses may start with a UTF-8 BOM
        xml = xml.decode("utf-8-sig")
    return ET.fromstring(xml.lstrip("\ufeff").strip())


def to_xml(root: ET.Element) -> str:
    return XML_DECLARATION + ET.tostring(root, encoding="unicode")


def expect_node(node_name: str, element: ET.Element) -> None:
    """
    Check the element name.

    Raises:
        ValueError: If the element is not ``node_name``
    """
    if element.tag != node_name:
        raise ValueError(f"Xml is not a {node_name} node. xml:\n{ET.tostring(element, encoding='unicode')}")


def child_text(element: ET.Element, name: str) -> Optional[str]:
    child = element.find(name)
    if child is None:
        return None
    return child.text or ""


def to_bool(value: Optional[str]) -> bool:
    return (value or "").lower() == "true"


def bool_text(value: Any) -> str:
    return str(bool(value)).lower()


def sub_element(parent: ET.Element, name: str, text: Any = None) -> ET.Element:
    element = ET.SubElement(parent, name)
    if text is not None:
        element.text = bool_text(text) if isinstance(text, bool) else str(text)
    return element


def ary_from_text(text: Optional[str]) -> List[str]:
    return [s.strip() for s in (text or "").split(",") if s.strip()]


def signed_identifiers_from_xml(xml: XmlInput) -> List[SignedIdentifier]:
    """Parse a ``SignedIdentifiers`` document."""
    root = parse_xml(xml)
    expect_node(AclConstants.SIGNED_IDENTIFIERS_ELEMENT, root)
    return [signed_identifier_from_xml(node) for node in root.findall(AclConstants.SIGNED_IDENTIFIER_ELEMENT)]


def signed_identifier_from_xml(element: ET.Element) -> SignedIdentifier:
    expect_node(AclConstants.SIGNED_IDENTIFIER_ELEMENT, element)
    identifier = SignedIdentifier(id=child_text(element, AclConstants.ID))
    policy = element.find(AclConstants.ACCESS_POLICY)
    if policy is not None:
        identifier.access_policy = access_policy_from_xml(policy)
    return identifier


def access_policy_from_xml(element: ET.Element) -> AccessPolicy:
    expect_node(AclConstants.ACCESS_POLICY, element)
    return AccessPolicy(
        start=child_text(element, AclConstants.START),
        expiry=child_text(element, AclConstants.EXPIRY),
        permission=child_text(element, AclConstants.PERMISSION),
    )


def signed_identifiers_to_xml(signed_identifiers: Iterable[SignedIdentifier]) -> str:
    """Build a ``SignedIdentifiers`` request body."""
    root = ET.Element(AclConstants.SIGNED_IDENTIFIERS_ELEMENT)
    for identifier in signed_identifiers:
        node = sub_element(root, AclConstants.SIGNED_IDENTIFIER_ELEMENT)
        sub_element(node, AclConstants.ID, identifier.id or "")
        policy = sub_element(node, AclConstants.ACCESS_POLICY)
        sub_element(policy, AclConstants.START, identifier.access_policy.start or "")
        sub_element(policy, AclConstants.EXPIRY, identifier.access_policy.expiry or "")
        sub_element(policy, AclConstants.PERMISSION, identifier.access_policy.permission or "")
    return to_xml(root)


def enumeration_results_from_xml(
    xml: XmlInput, results: Optional[EnumerationResults] = None
) -> EnumerationResults:
    """Attach the ``NextMarker`` of a listing to its results."""
    root = parse_xml(xml)
    expect_node("EnumerationResults", root)
    if results is None:
        results = EnumerationResults()
    marker = child_text(root, "NextMarker")
    results.continuation_token = marker or None
    return results


def metadata_from_xml(element: ET.Element) -> Dict[str, Any]:
    """
    Read a ``Metadata`` element.

    Keys are lower-cased; repeated keys collect their values in a list.
    """
    expect_node("Metadata", element)
    metadata: Dict[str, Any] = {}
    for node in element:
        _add_metadata_value(metadata, node.tag.lower(), node.text or "")
    return metadata


def metadata_from_headers(headers: Mapping[str, str]) -> Dict[str, Any]:
    """Collect ``x-ms-meta-*`` headers into a dict keyed by the suffix."""
    metadata: Dict[str, Any] = {}
    prefix = HeaderConstants.METADATA_PREFIX
    items = headers.multi_items() if hasattr(headers, "multi_items") else headers.items()
    for key, value in items:
        if key.lower().startswith(prefix):
            _add_metadata_value(metadata, key[len(prefix):].lower(), value)
    return metadata


def _add_metadata_value(metadata: Dict[str, Any], key: str, value: str) -> None:
    if key in metadata:
        if not isinstance(metadata[key], list):
            metadata[key] = [metadata[key]]
        metadata[key].append(value)
    else:
        metadata[key] = value


def _retention_policy_to_xml(policy: Optional[RetentionPolicy], parent: ET.Element) -> None:
    if policy is None:
        return
    node = sub_element(parent, "RetentionPolicy")
    sub_element(node, "Enabled", policy.enabled)
    if policy.enabled and policy.days:
        sub_element(node, "Days", policy.days)


def _retention_policy_from_xml(element: Optional[ET.Element]) -> RetentionPolicy:
    if element is None:
        return RetentionPolicy()
    days = child_text(element, "Days")
    return RetentionPolicy(enabled=to_bool(child_text(element, "Enabled")), days=int(days) if days else None)


def _metrics_to_xml(name: str, metrics: Metrics, parent: ET.Element) -> None:
    node = sub_element(parent, name)
    sub_element(node, "Version", metrics.version)
    sub_element(node, "Enabled", metrics.enabled)
    if metrics.enabled:
        sub_element(node, "IncludeAPIs", bool(metrics.include_apis))
    _retention_policy_to_xml(metrics.retention_policy, node)


def _metrics_from_xml(element: Optional[ET.Element]) -> Metrics:
    if element is None:
        return Metrics()
    metrics = Metrics(retention_policy=_retention_policy_from_xml(element.find("RetentionPolicy")))
    if (version := child_text(element, "Version")) is not None:
        metrics.version = version
    metrics.enabled = to_bool(child_text(element, "Enabled"))
    if (include_apis := child_text(element, "IncludeAPIs")) is not None:
        metrics.include_apis = to_bool(include_apis)
    return metrics


def _logging_from_xml(element: Optional[ET.Element]) -> Logging:
    if element is None:
        return Logging()
    logging = Logging(retention_policy=_retention_policy_from_xml(element.find("RetentionPolicy")))
    if (version := child_text(element, "Version")) is not None:
        logging.version = version
    logging.delete = to_bool(child_text(element, "Delete"))
    logging.read = to_bool(child_text(element, "Read"))
    logging.write = to_bool(child_text(element, "Write"))
    return logging


def _cors_rule_to_xml(rule: CorsRule, parent: ET.Element) -> None:
    node = sub_element(parent, "CorsRule")
    sub_element(node, "AllowedOrigins", ",".join(rule.allowed_origins))
    sub_element(node, "AllowedMethods", ",".join(rule.allowed_methods))
    sub_element(node, "MaxAgeInSeconds", rule.max_age_in_seconds)
    sub_element(node, "ExposedHeaders", ",".join(rule.exposed_headers))
    sub_element(node, "AllowedHeaders", ",".join(rule.allowed_headers))


def _cors_rule_from_xml(element: ET.Element) -> CorsRule:
    expect_node("CorsRule", element)
    max_age = child_text(element, "MaxAgeInSeconds")
    return CorsRule(
        allowed_origins=ary_from_text(child_text(element, "AllowedOrigins")),
        allowed_methods=ary_from_text(child_text(element, "AllowedMethods")),
        max_age_in_seconds=int(max_age) if max_age else 0,
        exposed_headers=ary_from_text(child_text(element, "ExposedHeaders")),
        allowed_headers=ary_from_text(child_text(element, "AllowedHeaders")),
    )


def service_properties_to_xml(properties: StorageServiceProperties) -> str:
    """
    Build a ``StorageServiceProperties`` request body.

    Sections set to None are left out.
    """
    root = ET.Element("StorageServiceProperties")
    if properties.default_service_version:
        sub_element(root, "DefaultServiceVersion", properties.default_service_version)
    if properties.logging is not None:
        node = sub_element(root, "Logging")
        sub_element(node, "Version", properties.logging.version)
        sub_element(node, "Delete", properties.logging.delete)
        sub_element(node, "Read", properties.logging.read)
        sub_element(node, "Write", properties.logging.write)
        _retention_policy_to_xml(properties.logging.retention_policy, node)
    if properties.hour_metrics is not None:
        _metrics_to_xml("HourMetrics", properties.hour_metrics, root)
    if properties.minute_metrics is not None:
        _metrics_to_xml("MinuteMetrics", properties.minute_metrics, root)
    if properties.cors is not None:
        cors = sub_element(root, "Cors")
        for rule in properties.cors.cors_rules:
            _cors_rule_to_xml(rule, cors)
    return to_xml(root)


def service_properties_from_xml(xml: XmlInput) -> StorageServiceProperties:
    """Parse a ``StorageServiceProperties`` response body."""
    root = parse_xml(xml)
    expect_node("StorageServiceProperties", root)
    cors = root.find("Cors")
    return StorageServiceProperties(
        default_service_version=child_text(root, "DefaultServiceVersion"),
        logging=_logging_from_xml(root.find("Logging")),
        hour_metrics=_metrics_from_xml(root.find("HourMetrics")),
        minute_metrics=_metrics_from_xml(root.find("MinuteMetrics")),
        cors=Cors(cors_rules=[_cors_rule_from_xml(rule) for rule in cors] if cors is not None else []),
    )


def service_stats_from_xml(xml: XmlInput) -> StorageServiceStats:
    """Parse a ``StorageServiceStats`` response body."""
    root = parse_xml(xml)
    expect_node("StorageServiceStats", root)
    stats = StorageServiceStats()
    geo = root.find("GeoReplication")
    if geo is not None:
        stats.geo_replication = GeoReplication(
            status=child_text(geo, "Status"),
            last_sync_time=child_text(geo, "LastSyncTime"),
        )
    return stats


def user_delegation_key_from_xml(xml: XmlInput) -> UserDelegationKey:
    root = parse_xml(xml)
    expect_node("UserDelegationKey", root)
    return UserDelegationKey(
        signed_oid=child_text(root, "SignedOid"),
        signed_tid=child_text(root, "SignedTid"),
        signed_start=child_text(root, "SignedStart"),
        signed_expiry=child_text(root, "SignedExpiry"),
        signed_service=child_text(root, "SignedService"),
        signed_version=child_text(root, "SignedVersion"),
        value=child_text(root, "Value"),
    )


_INT_PROPERTIES = {"content_length", "sequence_number", "quota", "committed_block_count", "max_results"}
_BOOL_PROPERTIES = {
    "server_encrypted",
    "incremental_copy",
    "has_immutability_policy",
    "has_legal_hold",
    "access_tier_inferred",
}
_PROPERTY_ALIASES = {"x_ms_blob_sequence_number": "sequence_number", "public_access": "public_access_level"}


def property_name(tag: str) -> str:
    """Convert an XML property element name to snake_case, e.g. ``Last-Modified``."""
    name = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", tag.replace("-", "_")).lower()
    return _PROPERTY_ALIASES.get(name, name)


def convert_property(name: str, value: Optional[str]) -> Any:
    if value is None:
        return None
    if name in _INT_PROPERTIES:
        try:
            return int(value)
        except ValueError:
            return value
    if name in _BOOL_PROPERTIES:
        return to_bool(value)
    return value


def properties_from_xml(element: Optional[ET.Element]) -> Dict[str, Any]:
    """Read a listing ``Properties`` element into a snake_case dict."""
    if element is None:
        return {}
    expect_node("Properties", element)
    properties: Dict[str, Any] = {}
    for node in element:
        name = property_name(node.tag)
        properties[name] = convert_property(name, node.text or "")
    return properties


def properties_from_headers(headers: Mapping[str, str], mapping: Mapping[str, str]) -> Dict[str, Any]:
    """
    Pick response headers into a properties dict.

    Args:
        headers: Response headers
        mapping: Property name -> header name

    Returns:
        Properties for the headers present in the response
    """
    properties: Dict[str, Any] = {}
    for name, header in mapping.items():
        value = headers.get(header)
        if value is not None:
            properties[name] = convert_property(name, value)
    return properties
