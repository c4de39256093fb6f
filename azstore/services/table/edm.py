"""
OData EDM (Entity Data Model) types for Azure Table Storage.

Infers the EDM type of Python values, converts values to and from their
JSON wire form, and renders literals for ``$filter`` expressions.

References:
    - OData v3 Primitive Data Types
    - Azure Table Storage Entity Properties
"""

import base64
import re
import uuid
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Optional, Union

from azstore.services.table.models import Guid

INT32_MAX = 2**31

_DATETIME_PATTERN = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<fraction>\d+))?(?P<tz>Z|[+-]\d{2}:?\d{2})?$"
)


class EdmType(str, Enum):
    """
    Entity Data Model primitive types.

    Represents the set of property types supported by Azure Table Storage.
    """
    STRING = "Edm.String"
    INT32 = "Edm.Int32"
    INT64 = "Edm.Int64"
    DOUBLE = "Edm.Double"
    BOOLEAN = "Edm.Boolean"
    DATETIME = "Edm.DateTime"
    GUID = "Edm.Guid"
    BINARY = "Edm.Binary"

    def is_numeric(self) -> bool:
        """Check if type is numeric (Int32, Int64, Double)."""
        return self in (EdmType.INT32, EdmType.INT64, EdmType.DOUBLE)


def property_type(value: Any) -> Optional[EdmType]:
    """
    Infer the EDM type of a Python value.

    Strings and unknown values are untyped (None) and sent as plain JSON.
    """
    if isinstance(value, bool):
        return EdmType.BOOLEAN
    if isinstance(value, float):
        return EdmType.DOUBLE
    if isinstance(value, int):
        return EdmType.INT32 if abs(value) < INT32_MAX else EdmType.INT64
    if isinstance(value, (datetime, date)):
        return EdmType.DATETIME
    if isinstance(value, (Guid, uuid.UUID)):
        return EdmType.GUID
    if isinstance(value, (bytes, bytearray)):
        return EdmType.BINARY
    return None


def _as_utc(value: Union[datetime, date]) -> datetime:
    if not isinstance(value, datetime):
        return datetime.combine(value, time(), tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_datetime(value: Union[datetime, date]) -> str:
    """Format as ISO-8601 UTC with 7 fractional digits, e.g. ``2024-01-02T03:04:05.1234560Z``."""
    value = _as_utc(value)
    return f"{value.strftime('%Y-%m-%dT%H:%M:%S')}.{value.microsecond:06d}0Z"


def parse_datetime(value: str) -> datetime:
    """
    Parse an EDM DateTime string into an aware datetime.

    Accepts any number of fractional digits; values without an offset
    are UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 date and time
    """
    match = _DATETIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid Edm.DateTime value: {value!r}")
    fraction = ((match.group("fraction") or "") + "000000")[:6]
    tz = match.group("tz") or "Z"
    if tz == "Z":
        tz = "+00:00"
    elif ":" not in tz:
        tz = f"{tz[:3]}:{tz[3:]}"
    return datetime.fromisoformat(f"{match.group('base')}.{fraction}{tz}")


def serialize_value(edm_type: Optional[EdmType], value: Any) -> Any:
    """Convert a value to its JSON representation for the given type."""
    if value is None:
        return None
    if edm_type == EdmType.INT64:
        return str(value)
    if edm_type == EdmType.INT32:
        return int(value)
    if edm_type == EdmType.DOUBLE:
        return float(value)
    if edm_type == EdmType.BOOLEAN:
        return bool(value)
    if edm_type == EdmType.DATETIME:
        return format_datetime(value)
    if edm_type == EdmType.GUID:
        return str(value)
    if edm_type == EdmType.BINARY:
        return base64.b64encode(bytes(value)).decode("ascii")
    return value


def deserialize_value(value: Any, edm_type: Union[EdmType, str, None]) -> Any:
    """
    Convert a JSON value back to Python using its EDM type annotation.

    Without an annotation the JSON value is returned as is.
    """
    if value is None:
        return None
    if edm_type is None or edm_type == "":
        return value
    try:
        edm_type = EdmType(edm_type)
    except ValueError:
        return value

    if edm_type == EdmType.DATETIME:
        return value if isinstance(value, datetime) else parse_datetime(str(value))
    if edm_type == EdmType.DOUBLE:
        return float(value)
    if edm_type in (EdmType.INT32, EdmType.INT64):
        return int(value)
    if edm_type == EdmType.BOOLEAN:
        return value if isinstance(value, bool) else str(value).lower() == "true"
    if edm_type == EdmType.GUID:
        return Guid(str(value))
    if edm_type == EdmType.BINARY:
        return base64.b64decode(str(value))
    return str(value)


def serialize_query_value(value: Any) -> str:
    """
    Render a value as a ``$filter`` literal.

    Examples:
        >>> serialize_query_value(2**40)
        '1099511627776L'
        >>> serialize_query_value("O'Neil")
        "'O''Neil'"
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        value = _as_utc(value)
        text = format_datetime(value) if value.microsecond else value.strftime("%Y-%m-%dT%H:%M:%SZ")
        return f"datetime'{text}'"
    if isinstance(value, int):
        return str(value) if abs(value) < INT32_MAX else f"{value}L"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, (Guid, uuid.UUID)):
        return f"guid'{value}'"
    if isinstance(value, (bytes, bytearray)):
        return f"X'{bytes(value).hex()}'"
    text = "" if value is None else str(value)
    return "'" + text.replace("'", "''") + "'"
