"""
Pydantic models for Azure Table Storage.

Defines entities returned by the Table service and table naming rules.
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TableNameValidator:
    """Validates Azure Table Storage table naming rules."""

    @staticmethod
    def validate(name: str) -> tuple[bool, Optional[str]]:
        """
        Validate table name against Azure rules.

        Rules:
        - 3-63 characters
        - Alphanumeric only
        - Must start with a letter

        Args:
            name: Table name to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not name:
            return False, "Table name cannot be empty"

        if len(name) < 3 or len(name) > 63:
            return False, f"Table name must be between 3 and 63 characters, got {len(name)}"

        if not re.match(r"^[A-Za-z][A-Za-z0-9]*$", name):
            return False, "Table name must start with a letter and contain only alphanumeric characters"

        return True, None

    @classmethod
    def validate_raise(cls, name: str) -> None:
        is_valid, error = cls.validate(name)
        if not is_valid:
            raise ValueError(error)


class Guid(str):
    """A string sent and received as an ``Edm.Guid`` value."""

    def __repr__(self) -> str:
        return f"Guid({str.__repr__(self)})"


class Entity(BaseModel):
    """
    Azure Table Storage entity.

    ``properties`` includes the PartitionKey, RowKey and Timestamp system
    properties with values converted from their EDM types.
    """

    etag: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)

    @property
    def partition_key(self) -> Optional[str]:
        return self.properties.get("PartitionKey")

    @property
    def row_key(self) -> Optional[str]:
        return self.properties.get("RowKey")
