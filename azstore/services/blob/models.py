"""
Blob Storage Models

Pydantic models for Azure Blob Storage containers, blobs and blocks as
returned by the Blob service.
"""

import re
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PublicAccessLevel(str, Enum):
    """Container public access levels."""
    BLOB = "blob"
    CONTAINER = "container"


class LeaseStatus(str, Enum):
    """Container and blob lease status."""
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class LeaseState(str, Enum):
    """Container and blob lease state."""
    AVAILABLE = "available"
    LEASED = "leased"
    EXPIRED = "expired"
    BREAKING = "breaking"
    BROKEN = "broken"


class BlobType(str, Enum):
    """Blob type."""
    BLOCK_BLOB = "BlockBlob"
    APPEND_BLOB = "AppendBlob"
    PAGE_BLOB = "PageBlob"


class BlockListType(str, Enum):
    """Which block list a block id refers to when committing."""
    COMMITTED = "committed"
    UNCOMMITTED = "uncommitted"
    LATEST = "latest"


class ContainerNameValidator:
    """
    Validates Azure Blob Storage container names.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens only
    - Must start and end with letter or number
    - No consecutive hyphens

    The reserved ``$root`` and ``$logs`` containers are accepted.
    """

    PATTERN = re.compile(r'^[a-z0-9]([a-z0-9-]*[a-z0-9])?$')
    MIN_LENGTH = 3
    MAX_LENGTH = 63
    RESERVED = ("$root", "$logs", "$web")

    @classmethod
    def validate(cls, name: str) -> tuple[bool, Optional[str]]:
        """
        Validate container name against Azure rules.

        Args:
            name: Container name to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not name:
            return False, "Container name cannot be empty"

        if name in cls.RESERVED:
            return True, None

        if len(name) < cls.MIN_LENGTH:
            return False, f"Container name must be at least {cls.MIN_LENGTH} characters"

        if len(name) > cls.MAX_LENGTH:
            return False, f"Container name must be at most {cls.MAX_LENGTH} characters"

        if not cls.PATTERN.match(name):
            return False, "Container name must contain only lowercase letters, numbers, and hyphens, and must start/end with letter or number"

        if '--' in name:
            return False, "Container name cannot contain consecutive hyphens"

        return True, None

    @classmethod
    def validate_raise(cls, name: str) -> None:
        """
        Validate container name and raise ValueError if invalid.

        Raises:
            ValueError: If name is invalid
        """
        is_valid, error = cls.validate(name)
        if not is_valid:
            raise ValueError(error)


class Container(BaseModel):
    """
    Azure Blob Storage container.

    ``properties`` holds the values returned by the service (etag,
    last_modified, lease_status, lease_state, lease_duration, ...).
    """

    name: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    public_access_level: Optional[str] = None


class Blob(BaseModel):
    """
    Azure Blob Storage blob.

    ``properties`` holds the values returned by the service (etag,
    last_modified, content_length, content_type, blob_type, copy state, ...).
    """

    name: Optional[str] = None
    snapshot: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Block(BaseModel):
    """A committed or uncommitted block of a block blob."""

    name: str
    size: int = 0
    type: BlockListType = BlockListType.LATEST
