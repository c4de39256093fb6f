"""
File Storage Models

Pydantic models for Azure File shares, directories and files.
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ShareNameValidator:
    """
    Validates Azure File share names.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens only
    - Must start and end with letter or number
    - No consecutive hyphens
    """

    PATTERN = re.compile(r'^[a-z0-9]([a-z0-9-]*[a-z0-9])?$')
    MIN_LENGTH = 3
    MAX_LENGTH = 63

    @classmethod
    def validate(cls, name: str) -> tuple[bool, Optional[str]]:
        if not name:
            return False, "Share name cannot be empty"

        if len(name) < cls.MIN_LENGTH:
            return False, f"Share name must be at least {cls.MIN_LENGTH} characters"

        if len(name) > cls.MAX_LENGTH:
            return False, f"Share name must be at most {cls.MAX_LENGTH} characters"

        if not cls.PATTERN.match(name):
            return False, "Share name must contain only lowercase letters, numbers, and hyphens, and must start/end with letter or number"

        if '--' in name:
            return False, "Share name cannot contain consecutive hyphens"

        return True, None

    @classmethod
    def validate_raise(cls, name: str) -> None:
        """
        Validate share name and raise ValueError if invalid.

        Raises:
            ValueError: If name is invalid
        """
        is_valid, error = cls.validate(name)
        if not is_valid:
            raise ValueError(error)


class Share(BaseModel):
    """
    Azure File share.

    ``quota`` is in GiB; ``usage`` is filled by get_share_stats.
    """

    name: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    quota: Optional[int] = None
    usage: Optional[int] = None


class Directory(BaseModel):
    """Azure File directory."""

    name: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class File(BaseModel):
    """Azure File file."""

    name: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
