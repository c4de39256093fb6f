"""
Service-level data models shared by the Blob, File and Table services.

Pydantic models for service properties, analytics settings, CORS rules,
replication stats, stored access policies and user delegation keys.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class RetentionPolicy(BaseModel):
    """How long analytics data is kept."""
    enabled: bool = False
    days: Optional[int] = None


class Logging(BaseModel):
    """Storage analytics logging settings."""
    version: str = "1.0"
    delete: bool = False
    read: bool = False
    write: bool = False
    retention_policy: RetentionPolicy = Field(default_factory=RetentionPolicy)


class Metrics(BaseModel):
    """Hour or minute metrics settings."""
    version: str = "1.0"
    enabled: bool = False
    include_apis: Optional[bool] = None
    retention_policy: RetentionPolicy = Field(default_factory=RetentionPolicy)


class CorsRule(BaseModel):
    """A single cross-origin resource sharing rule."""
    allowed_origins: List[str] = Field(default_factory=list)
    allowed_methods: List[str] = Field(default_factory=list)
    max_age_in_seconds: int = 0
    exposed_headers: List[str] = Field(default_factory=list)
    allowed_headers: List[str] = Field(default_factory=list)


class Cors(BaseModel):
    cors_rules: List[CorsRule] = Field(default_factory=list)


class StorageServiceProperties(BaseModel):
    """
    Properties of a storage service endpoint.

    Sections left as None are omitted when the properties are serialized,
    which keeps the service's current value for them.
    """
    logging: Optional[Logging] = Field(default_factory=Logging)
    hour_metrics: Optional[Metrics] = Field(default_factory=Metrics)
    minute_metrics: Optional[Metrics] = Field(default_factory=Metrics)
    cors: Optional[Cors] = Field(default_factory=Cors)
    default_service_version: Optional[str] = None


class GeoReplication(BaseModel):
    """Replication status of the secondary location."""
    status: Optional[str] = None
    last_sync_time: Optional[str] = None


class StorageServiceStats(BaseModel):
    geo_replication: GeoReplication = Field(default_factory=GeoReplication)


class AccessPolicy(BaseModel):
    """Start, expiry and permissions of a stored access policy."""
    start: Optional[str] = None
    expiry: Optional[str] = None
    permission: Optional[str] = None


class SignedIdentifier(BaseModel):
    """A stored access policy attached to a container, share or table."""
    id: Optional[str] = None
    access_policy: AccessPolicy = Field(default_factory=AccessPolicy)


class UserDelegationKey(BaseModel):
    """
    Key obtained from the Blob service for signing user delegation SAS
    tokens.
    """
    signed_oid: Optional[str] = None
    signed_tid: Optional[str] = None
    signed_start: Optional[str] = None
    signed_expiry: Optional[str] = None
    signed_service: Optional[str] = None
    signed_version: Optional[str] = None
    value: Optional[str] = None


class EnumerationResults(list):
    """
    A page of listing results.

    ``continuation_token`` is None on the last page. For XML listings it is
    the ``NextMarker``; table queries use the next table name or a dict of
    ``next_partition_key`` / ``next_row_key``.
    """

    def __init__(self, items: Any = (), continuation_token: Any = None):
        super().__init__(items)
        self.continuation_token = continuation_token
