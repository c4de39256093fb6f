"""
Azure Blob Storage Service

Client for Azure Blob Storage containers, block/page/append blobs and leases.
"""

from azstore.services.blob.models import (
    Blob,
    BlobType,
    Block,
    BlockListType,
    Container,
    ContainerNameValidator,
    LeaseState,
    LeaseStatus,
    PublicAccessLevel,
)
from azstore.services.blob.service import BlobService

__all__ = [
    "Blob",
    "BlobService",
    "BlobType",
    "Block",
    "BlockListType",
    "Container",
    "ContainerNameValidator",
    "LeaseState",
    "LeaseStatus",
    "PublicAccessLevel",
]
