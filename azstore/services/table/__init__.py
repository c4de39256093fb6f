"""
Azure Table Storage Service

Client for Azure Table Storage tables, entities, queries and batches.
"""

from azstore.services.table.batch import Batch, BatchResponse
from azstore.services.table.edm import EdmType
from azstore.services.table.models import Entity, Guid, TableNameValidator
from azstore.services.table.query import Query
from azstore.services.table.service import TableService

__all__ = [
    "Batch",
    "BatchResponse",
    "EdmType",
    "Entity",
    "Guid",
    "Query",
    "TableNameValidator",
    "TableService",
]
