"""
Fluent entity query builder for the Table service.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from azstore.core.models import EnumerationResults
from azstore.services.table.edm import serialize_query_value

if TYPE_CHECKING:
    from azstore.services.table.service import TableService


class Query:
    """
    Builds and runs a Query Entities request.

    Example:
        >>> results = (
        ...     Query(service=tables)
        ...     .from_table("people")
        ...     .partition("smith")
        ...     .select("Name", "Age")
        ...     .where("Age", "gt", 30)
        ...     .top(10)
        ...     .execute()
        ... )
    """

    def __init__(
        self,
        table: str = "",
        partition: Optional[str] = None,
        row: Optional[str] = None,
        service: Optional["TableService"] = None,
    ):
        self.table = table
        self.partition_key = partition
        self.row_key = row
        self.fields: List[str] = []
        self.filters: List[Tuple[Any, ...]] = []
        self.top_n: Optional[int] = None
        self.next_partition_key: Optional[str] = None
        self.next_row_key: Optional[str] = None
        self.table_service = service

    def from_table(self, table_name: str) -> "Query":
        self.table = table_name
        return self

    def partition(self, partition_key: str) -> "Query":
        self.partition_key = partition_key
        return self

    def row(self, row_key: str) -> "Query":
        self.row_key = row_key
        return self

    def select(self, *fields: str) -> "Query":
        self.fields.extend(str(field) for field in fields)
        return self

    def where(self, *clause: Any) -> "Query":
        """
        Add a filter clause; clauses are joined with ``and``.

        Either ``where("Age gt 30")`` with a raw expression, or
        ``where("Age", "gt", 30)`` with the value rendered as a literal.
        """
        if len(clause) not in (1, 3):
            raise ValueError("where() takes a raw filter or a (field, operator, value) triple")
        self.filters.append(clause)
        return self

    def top(self, n: int) -> "Query":
        self.top_n = int(n)
        return self

    def next_partition(self, next_partition_key: Optional[str]) -> "Query":
        self.next_partition_key = next_partition_key
        return self

    def next_row(self, next_row_key: Optional[str]) -> "Query":
        self.next_row_key = next_row_key
        return self

    def build_filter_string(self) -> Optional[str]:
        clauses = []
        for clause in self.filters:
            if len(clause) == 1:
                clauses.append(str(clause[0]))
            else:
                field, operator, value = clause
                clauses.append(f"{field} {operator} {serialize_query_value(value)}")
        return " and ".join(clauses) if clauses else None

    def to_options(self) -> Dict[str, Any]:
        """Options for TableService.query_entities."""
        options: Dict[str, Any] = {
            "partition_key": self.partition_key,
            "row_key": self.row_key,
            "select": list(self.fields) or None,
            "filter": self.build_filter_string(),
            "top": self.top_n,
        }
        if self.next_partition_key or self.next_row_key:
            options["continuation_token"] = {
                "next_partition_key": self.next_partition_key,
                "next_row_key": self.next_row_key,
            }
        return options

    def execute(self, service: Optional["TableService"] = None) -> EnumerationResults:
        """
        Run the query.

        Args:
            service: TableService to use instead of the one given at
                construction

        Raises:
            ValueError: If no table or service is set
        """
        service = service or self.table_service
        if service is None:
            raise ValueError("Query needs a TableService to execute")
        if not self.table:
            raise ValueError("Query needs a table name")
        return service.query_entities(self.table, **self.to_options())
