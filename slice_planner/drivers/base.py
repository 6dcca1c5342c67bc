"""
Driver and Adapter Contracts

A QueryDriver owns one backend connection and hands out QueryAdapters,
mutable per-query builders with a uniform fluent surface. The planner
only ever talks to these two contracts.

DESIGN PRINCIPLES:
-----------------
1. Adapter methods return self so calls chain
2. execute() returns a list of dicts (engine-agnostic)
3. Backend failures are wrapped in QueryExecutionError
4. Capability flags (database joins, CTEs) are reported by the driver
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..schema.table import Table
from .grammar import QueryGrammar

logger = logging.getLogger(__name__)

Columns = Union[str, Sequence[str]]

# Comparison operators accepted by where()/join()
OPERATORS = ("=", "==", "!=", "<>", ">", "<", ">=", "<=", "like", "not like")


def as_list(columns: Columns) -> List[str]:
    if isinstance(columns, str):
        return [columns]
    return list(columns)


class QueryAdapter(ABC):
    """
    Fluent query builder bound to one driver.

    Usage:
        rows = (
            driver.create_query("orders")
            .select(["orders.status"])
            .select_raw("SUM(orders.total) AS revenue")
            .group_by("orders.status")
            .execute()
        )
    """

    @abstractmethod
    def select(self, columns: Columns) -> "QueryAdapter":
        """Select plain columns ("table.column" or "column as alias")."""

    @abstractmethod
    def select_raw(self, expression: str) -> "QueryAdapter":
        """Select a raw SQL expression."""

    @abstractmethod
    def from_(self, table: str) -> "QueryAdapter":
        pass

    @abstractmethod
    def from_raw(self, sql: str, alias: str) -> "QueryAdapter":
        """Select from a raw SQL subquery aliased as `alias`."""

    @abstractmethod
    def join(self, table: str, first: str, operator: str, second: str,
             type: str = "inner") -> "QueryAdapter":
        pass

    @abstractmethod
    def cross_join(self, table: str) -> "QueryAdapter":
        pass

    @abstractmethod
    def where(self, column: str, operator: str, value: Any) -> "QueryAdapter":
        pass

    @abstractmethod
    def where_in(self, column: str, values: Sequence[Any]) -> "QueryAdapter":
        pass

    @abstractmethod
    def where_not_in(self, column: str, values: Sequence[Any]) -> "QueryAdapter":
        pass

    @abstractmethod
    def group_by(self, column: str) -> "QueryAdapter":
        pass

    @abstractmethod
    def group_by_raw(self, expression: str) -> "QueryAdapter":
        pass

    @abstractmethod
    def order_by(self, column: str, direction: str = "asc") -> "QueryAdapter":
        pass

    @abstractmethod
    def order_by_raw(self, expression: str) -> "QueryAdapter":
        pass

    @abstractmethod
    def with_expression(self, name: str,
                        query: Union["QueryAdapter", Callable[["QueryAdapter"], Any]]) -> "QueryAdapter":
        """
        Add a common table expression.

        `query` is an adapter, or a callable that receives a fresh adapter
        and fills it in.

        Raises:
            CTEUnsupported: If the backend has no CTE support
        """

    @abstractmethod
    def execute(self) -> List[Dict[str, Any]]:
        """
        Run the query.

        Raises:
            QueryExecutionError: If the backend rejects the query
        """

    @abstractmethod
    def to_sql(self) -> str:
        pass

    @abstractmethod
    def supports_ctes(self) -> bool:
        pass

    @abstractmethod
    def driver_name(self) -> str:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.driver_name()!r})"


class QueryDriver(ABC):
    """
    A backend connection plus its grammar and capabilities.

    Each driver must implement:
    - name(): Backend name (matches the grammar name)
    - create_query(): Fresh adapter, optionally bound to a table
    - grammar(): Dialect rules for time buckets and quoting
    - supports_database_joins() / supports_ctes(): Capability flags
    """

    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def create_query(self, table: Optional[str] = None) -> QueryAdapter:
        pass

    @abstractmethod
    def grammar(self) -> QueryGrammar:
        pass

    def supports_database_joins(self) -> bool:
        return True

    def supports_ctes(self) -> bool:
        return True

    def create_query_for(self, table: Table) -> QueryAdapter:
        """Adapter reading a Table; virtual tables read their SQL as a subquery."""
        if table.is_virtual():
            return self.create_query().from_raw(table.sql, table.name)
        return self.create_query(table.name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name()!r})"
