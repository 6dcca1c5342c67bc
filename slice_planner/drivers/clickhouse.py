"""
ClickHouse Driver for Slice Planner

ClickHouse is ideal for:
- Real-time analytics and OLAP
- Time-series and event data
- Sub-second aggregation over billions of rows

The adapter assembles SQL strings directly (clause by clause) instead of
going through SQLGlot, and runs them with clickhouse-connect. Any plain
callable taking the SQL string can stand in for the client.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

try:
    import clickhouse_connect
    CLICKHOUSE_AVAILABLE = True
except ImportError:
    CLICKHOUSE_AVAILABLE = False
    clickhouse_connect = None

from ..errors import CTEUnsupported, DriverUnavailable, QueryExecutionError
from .base import Columns, QueryAdapter, QueryDriver, as_list
from .grammar import ClickHouseGrammar, QueryGrammar

logger = logging.getLogger(__name__)


def quote_value(value: Any) -> str:
    """Render a literal for inclusion in ClickHouse SQL."""
    if value is None:
        return "NULL"
    # bool before numbers: True is an int
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class ClickHouseQueryAdapter(QueryAdapter):
    """Clause-by-clause SQL builder for ClickHouse."""

    def __init__(self, driver: "ClickHouseDriver", table: Optional[str] = None):
        self._driver = driver
        self._ctes: Dict[str, str] = {}
        self._selects: List[str] = []
        self._from: Optional[str] = table
        self._joins: List[str] = []
        self._wheres: List[str] = []
        self._group_bys: List[str] = []
        self._order_bys: List[str] = []

    def select(self, columns: Columns) -> "ClickHouseQueryAdapter":
        self._selects.extend(as_list(columns))
        return self

    def select_raw(self, expression: str) -> "ClickHouseQueryAdapter":
        self._selects.append(expression)
        return self

    def from_(self, table: str) -> "ClickHouseQueryAdapter":
        self._from = table
        return self

    def from_raw(self, sql: str, alias: str) -> "ClickHouseQueryAdapter":
        self._from = f"({sql}) AS {alias}"
        return self

    def join(self, table: str, first: str, operator: str, second: str,
             type: str = "inner") -> "ClickHouseQueryAdapter":
        self._joins.append(f"{type.upper()} JOIN {table} ON {first} {operator} {second}")
        return self

    def cross_join(self, table: str) -> "ClickHouseQueryAdapter":
        self._joins.append(f"CROSS JOIN {table}")
        return self

    def where(self, column: str, operator: str, value: Any) -> "ClickHouseQueryAdapter":
        self._wheres.append(f"{column} {operator} {quote_value(value)}")
        return self

    def where_in(self, column: str, values: Sequence[Any]) -> "ClickHouseQueryAdapter":
        values = list(values)
        if not values:
            self._wheres.append("0 = 1")
            return self
        value_list = ", ".join(quote_value(v) for v in values)
        self._wheres.append(f"{column} IN ({value_list})")
        return self

    def where_not_in(self, column: str, values: Sequence[Any]) -> "ClickHouseQueryAdapter":
        values = list(values)
        if not values:
            return self
        value_list = ", ".join(quote_value(v) for v in values)
        self._wheres.append(f"{column} NOT IN ({value_list})")
        return self

    def group_by(self, column: str) -> "ClickHouseQueryAdapter":
        self._group_bys.append(column)
        return self

    def group_by_raw(self, expression: str) -> "ClickHouseQueryAdapter":
        self._group_bys.append(expression)
        return self

    def order_by(self, column: str, direction: str = "asc") -> "ClickHouseQueryAdapter":
        self._order_bys.append(f"{column} {direction}")
        return self

    def order_by_raw(self, expression: str) -> "ClickHouseQueryAdapter":
        self._order_bys.append(expression)
        return self

    def with_expression(self, name: str,
                        query: Union[QueryAdapter, Callable[[QueryAdapter], Any]]) -> "ClickHouseQueryAdapter":
        if not self.supports_ctes():
            raise CTEUnsupported(self.driver_name())

        if isinstance(query, QueryAdapter):
            sql = query.to_sql()
        elif callable(query):
            subquery = ClickHouseQueryAdapter(self._driver)
            query(subquery)
            sql = subquery.to_sql()
        else:
            raise TypeError("CTE query must be a QueryAdapter or a callable")

        self._ctes[name] = sql
        return self

    def to_sql(self) -> str:
        parts = []

        if self._ctes:
            parts.append("WITH " + ", ".join(f"{name} AS ({sql})" for name, sql in self._ctes.items()))

        parts.append("SELECT " + (", ".join(self._selects) if self._selects else "*"))

        if self._from:
            parts.append(f"FROM {self._from}")

        parts.extend(self._joins)

        if self._wheres:
            parts.append("WHERE " + " AND ".join(self._wheres))

        if self._group_bys:
            parts.append("GROUP BY " + ", ".join(self._group_bys))

        if self._order_bys:
            parts.append("ORDER BY " + ", ".join(self._order_bys))

        return " ".join(parts)

    def execute(self) -> List[Dict[str, Any]]:
        sql = self.to_sql()
        logger.debug(f"[clickhouse] {sql}")
        client = self._driver.client

        try:
            if hasattr(client, "query"):
                return list(client.query(sql).named_results())
            return list(client(sql))
        except Exception as e:
            raise QueryExecutionError(self.driver_name(), sql, str(e)) from e

    def supports_ctes(self) -> bool:
        return self._driver.supports_ctes()

    def driver_name(self) -> str:
        return self._driver.name()


class ClickHouseDriver(QueryDriver):
    """
    Driver for ClickHouse.

    Config options (used when no client is passed):
        host: ClickHouse server host (default: "localhost")
        port: HTTP port (library default when omitted)
        username: Username (default: "default")
        password: Password (default: "")
        database: Default database (default: "default")
        secure: Use HTTPS/TLS (default: False)
        settings: Dict of ClickHouse query settings

    Example:
        driver = ClickHouseDriver(config={"host": "clickhouse.internal", "database": "events"})
        driver = ClickHouseDriver(client=lambda sql: [{"n": 1}])  # tests
    """

    def __init__(self, client: Any = None, config: Optional[Dict[str, Any]] = None):
        self.config = dict(config or {})
        self.client = client if client is not None else self._create_client()
        self._grammar = ClickHouseGrammar()

    def _create_client(self) -> Any:
        if not CLICKHOUSE_AVAILABLE:
            raise DriverUnavailable("clickhouse", "clickhouse-connect")

        connect_params = {
            "host": self.config.get("host", "localhost"),
            "username": self.config.get("username", "default"),
            "password": self.config.get("password", ""),
            "database": self.config.get("database", "default"),
            "secure": self.config.get("secure", False),
        }
        if self.config.get("port"):
            connect_params["port"] = self.config["port"]
        if self.config.get("settings"):
            connect_params["settings"] = self.config["settings"]

        logger.info(f"Connecting to ClickHouse: {connect_params['host']}")
        return clickhouse_connect.get_client(**connect_params)

    def name(self) -> str:
        return "clickhouse"

    def grammar(self) -> QueryGrammar:
        return self._grammar

    def create_query(self, table: Optional[str] = None) -> ClickHouseQueryAdapter:
        return ClickHouseQueryAdapter(self, table)

    def supports_database_joins(self) -> bool:
        return True

    def supports_ctes(self) -> bool:
        return True
