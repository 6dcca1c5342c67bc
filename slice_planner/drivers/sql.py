"""
SQL Driver using SQLGlot

Builds queries programmatically with SQLGlot and runs them through any
DB-API 2.0 connection (sqlite3, duckdb, ...). Replaces string
concatenation with dialect-aware SQL generation.

Usage:
    driver = SqlDriver.for_sqlite("analytics.db")
    rows = (
        driver.create_query("orders")
        .select(["orders.status"])
        .select_raw('SUM("orders"."total") AS "revenue"')
        .group_by("orders.status")
        .execute()
    )
"""

import logging
import sqlite3
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import sqlglot
from sqlglot import expressions as exp
from sqlglot.errors import ParseError

try:
    import duckdb
    DUCKDB_AVAILABLE = True
except ImportError:
    DUCKDB_AVAILABLE = False
    duckdb = None

from ..errors import CTEUnsupported, DriverUnavailable, QueryExecutionError
from .base import Columns, QueryAdapter, QueryDriver, as_list
from .grammar import QueryGrammar, get_grammar

logger = logging.getLogger(__name__)


_COMPARISONS = {
    "=": exp.EQ,
    "==": exp.EQ,
    "!=": exp.NEQ,
    "<>": exp.NEQ,
    ">": exp.GT,
    ">=": exp.GTE,
    "<": exp.LT,
    "<=": exp.LTE,
    "like": exp.Like,
}


def _split_alias(value: str):
    lowered = value.lower()
    if " as " in lowered:
        index = lowered.index(" as ")
        return value[:index].strip(), value[index + 4:].strip()
    return value.strip(), None


class SqlQueryAdapter(QueryAdapter):
    """
    Query adapter backed by a SQLGlot Select expression.

    Identifiers passed to select()/join()/where() are quoted; raw
    fragments are parsed with the driver's dialect.
    """

    def __init__(self, driver: "SqlDriver", table: Optional[str] = None):
        self._driver = driver
        self._query = exp.Select()
        self._has_select = False
        if table:
            self.from_(table)

    @property
    def dialect(self) -> Optional[str]:
        return self._driver.grammar().dialect

    @property
    def expression(self) -> exp.Select:
        """The SQLGlot expression built so far."""
        if not self._has_select:
            return self._query.copy().select(exp.Star(), copy=False)
        return self._query

    # -------------------------------------------------------------------------
    # Expression helpers
    # -------------------------------------------------------------------------

    def _parse_table(self, table_name: str) -> exp.Table:
        """Parse table name (supports schema.table format)."""
        parts = table_name.split(".", 1)
        if len(parts) == 2:
            return exp.Table(
                this=exp.Identifier(this=parts[1], quoted=True),
                db=exp.Identifier(this=parts[0], quoted=True),
            )
        return exp.Table(this=exp.Identifier(this=table_name, quoted=True))

    def _parse_column(self, column_name: str) -> exp.Column:
        """Parse column name (supports table.column format)."""
        table, _, column = column_name.rpartition(".")
        this = exp.Star() if column == "*" else exp.Identifier(this=column, quoted=True)
        if table:
            return exp.Column(this=this, table=exp.Identifier(this=table, quoted=True))
        return exp.Column(this=this)

    def _parse_expression(self, expression: str) -> exp.Expression:
        try:
            return sqlglot.parse_one(expression, read=self.dialect)
        except ParseError as e:
            logger.debug(f"Keeping unparsable fragment verbatim ({e}): {expression}")
            return exp.Var(this=expression)

    def _comparison(self, left: exp.Expression, operator: str, right: exp.Expression) -> exp.Expression:
        op = operator.strip().lower()
        if op == "not like":
            return exp.Not(this=exp.Like(this=left, expression=right))
        builder = _COMPARISONS.get(op)
        if builder is None:
            raise ValueError(f"Unsupported comparison operator: {operator}")
        return builder(this=left, expression=right)

    # -------------------------------------------------------------------------
    # Builder surface
    # -------------------------------------------------------------------------

    def select(self, columns: Columns) -> "SqlQueryAdapter":
        for column in as_list(columns):
            reference, alias = _split_alias(column)
            expression = self._parse_column(reference)
            if alias:
                expression = exp.alias_(expression, alias, quoted=True)
            self._query.select(expression, copy=False)
            self._has_select = True
        return self

    def select_raw(self, expression: str) -> "SqlQueryAdapter":
        self._query.select(self._parse_expression(expression), copy=False)
        self._has_select = True
        return self

    def from_(self, table: str) -> "SqlQueryAdapter":
        self._query.from_(self._parse_table(table), copy=False)
        return self

    def from_raw(self, sql: str, alias: str) -> "SqlQueryAdapter":
        subquery = sqlglot.parse_one(sql, read=self.dialect).subquery(alias, copy=False)
        self._query.from_(subquery, copy=False)
        return self

    def join(self, table: str, first: str, operator: str, second: str,
             type: str = "inner") -> "SqlQueryAdapter":
        condition = self._comparison(self._parse_column(first), operator, self._parse_column(second))
        join_type = type.lower()
        join = exp.Join(this=self._parse_table(table), on=condition)
        if join_type in ("left", "right", "full"):
            join.set("side", join_type.upper())
        else:
            join.set("kind", join_type.upper())
        self._query.append("joins", join)
        return self

    def cross_join(self, table: str) -> "SqlQueryAdapter":
        self._query.append("joins", exp.Join(this=self._parse_table(table), kind="CROSS"))
        return self

    def where(self, column: str, operator: str, value: Any) -> "SqlQueryAdapter":
        condition = self._comparison(self._parse_column(column), operator, exp.convert(value))
        self._query.where(condition, copy=False)
        return self

    def where_in(self, column: str, values: Sequence[Any]) -> "SqlQueryAdapter":
        values = list(values)
        if not values:
            self._query.where(exp.false(), copy=False)
            return self
        condition = exp.In(this=self._parse_column(column), expressions=[exp.convert(v) for v in values])
        self._query.where(condition, copy=False)
        return self

    def where_not_in(self, column: str, values: Sequence[Any]) -> "SqlQueryAdapter":
        values = list(values)
        if not values:
            return self
        condition = exp.In(this=self._parse_column(column), expressions=[exp.convert(v) for v in values])
        self._query.where(exp.Not(this=condition), copy=False)
        return self

    def group_by(self, column: str) -> "SqlQueryAdapter":
        self._query.group_by(self._parse_column(column), copy=False)
        return self

    def group_by_raw(self, expression: str) -> "SqlQueryAdapter":
        self._query.group_by(self._parse_expression(expression), copy=False)
        return self

    def order_by(self, column: str, direction: str = "asc") -> "SqlQueryAdapter":
        desc = direction.lower() == "desc"
        ordered = exp.Ordered(this=self._parse_column(column), desc=desc, nulls_first=not desc)
        self._query.order_by(ordered, copy=False)
        return self

    def order_by_raw(self, expression: str) -> "SqlQueryAdapter":
        ordered = exp.Ordered(this=self._parse_expression(expression), desc=False, nulls_first=True)
        self._query.order_by(ordered, copy=False)
        return self

    def with_expression(self, name: str,
                        query: Union[QueryAdapter, Callable[[QueryAdapter], Any]]) -> "SqlQueryAdapter":
        if not self.supports_ctes():
            raise CTEUnsupported(self.driver_name())

        if isinstance(query, SqlQueryAdapter):
            subquery = query
        elif callable(query):
            subquery = self._driver.create_query()
            result = query(subquery)
            if isinstance(result, SqlQueryAdapter):
                subquery = result
        else:
            raise TypeError("CTE query must be a SqlQueryAdapter or a callable")

        self._query.with_(name, as_=subquery.expression, copy=False)
        return self

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def to_sql(self) -> str:
        return self.expression.sql(dialect=self.dialect, pretty=False)

    def execute(self) -> List[Dict[str, Any]]:
        sql = self.to_sql()
        logger.debug(f"[{self.driver_name()}] {sql}")

        try:
            cursor = self._driver.connection.cursor()
            try:
                cursor.execute(sql)
                columns = [column[0] for column in cursor.description or ()]
                rows = cursor.fetchall()
            finally:
                cursor.close()
        except Exception as e:
            raise QueryExecutionError(self.driver_name(), sql, str(e)) from e

        return [dict(zip(columns, row)) for row in rows]

    def supports_ctes(self) -> bool:
        return self._driver.supports_ctes()

    def driver_name(self) -> str:
        return self._driver.name()


class SqlDriver(QueryDriver):
    """
    Driver over a DB-API connection.

    Config:
        connection: Open DB-API connection (must provide cursor())
        dialect: Backend name or alias understood by get_grammar()
        name: Driver name override (defaults to the grammar name)
        supports_ctes: Whether WITH clauses may be used
        supports_joins: Whether tables on this driver may be SQL-joined
    """

    def __init__(
        self,
        connection: Any,
        dialect: str,
        name: Optional[str] = None,
        supports_ctes: bool = True,
        supports_joins: bool = True,
    ):
        self.connection = connection
        self._grammar = get_grammar(dialect)
        self._name = name or self._grammar.name()
        self._supports_ctes = supports_ctes
        self._supports_joins = supports_joins

    @classmethod
    def for_sqlite(cls, path: str = ":memory:", **kwargs) -> "SqlDriver":
        return cls(sqlite3.connect(path), "sqlite", **kwargs)

    @classmethod
    def for_duckdb(cls, path: str = ":memory:", read_only: bool = False, **kwargs) -> "SqlDriver":
        if not DUCKDB_AVAILABLE:
            raise DriverUnavailable("duckdb", "duckdb")
        return cls(duckdb.connect(database=path, read_only=read_only), "duckdb", **kwargs)

    def name(self) -> str:
        return self._name

    def grammar(self) -> QueryGrammar:
        return self._grammar

    def create_query(self, table: Optional[str] = None) -> SqlQueryAdapter:
        return SqlQueryAdapter(self, table)

    def supports_database_joins(self) -> bool:
        return self._supports_joins

    def supports_ctes(self) -> bool:
        return self._supports_ctes

    def close(self) -> None:
        """Close the underlying connection."""
        try:
            self.connection.close()
        except Exception as e:
            logger.warning(f"Error closing {self._name} connection: {e}")
