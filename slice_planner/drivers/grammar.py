"""
Query Grammars

Per-dialect SQL fragment rules: time bucketing and identifier quoting.

Each grammar owns one time-bucket table mapping granularity -> SQL
template; "{col}" is replaced with "table.column". Identifier quoting is
delegated to SQLGlot so every dialect quotes (and escapes) the way its
engine expects.

Usage:
    grammar = get_grammar("postgres")
    grammar.format_time_bucket("orders", "created_at", "month")
    # DATE_TRUNC('month', orders.created_at)
    grammar.wrap("orders.total")
    # "orders"."total"
"""

import logging
from typing import Dict, List, Optional, Type

from sqlglot import expressions as exp

from ..errors import UnsupportedDialect, UnsupportedGranularity

logger = logging.getLogger(__name__)


class QueryGrammar:
    """
    Base grammar.

    Subclasses set NAME (the backend name aggregation compilers are keyed
    by), DIALECT (the SQLGlot dialect) and TIME_BUCKETS.
    """

    NAME: str = "generic"
    DIALECT: Optional[str] = None
    TIME_BUCKETS: Dict[str, str] = {}

    def name(self) -> str:
        return self.NAME

    @property
    def dialect(self) -> Optional[str]:
        return self.DIALECT

    def supported_granularities(self) -> List[str]:
        return list(self.TIME_BUCKETS)

    def supports_granularity(self, granularity: str) -> bool:
        return str(getattr(granularity, "value", granularity)).lower() in self.TIME_BUCKETS

    def format_time_bucket(self, table: Optional[str], column: str, granularity) -> str:
        """
        SQL expression truncating `table.column` to `granularity`.

        Raises:
            UnsupportedGranularity: If this dialect has no bucket for it
        """
        key = str(getattr(granularity, "value", granularity)).lower()
        template = self.TIME_BUCKETS.get(key)
        if template is None:
            raise UnsupportedGranularity(key, grammar=self.NAME)

        full_column = f"{table}.{column}" if table else column
        return template.format(col=full_column)

    def wrap(self, value: str) -> str:
        """Quote an identifier (dotted parts quoted separately; * passes through)."""
        if value == "*":
            return value

        lowered = value.lower()
        if " as " in lowered:
            index = lowered.index(" as ")
            return f"{self.wrap(value[:index].strip())} AS {self.wrap(value[index + 4:].strip())}"

        return ".".join(self._wrap_segment(part) for part in value.split("."))

    def _wrap_segment(self, segment: str) -> str:
        if segment == "*":
            return segment
        return exp.to_identifier(segment, quoted=True).sql(dialect=self.DIALECT)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MySqlGrammar(QueryGrammar):
    NAME = "mysql"
    DIALECT = "mysql"
    TIME_BUCKETS = {
        "minute": "DATE_FORMAT({col}, '%Y-%m-%d %H:%i:00')",
        "hour": "DATE_FORMAT({col}, '%Y-%m-%d %H:00:00')",
        "day": "DATE({col})",
        "week": "DATE_FORMAT({col}, '%Y-%u')",
        "month": "DATE_FORMAT({col}, '%Y-%m')",
        "year": "YEAR({col})",
    }


class SingleStoreGrammar(MySqlGrammar):
    """SingleStore speaks the MySQL wire dialect."""
    NAME = "singlestore"
    TIME_BUCKETS = {
        "hour": "DATE_FORMAT({col}, '%Y-%m-%d %H:00:00')",
        "day": "DATE({col})",
        "week": "DATE_FORMAT({col}, '%Y-%u')",
        "month": "DATE_FORMAT({col}, '%Y-%m')",
        "year": "YEAR({col})",
    }


class PostgresGrammar(QueryGrammar):
    NAME = "postgres"
    DIALECT = "postgres"
    TIME_BUCKETS = {
        "minute": "DATE_TRUNC('minute', {col})",
        "hour": "DATE_TRUNC('hour', {col})",
        "day": "DATE_TRUNC('day', {col})",
        "week": "DATE_TRUNC('week', {col})",
        "month": "DATE_TRUNC('month', {col})",
        "quarter": "DATE_TRUNC('quarter', {col})",
        "year": "DATE_TRUNC('year', {col})",
    }


class SqliteGrammar(QueryGrammar):
    NAME = "sqlite"
    DIALECT = "sqlite"
    TIME_BUCKETS = {
        "hour": "strftime('%Y-%m-%d %H:00:00', {col})",
        "day": "date({col})",
        "week": "date({col}, 'weekday 0', '-6 days')",
        "month": "strftime('%Y-%m-01', {col})",
        "year": "strftime('%Y-01-01', {col})",
    }


class SqlServerGrammar(QueryGrammar):
    NAME = "sqlserver"
    DIALECT = "tsql"
    TIME_BUCKETS = {
        "hour": "DATEADD(hour, DATEDIFF(hour, 0, {col}), 0)",
        "day": "CAST({col} AS DATE)",
        "week": "DATEADD(week, DATEDIFF(week, 0, {col}), 0)",
        "month": "DATEADD(month, DATEDIFF(month, 0, {col}), 0)",
        "year": "DATEADD(year, DATEDIFF(year, 0, {col}), 0)",
    }


class ClickHouseGrammar(QueryGrammar):
    NAME = "clickhouse"
    DIALECT = "clickhouse"
    TIME_BUCKETS = {
        "hour": "toStartOfHour({col})",
        "day": "toStartOfDay({col})",
        "week": "toMonday({col})",
        "month": "toStartOfMonth({col})",
        "year": "toStartOfYear({col})",
    }


class FirebirdGrammar(QueryGrammar):
    NAME = "firebird"
    TIME_BUCKETS = {
        "hour": "CAST(CAST({col} AS DATE) || ' ' || EXTRACT(HOUR FROM {col}) || ':00:00' AS TIMESTAMP)",
        "day": "CAST({col} AS DATE)",
        "week": "DATEADD(day, -EXTRACT(WEEKDAY FROM {col}), CAST({col} AS DATE))",
        "month": "CAST(EXTRACT(YEAR FROM {col}) || '-' || EXTRACT(MONTH FROM {col}) || '-01' AS DATE)",
        "year": "CAST(EXTRACT(YEAR FROM {col}) || '-01-01' AS DATE)",
    }


class DuckDbGrammar(QueryGrammar):
    NAME = "duckdb"
    DIALECT = "duckdb"
    TIME_BUCKETS = {
        "minute": "date_trunc('minute', {col})",
        "hour": "date_trunc('hour', {col})",
        "day": "date_trunc('day', {col})",
        "week": "date_trunc('week', {col})",
        "month": "date_trunc('month', {col})",
        "quarter": "date_trunc('quarter', {col})",
        "year": "date_trunc('year', {col})",
    }


# =============================================================================
# GRAMMAR REGISTRY
# =============================================================================

GRAMMARS: Dict[str, Type[QueryGrammar]] = {
    grammar.NAME: grammar
    for grammar in (
        MySqlGrammar,
        SingleStoreGrammar,
        PostgresGrammar,
        SqliteGrammar,
        SqlServerGrammar,
        ClickHouseGrammar,
        FirebirdGrammar,
        DuckDbGrammar,
    )
}

GRAMMAR_ALIASES = {
    "pgsql": "postgres",
    "postgresql": "postgres",
    "timescaledb": "postgres",
    "mariadb": "mysql",
    "mssql": "sqlserver",
    "sqlsrv": "sqlserver",
    "tsql": "sqlserver",
    "sqlite3": "sqlite",
}


def get_grammar(name: str) -> QueryGrammar:
    """
    Get a grammar instance by backend name or alias.

    Raises:
        UnsupportedDialect: If no grammar is registered under the name
    """
    key = name.lower()
    key = GRAMMAR_ALIASES.get(key, key)
    grammar_cls = GRAMMARS.get(key)
    if grammar_cls is None:
        raise UnsupportedDialect(name, sorted(GRAMMARS))
    return grammar_cls()
