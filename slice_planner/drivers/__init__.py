"""
Slice Planner Drivers

Backend access for the planner:
- QueryDriver / QueryAdapter contracts
- Per-dialect grammars (time buckets, identifier quoting)
- SQLGlot-built DB-API driver (sqlite, duckdb)
- ClickHouse driver (clickhouse-connect)
- Driver factory and connection -> driver manager
"""

from .base import QueryAdapter, QueryDriver
from .clickhouse import ClickHouseDriver, ClickHouseQueryAdapter
from .factory import (
    DriverManager,
    create_driver,
    get_driver_class,
    list_drivers,
    register_driver,
)
from .grammar import (
    ClickHouseGrammar,
    DuckDbGrammar,
    FirebirdGrammar,
    MySqlGrammar,
    PostgresGrammar,
    QueryGrammar,
    SingleStoreGrammar,
    SqliteGrammar,
    SqlServerGrammar,
    get_grammar,
)
from .sql import SqlDriver, SqlQueryAdapter

__all__ = [
    "ClickHouseDriver",
    "ClickHouseGrammar",
    "ClickHouseQueryAdapter",
    "DriverManager",
    "DuckDbGrammar",
    "FirebirdGrammar",
    "MySqlGrammar",
    "PostgresGrammar",
    "QueryAdapter",
    "QueryDriver",
    "QueryGrammar",
    "SingleStoreGrammar",
    "SqlDriver",
    "SqlQueryAdapter",
    "SqliteGrammar",
    "SqlServerGrammar",
    "create_driver",
    "get_driver_class",
    "get_grammar",
    "list_drivers",
    "register_driver",
]
