"""
Pytest configuration and shared fixtures for slice-planner tests.
"""

import sqlite3
from typing import Any, Dict, List, Optional

import pytest

from slice_planner.drivers import DriverManager, SqlDriver, get_grammar
from slice_planner.drivers.base import QueryAdapter, QueryDriver, as_list
from slice_planner.metrics import AggregationCompiler
from slice_planner.schema import (
    ManualSchemaProvider,
    SchemaRegistry,
    StringDimension,
    TableDefinition,
    TimeDimension,
)


# =============================================================================
# RECORDING FAKES
# =============================================================================

class RecordingAdapter(QueryAdapter):
    """Adapter that records every builder call and returns canned rows."""

    def __init__(self, driver: "RecordingDriver", table: Optional[str] = None):
        self.driver = driver
        self.table = table
        self.calls: List[tuple] = []

    def _record(self, method: str, *args: Any) -> "RecordingAdapter":
        self.calls.append((method,) + args)
        return self

    def called(self, method: str) -> List[tuple]:
        return [call[1:] for call in self.calls if call[0] == method]

    def select(self, columns):
        for column in as_list(columns):
            self._record("select", column)
        return self

    def select_raw(self, expression):
        return self._record("select_raw", expression)

    def from_(self, table):
        self.table = table
        return self._record("from", table)

    def from_raw(self, sql, alias):
        self.table = alias
        return self._record("from_raw", sql, alias)

    def join(self, table, first, operator, second, type="inner"):
        return self._record("join", table, first, operator, second, type)

    def cross_join(self, table):
        return self._record("cross_join", table)

    def where(self, column, operator, value):
        return self._record("where", column, operator, value)

    def where_in(self, column, values):
        return self._record("where_in", column, list(values))

    def where_not_in(self, column, values):
        return self._record("where_not_in", column, list(values))

    def group_by(self, column):
        return self._record("group_by", column)

    def group_by_raw(self, expression):
        return self._record("group_by_raw", expression)

    def order_by(self, column, direction="asc"):
        return self._record("order_by", column, direction)

    def order_by_raw(self, expression):
        return self._record("order_by_raw", expression)

    def with_expression(self, name, query):
        return self._record("with", name)

    def execute(self) -> List[Dict[str, Any]]:
        self.driver.executed.append(self.table)
        return [dict(row) for row in self.driver.rows.get(self.table, [])]

    def to_sql(self) -> str:
        return f"-- {self.driver.name()}: {self.calls!r}"

    def supports_ctes(self) -> bool:
        return True

    def driver_name(self) -> str:
        return self.driver.name()


class RecordingDriver(QueryDriver):
    """Driver handing out RecordingAdapters; rows are keyed by table name."""

    def __init__(self, name: str = "recording", dialect: str = "postgres",
                 supports_joins: bool = True, rows: Optional[Dict[str, List[dict]]] = None):
        self._name = name
        self._grammar = get_grammar(dialect)
        self._supports_joins = supports_joins
        self.rows = rows or {}
        self.adapters: List[RecordingAdapter] = []
        self.executed: List[str] = []

    def name(self) -> str:
        return self._name

    def grammar(self):
        return self._grammar

    def create_query(self, table: Optional[str] = None) -> RecordingAdapter:
        adapter = RecordingAdapter(self)
        if table:
            adapter.from_(table)
        self.adapters.append(adapter)
        return adapter

    def supports_database_joins(self) -> bool:
        return self._supports_joins


@pytest.fixture
def recording_driver():
    """A postgres-flavoured recording driver."""
    return RecordingDriver()


# =============================================================================
# SCHEMA FIXTURES
# =============================================================================

@pytest.fixture
def shop_provider():
    """Orders and customers on the shop's main connection."""
    return ManualSchemaProvider("shop", [
        TableDefinition("orders")
            .primary_key("id")
            .columns("id", "customer_id", "status", "total", "created_at")
            .belongs_to("customer", "customers", foreign_key="customer_id")
            .dimension(
                TimeDimension.make("created_at"),
                StringDimension.make("status"),
            ),
        TableDefinition("customers")
            .primary_key("id")
            .columns("id", "name", "country")
            .has_many("tickets", "crm:tickets", foreign_key="customer_id")
            .dimension(StringDimension.make("country")),
    ], connection="main")


@pytest.fixture
def crm_provider():
    """Support tickets on a separate connection."""
    return ManualSchemaProvider("crm", [
        TableDefinition("tickets")
            .primary_key("id")
            .columns("id", "customer_id", "priority", "opened_at")
            .belongs_to("customer", "shop:customers", foreign_key="customer_id")
            .dimension(StringDimension.make("priority")),
    ], connection="support")


@pytest.fixture
def registry(shop_provider):
    return SchemaRegistry().register(shop_provider)


@pytest.fixture
def multi_registry(shop_provider, crm_provider):
    return SchemaRegistry().register(shop_provider).register(crm_provider)


@pytest.fixture
def compiler():
    """A fresh compiler with the built-in entries."""
    return AggregationCompiler.with_defaults()


# =============================================================================
# SQLITE FIXTURES
# =============================================================================

SHOP_SQL = """
CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT, country TEXT);
CREATE TABLE orders (
    id INTEGER PRIMARY KEY,
    customer_id INTEGER,
    status TEXT,
    total REAL,
    created_at TEXT
);
INSERT INTO customers VALUES (1, 'Alice', 'US'), (2, 'Bob', 'US'), (3, 'Chloe', 'FR'), (4, 'Dan', 'DE');
INSERT INTO orders VALUES
    (1, 1, 'paid', 100.0, '2024-01-01 10:00:00'),
    (2, 1, 'paid', 50.0, '2024-01-02 11:30:00'),
    (3, 2, 'refunded', 30.0, '2024-01-02 09:15:00'),
    (4, 3, 'paid', 20.5, '2024-01-03 17:45:00');
"""

CRM_SQL = """
CREATE TABLE tickets (id INTEGER PRIMARY KEY, customer_id INTEGER, priority TEXT, opened_at TEXT);
INSERT INTO tickets VALUES
    (1, 1, 'high', '2024-01-01 12:00:00'),
    (2, 1, 'low', '2024-01-04 08:00:00'),
    (3, 3, 'high', '2024-01-05 14:00:00');
"""


def _seeded_sqlite(script: str) -> SqlDriver:
    connection = sqlite3.connect(":memory:")
    connection.executescript(script)
    return SqlDriver(connection, "sqlite")


@pytest.fixture
def shop_driver():
    """In-memory sqlite database with customers and orders."""
    driver = _seeded_sqlite(SHOP_SQL)
    yield driver
    driver.close()


@pytest.fixture
def crm_driver():
    """A second in-memory sqlite database holding support tickets."""
    driver = _seeded_sqlite(CRM_SQL)
    yield driver
    driver.close()


@pytest.fixture
def sqlite_drivers(shop_driver, crm_driver):
    return (
        DriverManager()
        .register("main", shop_driver, provider="shop")
        .register("support", crm_driver, provider="crm")
    )


@pytest.fixture
def make_driver():
    """Factory for extra recording drivers (name, dialect, supports_joins, rows)."""
    return RecordingDriver
