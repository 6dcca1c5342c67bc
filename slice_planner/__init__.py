"""
Slice Planner - Analytics Query Planning

Resolve metrics and dimensions across schema providers, find the joins
that connect them, and compile one native SQL query per request or, when
the tables live on different backends, a set of per-table queries merged
in process.

Quick Start:
    from slice_planner import (
        DriverManager, ManualSchemaProvider, SchemaRegistry, Slice,
        SqlDriver, Sum, TableDefinition, TimeDimension,
    )

    shop = ManualSchemaProvider("shop", [
        TableDefinition("orders").belongs_to("customer", "customers"),
        TableDefinition("customers"),
    ])
    slice_ = Slice(SchemaRegistry().register(shop), DriverManager(default=SqlDriver.for_sqlite("shop.db")))
    rows = slice_.query([Sum.make("orders.total")], [TimeDimension.make("orders.created_at").daily()])
"""

__version__ = "0.4.0"

from .drivers import ClickHouseDriver, DriverManager, SqlDriver, get_grammar
from .engine import QueryExecutor, QueryPlan, QueryPlanBuilder
from .errors import ErrorCode, SliceError
from .metrics import AggregationCompiler, Avg, Computed, Count, Max, Min, Percentile, Sum
from .schema import (
    BooleanDimension,
    CatalogSchemaProvider,
    Dimension,
    EnumDimension,
    ManualSchemaProvider,
    SchemaRegistry,
    StringDimension,
    TableDefinition,
    TimeDimension,
)
from .slice import Slice

__all__ = [
    "AggregationCompiler",
    "Avg",
    "BooleanDimension",
    "CatalogSchemaProvider",
    "ClickHouseDriver",
    "Computed",
    "Count",
    "Dimension",
    "DriverManager",
    "EnumDimension",
    "ErrorCode",
    "ManualSchemaProvider",
    "Max",
    "Min",
    "Percentile",
    "QueryExecutor",
    "QueryPlan",
    "QueryPlanBuilder",
    "SchemaRegistry",
    "Slice",
    "SliceError",
    "SqlDriver",
    "StringDimension",
    "Sum",
    "TableDefinition",
    "TimeDimension",
    "get_grammar",
]
