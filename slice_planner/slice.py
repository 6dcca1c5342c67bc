"""
Slice - Query Facade

Composition root for the planner. A Slice owns one schema registry, one
driver manager and one aggregation compiler, and wires them into a plan
builder and an executor.

Usage:
    registry = SchemaRegistry().register(ManualSchemaProvider("shop", [...]))
    drivers = DriverManager(default=SqlDriver.for_sqlite("shop.db"))
    slice_ = Slice(registry, drivers)

    rows = slice_.query(
        [Sum.make("orders.total"), Count.make("orders.id")],
        [TimeDimension.make("orders.created_at").monthly()],
    )
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .core.config import Settings, create_schema_cache, get_settings
from .core.logging import configure_logging
from .drivers.factory import DriverManager
from .engine.builder import MetricInput, QueryPlanBuilder
from .engine.executor import QueryExecutor
from .engine.plans import QueryPlan
from .metrics.aggregations import Aggregation
from .metrics.compiler import AggregationCompiler
from .schema.catalog import CatalogSchemaProvider
from .schema.dimensions import Dimension
from .schema.registry import SchemaRegistry
from .schema.table import MetricSource

logger = logging.getLogger(__name__)


class Slice:
    """Plans and runs metric queries against registered schemas."""

    def __init__(
        self,
        registry: SchemaRegistry,
        drivers: DriverManager,
        compiler: Optional[AggregationCompiler] = None,
        default_join_type: str = "left",
        executor: Optional[QueryExecutor] = None,
    ):
        self.registry = registry
        self.drivers = drivers
        self.compiler = compiler or AggregationCompiler.with_defaults()
        self.builder = QueryPlanBuilder(registry, drivers, self.compiler, default_join_type=default_join_type)
        self.executor = executor or QueryExecutor()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None,
                      drivers: Optional[DriverManager] = None,
                      compiler: Optional[AggregationCompiler] = None) -> "Slice":
        """
        Build a Slice from Settings.

        Logging is configured from log_level / log_format. The schema cache
        comes from the settings; when catalog paths are configured a
        CatalogSchemaProvider is registered for them.
        """
        settings = settings or get_settings()
        configure_logging(settings.log_level, settings.log_format)
        registry = SchemaRegistry(cache=create_schema_cache(settings))

        if settings.catalog_paths:
            registry.register(CatalogSchemaProvider(
                settings.catalog_name,
                settings.catalog_paths,
                connection=settings.catalog_connection,
            ))

        logger.info(
            f"Slice configured: cache={settings.schema_cache_backend}, "
            f"providers={list(registry.providers())}"
        )
        return cls(
            registry,
            drivers or DriverManager(),
            compiler=compiler,
            default_join_type=settings.default_join_type,
        )

    def normalize_metrics(self, metrics: Iterable[Aggregation]) -> List[Tuple[MetricSource, Aggregation]]:
        return self.registry.normalize_metrics(metrics)

    def plan(self, metrics: Sequence[MetricInput], dimensions: Sequence[Dimension] = ()) -> QueryPlan:
        return self.builder.build(metrics, dimensions)

    def query(self, metrics: Sequence[MetricInput], dimensions: Sequence[Dimension] = ()) -> List[Dict[str, Any]]:
        """Plan and execute, returning one dict per result row."""
        plan = self.plan(metrics, dimensions)
        return self.executor.run(plan)

    def explain(self, metrics: Sequence[MetricInput], dimensions: Sequence[Dimension] = ()) -> Dict[str, Any]:
        return self.plan(metrics, dimensions).to_dict()
