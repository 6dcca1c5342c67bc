"""
Query Plans

Immutable descriptions of how a request will be answered. Builders
produce them, the executor consumes them; nothing here touches a backend.

PLAN SHAPES:
------------
EmptyJoinPlan       Every metric and dimension lives on one table
DatabaseJoinPlan    All tables share a joinable connection; one SQL query
SoftwareJoinPlan    Tables span backends; one query per table, merged in
                    process by hash-join
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from ..drivers.base import QueryAdapter
from ..metrics.aggregations import Aggregation
from ..metrics.computed import Computed
from ..schema.relations import RelationDescriptor
from ..schema.table import MetricSource, Table


@dataclass(frozen=True)
class JoinSpecification:
    """One directed join step between two tables."""
    from_table: str
    to_table: str
    relation: RelationDescriptor
    type: str = "left"
    from_identifier: Optional[str] = None
    to_identifier: Optional[str] = None

    def key(self) -> str:
        return f"{self.from_table}->{self.to_table}"

    def foreign_key(self) -> Optional[str]:
        return self.relation.key("foreign")

    def owner_key(self) -> Optional[str]:
        return self.relation.key("owner")

    def local_key(self) -> Optional[str]:
        return self.relation.key("local")

    def related_key(self) -> Optional[str]:
        return self.relation.key("related")

    def pivot_table(self) -> Optional[str]:
        return self.relation.pivot

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_table,
            "to": self.to_table,
            "type": self.type,
            "relation": self.relation.to_dict(),
            "fromIdentifier": self.from_identifier,
            "toIdentifier": self.to_identifier,
        }


# =============================================================================
# JOIN PLANS
# =============================================================================

@dataclass(frozen=True)
class EmptyJoinPlan:
    """No joins: the request touches a single table."""

    def is_empty(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "empty"}


@dataclass(frozen=True)
class DatabaseJoinPlan:
    """Joins executed by the database in a single query."""
    joins: Tuple[JoinSpecification, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "joins", tuple(self.joins))

    def is_empty(self) -> bool:
        return not self.joins

    def tables(self) -> List[str]:
        names: Dict[str, bool] = {}
        for join in self.joins:
            names[join.from_table] = True
            names[join.to_table] = True
        return list(names)

    def __iter__(self) -> Iterator[JoinSpecification]:
        return iter(self.joins)

    def __len__(self) -> int:
        return len(self.joins)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "database", "joins": [join.to_dict() for join in self.joins]}


@dataclass(frozen=True)
class TablePlan:
    """The per-table query of a software join."""
    table: Table
    adapter: QueryAdapter
    is_primary: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table.identifier,
            "driver": self.adapter.driver_name(),
            "isPrimary": self.is_primary,
            "sql": self.adapter.to_sql(),
        }


@dataclass(frozen=True)
class JoinRelation:
    """
    An in-process join between two table results.

    from_alias / to_alias name the key columns in each side's rows.
    """
    key: str
    from_table: str
    to_table: str
    type: str
    from_alias: str
    to_alias: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "from": self.from_table,
            "to": self.to_table,
            "type": self.type,
            "fromAlias": self.from_alias,
            "toAlias": self.to_alias,
        }


@dataclass(frozen=True)
class SoftwareJoinPlan:
    """
    Per-table queries plus the recipe to merge them.

    Attributes:
        primary_table: Name of the table the merge starts from
        table_plans: Table name -> TablePlan (exactly one is primary)
        relations: Join edges between table results
        dimension_order: Dimension aliases, in request order
        metric_aliases: Metric aliases, in request order
        metric_rollups: Metric alias -> rollup ("sum", "min", "max", "avg")
        dimension_filters: Dimension alias -> {"only"|"except"|"where": ...}
        join_aliases: Key columns to drop from the final rows
    """
    primary_table: str
    table_plans: Mapping[str, TablePlan]
    relations: Tuple[JoinRelation, ...] = ()
    dimension_order: Tuple[str, ...] = ()
    metric_aliases: Tuple[str, ...] = ()
    metric_rollups: Mapping[str, Optional[str]] = field(default_factory=dict)
    dimension_filters: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    join_aliases: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "relations", tuple(self.relations))
        object.__setattr__(self, "dimension_order", tuple(self.dimension_order))
        object.__setattr__(self, "metric_aliases", tuple(self.metric_aliases))
        object.__setattr__(self, "join_aliases", tuple(self.join_aliases))

    def is_empty(self) -> bool:
        return False

    def table_plan(self, table: str) -> Optional[TablePlan]:
        return self.table_plans.get(table)

    def primary_plan(self) -> TablePlan:
        return self.table_plans[self.primary_table]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "software",
            "primaryTable": self.primary_table,
            "tablePlans": {name: plan.to_dict() for name, plan in self.table_plans.items()},
            "relations": [relation.to_dict() for relation in self.relations],
            "dimensionOrder": list(self.dimension_order),
            "metricAliases": list(self.metric_aliases),
            "metricRollups": dict(self.metric_rollups),
            "joinAliases": list(self.join_aliases),
        }


JoinPlan = Union[EmptyJoinPlan, DatabaseJoinPlan, SoftwareJoinPlan]


def _new_plan_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class ComputedMetricPlan:
    """A computed metric, evaluated per result row once its dependencies exist."""
    alias: str
    metric: Computed
    level: int
    strategy: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alias": self.alias,
            "expression": self.metric.get_expression(),
            "dependencies": self.metric.get_dependencies(),
            "level": self.level,
            "strategy": self.strategy,
        }


# =============================================================================
# QUERY PLAN
# =============================================================================

@dataclass(frozen=True)
class QueryPlan:
    """
    A fully resolved request, ready for QueryExecutor.run().

    `adapter` is set for empty and database join plans (the single native
    query); software join plans carry one adapter per TablePlan instead.
    """
    primary_table: str
    tables: Mapping[str, Table]
    metrics: Mapping[str, MetricSource]
    aggregations: Mapping[str, Aggregation]
    dimension_order: Tuple[str, ...]
    join_plan: JoinPlan
    adapter: Optional[QueryAdapter] = None
    plan_id: str = field(default_factory=_new_plan_id)
    computed: Tuple[ComputedMetricPlan, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "dimension_order", tuple(self.dimension_order))
        object.__setattr__(self, "computed", tuple(self.computed))

    def is_software_join(self) -> bool:
        return isinstance(self.join_plan, SoftwareJoinPlan)

    def is_database_join(self) -> bool:
        return isinstance(self.join_plan, DatabaseJoinPlan)

    def metric_aliases(self) -> List[str]:
        return list(self.aggregations)

    def computed_aliases(self) -> List[str]:
        """Computed metric aliases in evaluation order."""
        return [computed.alias for computed in self.computed]

    def to_sql(self) -> Optional[str]:
        """The native SQL, or None for software joins."""
        return self.adapter.to_sql() if self.adapter is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planId": self.plan_id,
            "primaryTable": self.primary_table,
            "tables": list(self.tables),
            "metrics": {alias: source.key() for alias, source in self.metrics.items()},
            "dimensions": list(self.dimension_order),
            "joinPlan": self.join_plan.to_dict(),
            "computed": [computed.to_dict() for computed in self.computed],
            "sql": self.to_sql(),
        }
