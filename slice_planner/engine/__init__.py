"""
Slice Planner Engine

Planning and execution:
- Join path resolution (BFS) and join graph construction
- Dimension resolution and granularity checks
- Computed metric dependency ordering
- Query plan building (native vs software join)
- Plan execution, including the in-process hash-join merge
"""

from .builder import QueryPlanBuilder, ResolvedDimension
from .dependencies import DependencyResolver, MetricNode
from .dimensions import DimensionResolver
from .executor import QueryExecutor, normalize_number
from .joins import JoinGraphBuilder, JoinPathFinder, JoinResolver, apply_joins
from .plans import (
    ComputedMetricPlan,
    DatabaseJoinPlan,
    EmptyJoinPlan,
    JoinPlan,
    JoinRelation,
    JoinSpecification,
    QueryPlan,
    SoftwareJoinPlan,
    TablePlan,
)

__all__ = [
    "ComputedMetricPlan",
    "DatabaseJoinPlan",
    "DependencyResolver",
    "DimensionResolver",
    "EmptyJoinPlan",
    "JoinGraphBuilder",
    "JoinPathFinder",
    "JoinPlan",
    "JoinRelation",
    "JoinResolver",
    "JoinSpecification",
    "MetricNode",
    "QueryExecutor",
    "QueryPlan",
    "QueryPlanBuilder",
    "ResolvedDimension",
    "SoftwareJoinPlan",
    "TablePlan",
    "apply_joins",
    "normalize_number",
]
