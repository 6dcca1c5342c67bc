"""
Slice Planner Metrics Module

Aggregation value types, the injectable compiler that renders them
per backend, and computed metrics evaluated over aggregated rows.
"""

from .aggregations import AGGREGATIONS, Aggregation, Avg, Count, Max, Min, Percentile, Sum
from .compiler import AggregationCompiler, register_default_compilers
from .computed import Computed

__all__ = [
    "AGGREGATIONS",
    "Aggregation",
    "AggregationCompiler",
    "Avg",
    "Computed",
    "Count",
    "Max",
    "Min",
    "Percentile",
    "Sum",
    "register_default_compilers",
]
