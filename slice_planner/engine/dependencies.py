"""
Metric Dependency Resolution

Orders a request's metrics so every computed metric comes after the
metrics it reads.

LEVELS:
-------
Level 0 holds aggregations and computed metrics without dependencies.
A computed metric sits one level above its deepest dependency:

    sum_orders_total, sum_orders_cost     level 0
    profit = revenue - cost               level 1
    margin = profit / revenue             level 2

STRATEGIES:
-----------
"database"  every dependency reads the metric's own table, so the value
            could be derived next to the table's aggregations
"software"  dependencies span tables (or a dependency is itself
            "software"), so the value needs the merged rows

Dependencies naming metrics outside the request are ignored here; the
plan builder rejects them before resolving.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple

from ..errors import CircularDependency

logger = logging.getLogger(__name__)

DATABASE = "database"
SOFTWARE = "software"


class MetricNode(NamedTuple):
    """One requested metric: its alias, owning table identifier and value type."""
    key: str
    table: Optional[str]
    metric: Any

    @property
    def dependencies(self) -> Tuple[str, ...]:
        get_dependencies = getattr(self.metric, "get_dependencies", None)
        return tuple(get_dependencies()) if get_dependencies else ()


class DependencyResolver:
    """
    Topological ordering, level grouping and strategy split for metrics.

    Usage:
        resolver = DependencyResolver()
        ordered = resolver.resolve(nodes)
        levels = resolver.group_by_level(nodes)
    """

    def resolve(self, nodes: Sequence[MetricNode]) -> List[MetricNode]:
        """
        Depth-first topological order; ties keep request order.

        Raises:
            CircularDependency: If a metric (transitively) depends on itself
        """
        by_key = {node.key: node for node in nodes}
        resolved: "OrderedDict[str, MetricNode]" = OrderedDict()
        unresolved: Set[str] = set()

        def visit(node: MetricNode) -> None:
            if node.key in resolved:
                return
            if node.key in unresolved:
                raise CircularDependency(node.key)

            unresolved.add(node.key)
            for dependency in node.dependencies:
                if dependency in by_key:
                    visit(by_key[dependency])
            unresolved.discard(node.key)
            resolved[node.key] = node

        for node in nodes:
            visit(node)
        return list(resolved.values())

    def group_by_level(self, nodes: Sequence[MetricNode]) -> "OrderedDict[int, List[MetricNode]]":
        """Metrics keyed by dependency level, ascending; request order within a level."""
        by_key = {node.key: node for node in nodes}
        cache: Dict[str, int] = {}
        levels: Dict[int, List[MetricNode]] = {}

        for node in nodes:
            levels.setdefault(self._level(node, by_key, set(), cache), []).append(node)

        return OrderedDict(sorted(levels.items()))

    def split_by_computation_strategy(self, nodes: Sequence[MetricNode]) -> Dict[str, List[MetricNode]]:
        by_key = {node.key: node for node in nodes}
        split: Dict[str, List[MetricNode]] = {DATABASE: [], SOFTWARE: []}

        for node in nodes:
            strategy = DATABASE if self._database_computable(node, by_key, set()) else SOFTWARE
            split[strategy].append(node)

        logger.debug(
            f"Computation split: database={[n.key for n in split[DATABASE]]}, "
            f"software={[n.key for n in split[SOFTWARE]]}"
        )
        return split

    def _level(self, node: MetricNode, by_key: Dict[str, MetricNode],
               visiting: Set[str], cache: Dict[str, int]) -> int:
        if node.key in cache:
            return cache[node.key]
        if node.key in visiting:
            raise CircularDependency(node.key)

        visiting = visiting | {node.key}
        level = 0
        for dependency in node.dependencies:
            if dependency in by_key:
                level = max(level, self._level(by_key[dependency], by_key, visiting, cache) + 1)

        cache[node.key] = level
        return level

    def _database_computable(self, node: MetricNode, by_key: Dict[str, MetricNode],
                             visiting: Set[str]) -> bool:
        if not node.dependencies:
            return True
        if node.key in visiting:
            raise CircularDependency(node.key)

        visiting = visiting | {node.key}
        for dependency in node.dependencies:
            other = by_key.get(dependency)
            if other is None:
                return False
            if node.table is None or other.table != node.table:
                return False
            if not self._database_computable(other, by_key, visiting):
                return False
        return True
