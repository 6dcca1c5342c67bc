"""
Query Executor

Runs QueryPlans. Native plans are a single adapter.execute(); software
join plans execute every table query and merge the results in process.

SOFTWARE JOIN MERGE:
--------------------
1. Start from the primary table's rows
2. Repeatedly apply any pending relation with exactly one side joined,
   hashing the incoming side on its key alias (None keys never match)
3. Filter rows by the dimension filters (only / except / where)
4. Group by the dimension aliases and combine metrics by rollup
   (sum, min, max, avg from __sum/__count partials)
5. Normalize numbers and sort by the dimensions, None first

Computed metrics are evaluated last, row by row in dependency order, for
native and software plans alike.
"""

import logging
import numbers
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..errors import SoftwareJoinError, UnsupportedQueryPlan
from .plans import (
    ComputedMetricPlan,
    DatabaseJoinPlan,
    EmptyJoinPlan,
    JoinRelation,
    QueryPlan,
    SoftwareJoinPlan,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

ALL_ROWS_GROUP = "__all__"


def normalize_number(value: Any) -> Any:
    """Whole numbers become int, other numerics float; numeric strings are parsed."""
    number = _to_number(value)
    if number is None:
        return value
    if float(number).is_integer():
        return int(number)
    return float(number)


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Number):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def passes_where(value: Any, condition: Mapping[str, Any]) -> bool:
    operator = str(condition.get("operator", "=")).lower()
    target = condition.get("value")

    if operator in ("!=", "<>"):
        return value != target
    if operator in (">", "<", ">=", "<="):
        if value is None or target is None:
            return False
        if operator == ">":
            return value > target
        if operator == "<":
            return value < target
        if operator == ">=":
            return value >= target
        return value <= target
    # "=", "==" and unknown operators
    return value == target


class QueryExecutor:
    """
    Executes query plans built by QueryPlanBuilder.

    Usage:
        rows = QueryExecutor().run(plan)
    """

    def run(self, plan: QueryPlan) -> List[Row]:
        """
        Raises:
            UnsupportedQueryPlan: For a join plan type with no execution rule
            SoftwareJoinError: If software join relations cannot be connected
            QueryExecutionError: If a backend query fails
        """
        join_plan = plan.join_plan
        extra = {"plan_id": plan.plan_id}

        if isinstance(join_plan, (EmptyJoinPlan, DatabaseJoinPlan)):
            if plan.adapter is None:
                raise UnsupportedQueryPlan(type(join_plan).__name__)
            logger.debug(f"Executing native plan on '{plan.adapter.driver_name()}'", extra=extra)
            rows = [dict(row) for row in plan.adapter.execute()]
        elif isinstance(join_plan, SoftwareJoinPlan):
            rows = self.execute_software_join(join_plan, plan_id=plan.plan_id)
        else:
            raise UnsupportedQueryPlan(type(join_plan).__name__)

        if plan.computed:
            rows = self.apply_computed(rows, plan.computed)
        return rows

    @staticmethod
    def apply_computed(rows: List[Row], computed: Iterable[ComputedMetricPlan]) -> List[Row]:
        """Evaluate computed metrics per row, in dependency order."""
        computed = list(computed)
        for row in rows:
            for metric in computed:
                row[metric.alias] = normalize_number(metric.metric.evaluate(row))
        return rows

    # -------------------------------------------------------------------------
    # Software joins
    # -------------------------------------------------------------------------

    def execute_software_join(self, plan: SoftwareJoinPlan, plan_id: str = "-") -> List[Row]:
        extra = {"plan_id": plan_id}

        results: Dict[str, List[Row]] = {}
        for table_name, table_plan in plan.table_plans.items():
            results[table_name] = [dict(row) for row in table_plan.adapter.execute()]
            logger.debug(
                f"Fetched {len(results[table_name])} row(s) from {table_name} "
                f"via '{table_plan.adapter.driver_name()}'",
                extra=extra,
            )

        rows = self.join_results(plan.primary_table, plan.relations, results)
        rows = self.apply_filters(rows, plan.dimension_filters)
        merged = self.group_results(rows, plan)

        logger.info(f"Software join produced {len(merged)} row(s)", extra=extra)
        return merged

    def join_results(self, primary_table: str, relations: Iterable[JoinRelation],
                     results: Mapping[str, List[Row]]) -> List[Row]:
        rows = list(results.get(primary_table, []))
        joined = {primary_table}
        pending = list(relations)

        while pending:
            remaining = []
            for relation in pending:
                from_joined = relation.from_table in joined
                to_joined = relation.to_table in joined

                if from_joined and to_joined:
                    continue

                if from_joined:
                    rows = self.join_rows(rows, results.get(relation.to_table, []),
                                          relation.from_alias, relation.to_alias, relation.type)
                    joined.add(relation.to_table)
                elif to_joined:
                    rows = self.join_rows(rows, results.get(relation.from_table, []),
                                          relation.to_alias, relation.from_alias, relation.type)
                    joined.add(relation.from_table)
                else:
                    remaining.append(relation)

            if len(remaining) == len(pending):
                raise SoftwareJoinError([relation.key for relation in remaining])
            pending = remaining

        return rows

    @staticmethod
    def join_rows(left: List[Row], right: List[Row], left_alias: str, right_alias: str,
                  join_type: str = "inner") -> List[Row]:
        """
        Hash-join two row sets.

        Empty aliases mean an unconditional (cartesian) join. For "left"
        joins unmatched left rows survive with the right columns set to None.
        """
        keep_unmatched = join_type.lower() == "left"
        right_columns: List[str] = list(OrderedDict((column, None) for row in right for column in row))

        if not left_alias and not right_alias:
            if not right:
                return [dict(row) for row in left] if keep_unmatched else []
            return [{**row, **match} for row in left for match in right]

        index: Dict[Any, List[Row]] = {}
        for row in right:
            key = row.get(right_alias)
            if key is None:
                continue
            index.setdefault(key, []).append(row)

        joined: List[Row] = []
        for row in left:
            key = row.get(left_alias)
            matches = index.get(key, []) if key is not None else []

            if matches:
                for match in matches:
                    joined.append({**row, **match})
            elif keep_unmatched:
                padded = dict(row)
                for column in right_columns:
                    padded.setdefault(column, None)
                joined.append(padded)

        return joined

    @staticmethod
    def apply_filters(rows: List[Row], filters: Mapping[str, Mapping[str, Any]]) -> List[Row]:
        if not filters:
            return rows

        def keep(row: Row) -> bool:
            for alias, dimension_filter in filters.items():
                value = row.get(alias)
                if "only" in dimension_filter and value not in dimension_filter["only"]:
                    return False
                if "except" in dimension_filter and value in dimension_filter["except"]:
                    return False
                if "where" in dimension_filter and not passes_where(value, dimension_filter["where"]):
                    return False
            return True

        return [row for row in rows if keep(row)]

    def group_results(self, rows: List[Row], plan: SoftwareJoinPlan) -> List[Row]:
        dimension_order = list(plan.dimension_order)
        groups: "OrderedDict[Any, Tuple[Row, Dict[str, _Accumulator]]]" = OrderedDict()

        for row in rows:
            values = tuple(row.get(alias) for alias in dimension_order)
            group_key = values if dimension_order else ALL_ROWS_GROUP

            if group_key not in groups:
                groups[group_key] = (
                    dict(zip(dimension_order, values)),
                    {
                        alias: _Accumulator(alias, plan.metric_rollups.get(alias) or "sum")
                        for alias in plan.metric_aliases
                    },
                )

            for accumulator in groups[group_key][1].values():
                accumulator.add(row)

        results = []
        for dimensions, accumulators in groups.values():
            result = dict(dimensions)
            for alias in plan.metric_aliases:
                result[alias] = accumulators[alias].value()
            results.append(result)

        if dimension_order:
            results.sort(key=lambda result: tuple(
                (result[alias] is not None, result[alias]) for alias in dimension_order
            ))
        return results


class _Accumulator:
    """Combines one metric's partial values across the rows of a group."""

    def __init__(self, alias: str, rollup: str):
        self.alias = alias
        self.rollup = rollup
        self.total = 0.0
        self.count = 0.0
        self.extreme: Optional[float] = None
        self.seen = False

    def add(self, row: Row) -> None:
        if self.rollup == "avg":
            partial_sum = _to_number(row.get(f"{self.alias}__sum"))
            partial_count = _to_number(row.get(f"{self.alias}__count"))
            if partial_sum is not None:
                self.total += partial_sum
                self.seen = True
            if partial_count is not None:
                self.count += partial_count
            return

        value = _to_number(row.get(self.alias))
        if value is None:
            return
        self.seen = True

        if self.rollup == "min":
            self.extreme = value if self.extreme is None else min(self.extreme, value)
        elif self.rollup == "max":
            self.extreme = value if self.extreme is None else max(self.extreme, value)
        else:
            self.total += value

    def value(self) -> Any:
        # Groups where every partial was NULL stay NULL, like SQL aggregates
        if not self.seen:
            return None
        if self.rollup == "avg":
            return normalize_number(self.total / self.count) if self.count else None
        if self.rollup in ("min", "max"):
            return normalize_number(self.extreme)
        return normalize_number(self.total)
