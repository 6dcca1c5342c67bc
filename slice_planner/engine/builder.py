"""
Query Plan Builder

Turns (metrics, dimensions) into an executable QueryPlan.

PLANNING STEPS:
---------------
1. Normalize metrics to (MetricSource, Aggregation) pairs; the first
   metric's table is the primary table
2. Collect participant tables: metric tables, then dimension owners
   ("table.column" dimensions resolve through the registry, bare ones
   against the metric tables, falling back to the primary table)
3. If every participant sits on one connection served by one driver that
   can join, build a single native query (EmptyJoinPlan/DatabaseJoinPlan)
4. Otherwise build a SoftwareJoinPlan: one grouped query per table plus
   the relations the executor uses to hash-join the results
5. Computed metrics are checked against the requested aliases, ordered by
   dependency and attached to the plan; the executor evaluates them per
   result row

The builder never executes anything; plans are built fresh per request.
"""

import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

from ..drivers.base import QueryAdapter, QueryDriver
from ..drivers.factory import DriverManager
from ..drivers.grammar import QueryGrammar
from ..errors import (
    NoMetricsError,
    UnhandledRelationType,
    UnknownMetricDependency,
    UnsupportedSoftwareAggregation,
)
from ..metrics.aggregations import Aggregation, Avg, Count, Sum
from ..metrics.compiler import AggregationCompiler
from ..metrics.computed import Computed
from ..schema.dimensions import Dimension, TimeDimension
from ..schema.registry import SchemaRegistry
from ..schema.relations import RelationType
from ..schema.table import MetricSource, Table
from .dependencies import DependencyResolver, MetricNode
from .dimensions import DimensionResolver
from .joins import JoinGraphBuilder, JoinPathFinder, apply_joins
from .plans import (
    ComputedMetricPlan,
    EmptyJoinPlan,
    JoinRelation,
    JoinSpecification,
    QueryPlan,
    SoftwareJoinPlan,
    TablePlan,
    _new_plan_id,
)

logger = logging.getLogger(__name__)

MetricInput = Union[Aggregation, Computed, Tuple[MetricSource, Aggregation]]


class ResolvedDimension(NamedTuple):
    """A requested dimension bound to the table and column it is read from."""
    dimension: Dimension
    table: Table
    column: str

    @property
    def alias(self) -> str:
        return self.dimension.alias()


class QueryPlanBuilder:
    """
    Builds query plans against a schema registry and driver manager.

    Usage:
        builder = QueryPlanBuilder(registry, drivers, AggregationCompiler.with_defaults())
        plan = builder.build(
            [Sum.make("orders.total")],
            [TimeDimension.make("orders.created_at").daily()],
        )
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        drivers: DriverManager,
        compiler: AggregationCompiler,
        default_join_type: str = "left",
    ):
        self.registry = registry
        self.drivers = drivers
        self.compiler = compiler
        self.default_join_type = default_join_type
        self.dimension_resolver = DimensionResolver()
        self.dependency_resolver = DependencyResolver()

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def build(self, metrics: Sequence[MetricInput], dimensions: Sequence[Dimension] = ()) -> QueryPlan:
        """
        Raises:
            NoMetricsError: If `metrics` holds no aggregation
            JoinPathNotFound: If the participant tables cannot be connected
            UnsupportedSoftwareAggregation: If a metric cannot be merged in process
            UnknownMetricDependency: If a computed metric reads a metric not in the request
            CircularDependency: If computed metrics depend on each other in a cycle
        """
        computed = [metric for metric in metrics if isinstance(metric, Computed)]
        metrics = [metric for metric in metrics if not isinstance(metric, Computed)]
        if not metrics:
            raise NoMetricsError()

        plan_id = _new_plan_id()
        dimensions = list(dimensions)
        normalized = self._normalize(metrics)

        primary = normalized[0][0].table
        sources: "OrderedDict[str, MetricSource]" = OrderedDict()
        aggregations: "OrderedDict[str, Aggregation]" = OrderedDict()
        participants: "OrderedDict[str, Table]" = OrderedDict()

        for source, aggregation in normalized:
            alias = aggregation.get_alias()
            sources[alias] = source
            aggregations[alias] = aggregation
            participants.setdefault(source.table.identifier, source.table)

        computed_plans = self._plan_computed(plan_id, computed, sources, aggregations)

        metric_tables = list(participants.values())
        resolved_dimensions = [
            self._resolve_dimension(dimension, metric_tables, primary) for dimension in dimensions
        ]
        for resolved in resolved_dimensions:
            participants.setdefault(resolved.table.identifier, resolved.table)

        logger.info(
            f"Planning {len(aggregations)} metric(s) and {len(computed_plans)} computed metric(s) "
            f"over {len(participants)} table(s)",
            extra={"plan_id": plan_id},
        )

        driver = self._native_driver(list(participants.values()))
        if driver is not None:
            plan = self._build_database_plan(
                plan_id, driver, primary, participants, sources, aggregations,
                dimensions, resolved_dimensions,
            )
        else:
            plan = self._build_software_plan(
                plan_id, primary, participants, sources, aggregations,
                dimensions, resolved_dimensions,
            )

        if computed_plans:
            plan = replace(plan, computed=computed_plans)
        return plan

    # -------------------------------------------------------------------------
    # Computed metrics
    # -------------------------------------------------------------------------

    def _plan_computed(
        self,
        plan_id: str,
        computed: Sequence[Computed],
        sources: "OrderedDict[str, MetricSource]",
        aggregations: "OrderedDict[str, Aggregation]",
    ) -> Tuple[ComputedMetricPlan, ...]:
        if not computed:
            return ()

        computed_by_alias = OrderedDict((metric.get_alias(), metric) for metric in computed)
        available = list(aggregations) + list(computed_by_alias)
        for alias, metric in computed_by_alias.items():
            for dependency in metric.get_dependencies():
                if dependency not in available:
                    raise UnknownMetricDependency(alias, dependency, available)

        aggregation_tables = {alias: source.table.identifier for alias, source in sources.items()}
        nodes = [MetricNode(alias, aggregation_tables[alias], aggregation)
                 for alias, aggregation in aggregations.items()]
        nodes.extend(
            MetricNode(alias, self._computed_table(metric, computed_by_alias, aggregation_tables), metric)
            for alias, metric in computed_by_alias.items()
        )

        ordered = self.dependency_resolver.resolve(nodes)
        levels = {
            node.key: level
            for level, level_nodes in self.dependency_resolver.group_by_level(nodes).items()
            for node in level_nodes
        }
        strategies = {
            node.key: strategy
            for strategy, strategy_nodes in self.dependency_resolver.split_by_computation_strategy(nodes).items()
            for node in strategy_nodes
        }

        plans = tuple(
            ComputedMetricPlan(node.key, node.metric, levels[node.key], strategies[node.key])
            for node in ordered
            if isinstance(node.metric, Computed)
        )
        logger.debug(
            f"Computed metrics in evaluation order: {[p.alias for p in plans]}",
            extra={"plan_id": plan_id},
        )
        return plans

    def _computed_table(self, metric: Computed, computed_by_alias: Dict[str, Computed],
                        aggregation_tables: Dict[str, str]) -> Optional[str]:
        """The declared table, else the one table every underlying aggregation reads."""
        if metric.get_table():
            return self.registry.resolve_table(metric.get_table()).identifier

        tables = set()
        pending = list(metric.get_dependencies())
        seen = set()
        while pending:
            key = pending.pop()
            if key in seen:
                continue
            seen.add(key)
            if key in aggregation_tables:
                tables.add(aggregation_tables[key])
            elif key in computed_by_alias:
                pending.extend(computed_by_alias[key].get_dependencies())
        return tables.pop() if len(tables) == 1 else None

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _normalize(self, metrics: Iterable[MetricInput]) -> List[Tuple[MetricSource, Aggregation]]:
        normalized = []
        for metric in metrics:
            if isinstance(metric, Aggregation):
                normalized.append((self.registry.resolve_metric_source(metric.get_reference()), metric))
            else:
                source, aggregation = metric
                normalized.append((source, aggregation))
        return normalized

    def _resolve_dimension(self, dimension: Dimension, metric_tables: Sequence[Table],
                           primary: Table) -> ResolvedDimension:
        table_reference = dimension.table()
        if table_reference is not None:
            table = self.registry.resolve_table(table_reference)
            return ResolvedDimension(dimension, table, dimension.column())

        resolved = self.dimension_resolver.resolve_dimension(dimension, metric_tables)
        for table in metric_tables:
            if table.name in resolved:
                column = self.dimension_resolver.get_column_for_table(resolved[table.name])
                return ResolvedDimension(dimension, table, column)

        return ResolvedDimension(dimension, primary, dimension.column())

    def _native_driver(self, tables: Sequence[Table]) -> Optional[QueryDriver]:
        """The single driver able to answer for every table in one query, if any."""
        if len({table.connection_key for table in tables}) != 1:
            return None

        drivers = [self.drivers.for_table(table) for table in tables]
        driver = drivers[0]
        if any(other is not driver for other in drivers[1:]):
            return None

        if len(tables) > 1 and not driver.supports_database_joins():
            return None
        return driver

    def _validate_dimension(self, resolved: ResolvedDimension, grammar: QueryGrammar) -> None:
        self.dimension_resolver.validate_granularity(
            self.dimension_resolver.resolve_dimension(resolved.dimension, [resolved.table]),
            resolved.dimension,
            grammar,
        )

    # -------------------------------------------------------------------------
    # Native (single query) plans
    # -------------------------------------------------------------------------

    def _build_database_plan(
        self,
        plan_id: str,
        driver: QueryDriver,
        primary: Table,
        participants: "OrderedDict[str, Table]",
        sources: "OrderedDict[str, MetricSource]",
        aggregations: "OrderedDict[str, Aggregation]",
        dimensions: Sequence[Dimension],
        resolved_dimensions: Sequence[ResolvedDimension],
    ) -> QueryPlan:
        schema = self.registry.compile()
        finder = JoinPathFinder(schema, same_connection_only=True, join_type=self.default_join_type)
        join_plan = JoinGraphBuilder(finder).build(list(participants.values()), dimensions)

        tables = OrderedDict(participants)
        for join in join_plan.joins:
            self._add_path_table(schema, tables, join.to_identifier)

        grammar = driver.grammar()
        adapter = driver.create_query_for(primary)
        apply_joins(adapter, join_plan.joins)

        for resolved in resolved_dimensions:
            self._validate_dimension(resolved, grammar)
            self._select_dimension(adapter, grammar, resolved, order=True)
            self._apply_filters(adapter, resolved)

        for aggregation in aggregations.values():
            adapter.select_raw(aggregation.to_sql(grammar, self.compiler))

        plan = QueryPlan(
            primary_table=primary.name,
            tables=tables,
            metrics=sources,
            aggregations=aggregations,
            dimension_order=tuple(resolved.alias for resolved in resolved_dimensions),
            join_plan=join_plan if not join_plan.is_empty() else EmptyJoinPlan(),
            adapter=adapter,
            plan_id=plan_id,
        )
        logger.debug(
            f"Native plan on '{driver.name()}' with {len(join_plan)} join(s)",
            extra={"plan_id": plan_id},
        )
        return plan

    @staticmethod
    def _add_path_table(schema, tables: "OrderedDict[str, Table]", identifier: Optional[str]) -> None:
        if identifier and identifier not in tables:
            table = schema.resolve_table(identifier)
            if table is not None:
                tables[identifier] = table

    def _select_dimension(self, adapter: QueryAdapter, grammar: QueryGrammar,
                          resolved: ResolvedDimension, order: bool = False,
                          alias: Optional[str] = None) -> None:
        table_name = resolved.table.name
        alias = alias or resolved.alias
        dimension = resolved.dimension

        if isinstance(dimension, TimeDimension):
            expression = grammar.format_time_bucket(table_name, resolved.column, dimension.granularity)
            adapter.select_raw(f"{expression} AS {grammar.wrap(alias)}")
            adapter.group_by_raw(expression)
            if order:
                adapter.order_by_raw(expression)
            return

        reference = f"{table_name}.{resolved.column}"
        adapter.select(f"{reference} as {alias}")
        adapter.group_by(reference)
        if order:
            adapter.order_by(reference)

    def _apply_filters(self, adapter: QueryAdapter, resolved: ResolvedDimension) -> None:
        filters = resolved.dimension.filters
        if not filters:
            return

        reference = f"{resolved.table.name}.{resolved.column}"
        if "only" in filters:
            adapter.where_in(reference, filters["only"])
        if "except" in filters:
            adapter.where_not_in(reference, filters["except"])
        if "where" in filters:
            adapter.where(reference, filters["where"]["operator"], filters["where"]["value"])

    # -------------------------------------------------------------------------
    # Software join plans
    # -------------------------------------------------------------------------

    def _build_software_plan(
        self,
        plan_id: str,
        primary: Table,
        participants: "OrderedDict[str, Table]",
        sources: "OrderedDict[str, MetricSource]",
        aggregations: "OrderedDict[str, Aggregation]",
        dimensions: Sequence[Dimension],
        resolved_dimensions: Sequence[ResolvedDimension],
    ) -> QueryPlan:
        for alias, aggregation in aggregations.items():
            if aggregation.rollup() is None:
                raise UnsupportedSoftwareAggregation(aggregation.kind(), alias)

        schema = self.registry.compile()
        finder = JoinPathFinder(schema, same_connection_only=False, join_type=self.default_join_type)
        join_plan = JoinGraphBuilder(finder).build(list(participants.values()), dimensions)

        tables = OrderedDict(participants)
        for join in join_plan.joins:
            self._add_path_table(schema, tables, join.from_identifier)
            self._add_path_table(schema, tables, join.to_identifier)

        names = self._participant_names(tables)

        # Join key selections per table: alias -> column
        key_columns: Dict[str, "OrderedDict[str, str]"] = {identifier: OrderedDict() for identifier in tables}
        dimension_keys: Dict[str, List[ResolvedDimension]] = {identifier: [] for identifier in tables}
        relations: List[JoinRelation] = []
        join_aliases: List[str] = []

        for join in join_plan.joins:
            from_alias, to_alias = self._software_join_keys(
                join, tables, names, key_columns, dimension_keys, resolved_dimensions, join_aliases,
            )
            from_name, to_name = names[join.from_identifier], names[join.to_identifier]
            relations.append(JoinRelation(
                key=f"{from_name}->{to_name}",
                from_table=from_name,
                to_table=to_name,
                type=join.type,
                from_alias=from_alias,
                to_alias=to_alias,
            ))

        table_plans: "OrderedDict[str, TablePlan]" = OrderedDict()
        for identifier, table in tables.items():
            driver = self.drivers.for_table(table)
            grammar = driver.grammar()
            adapter = driver.create_query_for(table)

            for resolved in resolved_dimensions:
                if resolved.table.identifier == identifier:
                    self._validate_dimension(resolved, grammar)
                    self._select_dimension(adapter, grammar, resolved)

            for resolved in dimension_keys[identifier]:
                self._select_dimension(adapter, grammar, resolved)

            for alias, column in key_columns[identifier].items():
                reference = f"{table.name}.{column}"
                adapter.select(f"{reference} as {alias}")
                adapter.group_by(reference)

            for alias, aggregation in aggregations.items():
                if sources[alias].table.identifier == identifier:
                    self._select_partials(adapter, grammar, aggregation)

            table_plans[names[identifier]] = TablePlan(
                table=table,
                adapter=adapter,
                is_primary=identifier == primary.identifier,
            )

        plan = QueryPlan(
            primary_table=primary.name,
            tables=tables,
            metrics=sources,
            aggregations=aggregations,
            dimension_order=tuple(resolved.alias for resolved in resolved_dimensions),
            join_plan=SoftwareJoinPlan(
                primary_table=names[primary.identifier],
                table_plans=table_plans,
                relations=tuple(relations),
                dimension_order=tuple(resolved.alias for resolved in resolved_dimensions),
                metric_aliases=tuple(aggregations),
                metric_rollups={alias: agg.rollup() for alias, agg in aggregations.items()},
                dimension_filters={
                    resolved.alias: dict(resolved.dimension.filters)
                    for resolved in resolved_dimensions
                    if resolved.dimension.has_filters()
                },
                join_aliases=tuple(join_aliases),
            ),
            adapter=None,
            plan_id=plan_id,
        )
        logger.debug(
            f"Software join plan over {list(table_plans)} with {len(relations)} relation(s)",
            extra={"plan_id": plan_id},
        )
        return plan

    @staticmethod
    def _participant_names(tables: "OrderedDict[str, Table]") -> Dict[str, str]:
        """
        Identifier -> name used for table plans, relations and key aliases.

        The bare table name when it is unique among the participants,
        otherwise the full "provider:name" identifier.
        """
        counts: Dict[str, int] = {}
        for table in tables.values():
            counts[table.name] = counts.get(table.name, 0) + 1
        return {
            identifier: table.name if counts[table.name] == 1 else identifier
            for identifier, table in tables.items()
        }

    def _software_join_keys(
        self,
        join: JoinSpecification,
        tables: "OrderedDict[str, Table]",
        names: Dict[str, str],
        key_columns: Dict[str, "OrderedDict[str, str]"],
        dimension_keys: Dict[str, List[ResolvedDimension]],
        resolved_dimensions: Sequence[ResolvedDimension],
        join_aliases: List[str],
    ) -> Tuple[str, str]:
        """Register the key columns both sides select and return their aliases."""
        relation = join.relation
        relation_type = relation.type

        if relation_type == RelationType.DIMENSION:
            alias = relation.key("alias")
            requested = next(r.dimension for r in resolved_dimensions if r.alias == alias)
            for identifier, column in ((join.from_identifier, relation.key("left")),
                                       (join.to_identifier, relation.key("right"))):
                table = tables[identifier]
                owned = any(
                    r.alias == alias and r.table.identifier == identifier for r in resolved_dimensions
                )
                if not owned:
                    dimension_keys[identifier].append(ResolvedDimension(requested, table, column))
            return alias, alias

        if relation_type in (RelationType.BELONGS_TO, RelationType.MORPH_TO):
            from_column, to_column = join.foreign_key(), join.owner_key()
        elif relation_type in (RelationType.HAS_MANY, RelationType.HAS_ONE, RelationType.MORPH_MANY):
            from_column, to_column = join.local_key(), join.foreign_key()
        elif relation_type == RelationType.CROSS_JOIN:
            from_column, to_column = relation.key("left"), relation.key("right")
            if not (from_column and to_column):
                # Unkeyed cross joins merge as a cartesian product
                return "", ""
        else:
            # Pivot joins need the pivot table on the same backend
            raise UnhandledRelationType(relation_type, relation.name)

        from_alias = f"{names[join.from_identifier].replace(':', '_')}__{from_column}"
        to_alias = f"{names[join.to_identifier].replace(':', '_')}__{to_column}"
        for identifier, alias, column in ((join.from_identifier, from_alias, from_column),
                                          (join.to_identifier, to_alias, to_column)):
            key_columns[identifier][alias] = column
            if alias not in join_aliases:
                join_aliases.append(alias)
        return from_alias, to_alias

    def _select_partials(self, adapter: QueryAdapter, grammar: QueryGrammar,
                         aggregation: Aggregation) -> None:
        if isinstance(aggregation, Avg):
            sum_alias, count_alias = aggregation.partial_aliases()
            reference = aggregation.get_reference()
            adapter.select_raw(Sum(reference).set_alias(sum_alias).to_sql(grammar, self.compiler))
            adapter.select_raw(Count(reference).set_alias(count_alias).to_sql(grammar, self.compiler))
            return
        adapter.select_raw(aggregation.to_sql(grammar, self.compiler))
