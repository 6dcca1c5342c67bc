"""
Join Resolution

Finds the joins needed to connect a set of tables and applies them to a
query adapter.

ALGORITHM:
----------
JoinPathFinder    Breadth-first search over declared relations, explored
                  in declaration order. A table is marked visited when it
                  is enqueued, so the first path found is a shortest one.
JoinGraphBuilder  Grows a connected set from the first table. Each further
                  table is attached through the first connected table that
                  reaches it; when no relation path exists, a dimension
                  both tables declare is used as an inner equi-join.
apply_joins       Translates join specifications into adapter.join() calls.

Relations are directed: orders -> customers does not imply the reverse.
"""

import logging
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..errors import JoinPathNotFound, UnhandledRelationType
from ..schema.dimensions import Dimension
from ..schema.registry import CompiledSchema
from ..schema.relations import RelationDescriptor, RelationType
from ..schema.table import Table
from .plans import DatabaseJoinPlan, JoinSpecification

logger = logging.getLogger(__name__)


def same_connection(left: Table, right: Table) -> bool:
    return left.connection_key == right.connection_key


class JoinPathFinder:
    """
    Shortest relation path between two tables.

    Config:
        schema: Compiled schema used to resolve relation targets
        same_connection_only: Refuse to cross provider/connection boundaries
        join_type: Join type stamped on emitted specifications
    """

    def __init__(self, schema: CompiledSchema, same_connection_only: bool = True,
                 join_type: str = "left"):
        self.schema = schema
        self.same_connection_only = same_connection_only
        self.join_type = join_type

    def find(self, source: Table, target: Table) -> Optional[List[JoinSpecification]]:
        """
        Return the join steps from `source` to `target`.

        Returns [] for the same table and None when no path exists.
        """
        if source.identifier == target.identifier:
            return []

        if self.same_connection_only and not same_connection(source, target):
            return None

        queue: Deque[Tuple[Table, List[JoinSpecification]]] = deque([(source, [])])
        visited = {source.identifier}

        while queue:
            current, path = queue.popleft()

            for relation in current.relations:
                next_table = self.schema.resolve_table(relation.target, prefer_provider=current.provider)
                if next_table is None:
                    logger.debug(
                        f"Skipping relation '{relation.name}' on {current.identifier}: "
                        f"target '{relation.target}' is not in the schema"
                    )
                    continue

                if self.same_connection_only and not same_connection(current, next_table):
                    continue

                if next_table.identifier in visited:
                    continue

                step = JoinSpecification(
                    from_table=current.name,
                    to_table=next_table.name,
                    relation=relation,
                    type=self.join_type,
                    from_identifier=current.identifier,
                    to_identifier=next_table.identifier,
                )
                new_path = path + [step]

                if next_table.identifier == target.identifier:
                    return new_path

                visited.add(next_table.identifier)
                queue.append((next_table, new_path))

        return None


class JoinGraphBuilder:
    """Connects a set of tables into one join plan."""

    def __init__(self, finder: JoinPathFinder):
        self.finder = finder

    def build(self, tables: Sequence[Table], dimensions: Sequence[Dimension] = ()) -> DatabaseJoinPlan:
        """
        Raises:
            JoinPathNotFound: If a table is reachable neither by relations
                nor by a shared dimension
        """
        if len(tables) <= 1:
            return DatabaseJoinPlan()

        connected: List[Table] = [tables[0]]
        joins: Dict[Tuple[Optional[str], Optional[str]], JoinSpecification] = {}

        for target in tables[1:]:
            if any(table.identifier == target.identifier for table in connected):
                continue

            path = self._find_path(connected, target)
            if path is None:
                dimension_join = self._dimension_join(connected, target, dimensions)
                if dimension_join is None:
                    raise JoinPathNotFound(target.identifier, [t.identifier for t in connected])
                path = [dimension_join]

            for step in path:
                joins.setdefault((step.from_identifier, step.to_identifier), step)

            connected.append(target)

        logger.debug(f"Join graph: {[join.key() for join in joins.values()]}")
        return DatabaseJoinPlan(tuple(joins.values()))

    def _find_path(self, connected: Sequence[Table], target: Table) -> Optional[List[JoinSpecification]]:
        for source in connected:
            path = self.finder.find(source, target)
            if path is not None:
                return path
        return None

    def _dimension_join(self, connected: Sequence[Table], target: Table,
                        dimensions: Sequence[Dimension]) -> Optional[JoinSpecification]:
        for dimension in dimensions:
            key = dimension.key()
            if not target.dimensions.has(key):
                continue

            for source in connected:
                if not source.dimensions.has(key):
                    continue

                source_column = source.dimensions.get(key).column()
                target_column = target.dimensions.get(key).column()
                relation = RelationDescriptor(
                    name=f"dimension:{dimension.name()}",
                    type=RelationType.DIMENSION,
                    target=target.identifier,
                    keys={"left": source_column, "right": target_column, "alias": dimension.alias()},
                )
                logger.debug(
                    f"Joining {source.identifier} -> {target.identifier} on shared dimension {key}"
                )
                return JoinSpecification(
                    from_table=source.name,
                    to_table=target.name,
                    relation=relation,
                    type="inner",
                    from_identifier=source.identifier,
                    to_identifier=target.identifier,
                )
        return None


def apply_joins(adapter, joins: Iterable[JoinSpecification]):
    """
    Apply join specifications to a query adapter.

    Raises:
        UnhandledRelationType: For a relation type with no join rule
    """
    for spec in joins:
        relation = spec.relation
        relation_type = relation.type
        from_table, to_table = spec.from_table, spec.to_table

        if relation_type == RelationType.BELONGS_TO:
            adapter.join(to_table, f"{from_table}.{spec.foreign_key()}", "=",
                         f"{to_table}.{spec.owner_key()}", spec.type)

        elif relation_type in (RelationType.HAS_MANY, RelationType.HAS_ONE):
            adapter.join(to_table, f"{from_table}.{spec.local_key()}", "=",
                         f"{to_table}.{spec.foreign_key()}", spec.type)

        elif relation_type == RelationType.MORPH_MANY:
            adapter.join(to_table, f"{from_table}.{spec.local_key()}", "=",
                         f"{to_table}.{spec.foreign_key()}", spec.type)
            _apply_morph_constraint(adapter, to_table, relation)

        elif relation_type == RelationType.MORPH_TO:
            adapter.join(to_table, f"{from_table}.{spec.foreign_key()}", "=",
                         f"{to_table}.{spec.owner_key()}", spec.type)
            _apply_morph_constraint(adapter, from_table, relation)

        elif relation_type == RelationType.BELONGS_TO_MANY:
            pivot = spec.pivot_table()
            local_key = relation.key("local", "id")
            owner_key = relation.key("owner", "id")
            adapter.join(pivot, f"{from_table}.{local_key}", "=",
                         f"{pivot}.{spec.foreign_key()}", spec.type)
            adapter.join(to_table, f"{pivot}.{spec.related_key()}", "=",
                         f"{to_table}.{owner_key}", spec.type)

        elif relation_type == RelationType.CROSS_JOIN:
            left, right = relation.key("left"), relation.key("right")
            if left and right:
                adapter.join(to_table, f"{from_table}.{left}", "=", f"{to_table}.{right}", spec.type)
            else:
                adapter.cross_join(to_table)

        elif relation_type == RelationType.DIMENSION:
            adapter.join(to_table, f"{from_table}.{relation.key('left')}", "=",
                         f"{to_table}.{relation.key('right')}", spec.type)

        else:
            raise UnhandledRelationType(relation_type, relation.name)

    return adapter


def _apply_morph_constraint(adapter, table: str, relation: RelationDescriptor) -> None:
    morph_type = relation.key("morph_type")
    morph_class = relation.key("morph_class")
    if morph_type and morph_class:
        adapter.where(f"{table}.{morph_type}", "=", morph_class)


class JoinResolver:
    """
    Compatibility facade over JoinPathFinder and JoinGraphBuilder.

    Usage:
        resolver = JoinResolver(registry.compile())
        plan = resolver.build_join_graph([orders, customers])
        resolver.apply_joins(adapter, plan)
    """

    def __init__(self, schema: CompiledSchema, same_connection_only: bool = True):
        self.finder = JoinPathFinder(schema, same_connection_only=same_connection_only)
        self.graph_builder = JoinGraphBuilder(self.finder)

    def find_join_path(self, source: Table, target: Table) -> Optional[List[JoinSpecification]]:
        return self.finder.find(source, target)

    def build_join_graph(self, tables: Sequence[Table],
                         dimensions: Sequence[Dimension] = ()) -> DatabaseJoinPlan:
        return self.graph_builder.build(tables, dimensions)

    def apply_joins(self, adapter, plan: Union[DatabaseJoinPlan, Iterable[JoinSpecification]]):
        return apply_joins(adapter, plan)
