"""
Schema Providers

A schema provider is any source of table metadata: in-code declarations,
catalog files, a remote catalog query. The core never reflects over live
objects itself; providers hand it finished Table structures.

Every provider must implement:
- name(): Provider name, used as the identifier prefix ("manual:orders")
- tables(): Lazy sequence of Tables (re-invoke to restart)
- provides(): Whether the provider owns a table identifier
- resolve_metric_source(): "table.column" -> MetricSource
- relations() / dimensions(): Per-table metadata

Cachable providers additionally implement scan() plus the cache hooks and
inherit boot(), which either restores a valid cache entry or scans.

Usage:
    provider = ManualSchemaProvider("manual", [
        TableDefinition("orders")
            .belongs_to("customer", "customers", foreign_key="customer_id")
            .dimension(TimeDimension.make("created_at")),
        TableDefinition("customers").dimension(StringDimension.make("country")),
    ])
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from ..errors import ReferenceNotFound, TableNotFound
from .cache import SchemaCache
from .dimensions import Dimension, DimensionCatalog
from .keys import PrimaryKeyDescriptor
from .relations import RelationDescriptor, RelationGraph, RelationType
from .table import MetricSource, Table

logger = logging.getLogger(__name__)


class SchemaProvider(ABC):
    """Abstract base class for schema providers."""

    @abstractmethod
    def name(self) -> str:
        """Provider name."""

    @abstractmethod
    def tables(self) -> Iterator[Table]:
        """Yield every table this provider knows about."""

    @abstractmethod
    def provides(self, identifier: str) -> bool:
        """Whether this provider owns `identifier` (bare or prefixed)."""

    @abstractmethod
    def resolve_metric_source(self, reference: str) -> MetricSource:
        """
        Resolve a "table.column" reference.

        Raises:
            ReferenceNotFound: If the table or column is unknown
        """

    @abstractmethod
    def relations(self, table_name: str) -> RelationGraph:
        """Relations declared by a table (empty when unknown)."""

    @abstractmethod
    def dimensions(self, table_name: str) -> DimensionCatalog:
        """Dimensions declared by a table (empty when unknown)."""

    def get_table(self, identifier: str) -> Table:
        """
        Get one table by bare name or prefixed identifier.

        Raises:
            TableNotFound: If this provider does not own the table
        """
        name = self.strip_prefix(identifier)
        for table in self.tables():
            if table.name == name:
                return table
        raise TableNotFound(identifier, provider=self.name())

    def strip_prefix(self, identifier: str) -> str:
        prefix = f"{self.name()}:"
        if identifier.startswith(prefix):
            return identifier[len(prefix):]
        return identifier

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name()!r})"


class CachableSchemaProvider(SchemaProvider):
    """
    A provider whose scan results can be cached.

    boot() must leave the provider either freshly scanned or restored from
    a valid cache entry before tables() or resolve_metric_source() are used.
    """

    _cache: Optional[SchemaCache] = None

    @abstractmethod
    def scan(self) -> None:
        """Discover tables (expensive; run at most once unless invalidated)."""

    @abstractmethod
    def cache_key(self) -> str:
        """Key this provider's scan results are stored under."""

    @abstractmethod
    def is_cache_valid(self) -> bool:
        """Whether the cached entry still reflects the underlying source."""

    @abstractmethod
    def to_cache(self) -> Dict[str, Any]:
        """Serializable snapshot of the scan results."""

    @abstractmethod
    def from_cache(self, data: Dict[str, Any]) -> None:
        """Restore scan results from a snapshot."""

    def boot(self, cache: SchemaCache) -> None:
        self._cache = cache
        key = self.cache_key()

        if cache.has(key) and self.is_cache_valid():
            self.from_cache(cache.get(key))
            logger.info(f"Schema provider '{self.name()}' restored from cache ({key})")
            return

        logger.debug(f"Schema cache miss for provider '{self.name()}' ({key})")
        self.scan()
        if cache.is_enabled():
            cache.put(key, self.to_cache())


class IndexedSchemaProvider(SchemaProvider):
    """
    Shared lookups for providers that hold a name -> Table index.

    Subclasses only need name() and _index().
    """

    @abstractmethod
    def _index(self) -> Mapping[str, Table]:
        """Current name -> Table index."""

    def tables(self) -> Iterator[Table]:
        for table in list(self._index().values()):
            yield table

    def provides(self, identifier: str) -> bool:
        if ":" in identifier and not identifier.startswith(f"{self.name()}:"):
            return False
        return self.strip_prefix(identifier) in self._index()

    def get_table(self, identifier: str) -> Table:
        table = self._index().get(self.strip_prefix(identifier))
        if table is None:
            raise TableNotFound(identifier, provider=self.name())
        return table

    def resolve_metric_source(self, reference: str) -> MetricSource:
        local = self.strip_prefix(reference)
        if "." not in local:
            raise ReferenceNotFound(
                reference,
                reason="expected 'table.column'",
                provider=self.name(),
            )

        table_name, column = local.split(".", 1)
        table = self._index().get(table_name)
        if table is None:
            raise ReferenceNotFound(
                reference,
                reason=f"table '{table_name}' is not declared",
                provider=self.name(),
            )
        if not table.has_column(column):
            raise ReferenceNotFound(
                reference,
                reason=f"column '{column}' is not declared on '{table_name}'",
                provider=self.name(),
            )

        return MetricSource(table=table, column=column)

    def relations(self, table_name: str) -> RelationGraph:
        table = self._index().get(self.strip_prefix(table_name))
        return table.relations if table else RelationGraph()

    def dimensions(self, table_name: str) -> DimensionCatalog:
        table = self._index().get(self.strip_prefix(table_name))
        return table.dimensions if table else DimensionCatalog()


# =============================================================================
# MANUAL (DECLARATIVE) PROVIDER
# =============================================================================

class TableDefinition:
    """
    Fluent, in-code declaration of a table.

    Built into an immutable Table when handed to a ManualSchemaProvider.
    """

    def __init__(self, name: str):
        self.name = name
        self._connection: Optional[str] = None
        self._primary_key: Optional[PrimaryKeyDescriptor] = None
        self._relations: List[RelationDescriptor] = []
        self._dimensions: List[Dimension] = []
        self._columns: List[str] = []
        self._sql: Optional[str] = None
        self._meta: Dict[str, Any] = {}

    def connection(self, connection: str) -> "TableDefinition":
        self._connection = connection
        return self

    def primary_key(self, *columns: str, auto_increment: bool = True) -> "TableDefinition":
        self._primary_key = PrimaryKeyDescriptor(columns=columns, auto_increment=auto_increment)
        return self

    def columns(self, *columns: str) -> "TableDefinition":
        self._columns.extend(columns)
        return self

    def sql(self, sql: str) -> "TableDefinition":
        """Back this table with raw SQL instead of a physical table."""
        self._sql = sql
        return self

    def meta(self, **meta: Any) -> "TableDefinition":
        self._meta.update(meta)
        return self

    def relation(self, descriptor: RelationDescriptor) -> "TableDefinition":
        self._relations.append(descriptor)
        return self

    def belongs_to(self, name: str, target: str, foreign_key: Optional[str] = None,
                   owner_key: str = "id") -> "TableDefinition":
        return self.relation(RelationDescriptor(
            name=name,
            type=RelationType.BELONGS_TO,
            target=target,
            keys={"foreign": foreign_key or f"{name}_id", "owner": owner_key},
        ))

    def has_many(self, name: str, target: str, foreign_key: str,
                 local_key: str = "id") -> "TableDefinition":
        return self.relation(RelationDescriptor(
            name=name,
            type=RelationType.HAS_MANY,
            target=target,
            keys={"local": local_key, "foreign": foreign_key},
        ))

    def has_one(self, name: str, target: str, foreign_key: str,
                local_key: str = "id") -> "TableDefinition":
        return self.relation(RelationDescriptor(
            name=name,
            type=RelationType.HAS_ONE,
            target=target,
            keys={"local": local_key, "foreign": foreign_key},
        ))

    def belongs_to_many(self, name: str, target: str, pivot: str, foreign_pivot_key: str,
                        related_pivot_key: str, local_key: str = "id",
                        owner_key: str = "id") -> "TableDefinition":
        return self.relation(RelationDescriptor(
            name=name,
            type=RelationType.BELONGS_TO_MANY,
            target=target,
            keys={
                "foreign": foreign_pivot_key,
                "related": related_pivot_key,
                "local": local_key,
                "owner": owner_key,
            },
            pivot=pivot,
        ))

    def cross_join(self, target: str, left_key: Optional[str] = None,
                   right_key: Optional[str] = None, name: Optional[str] = None) -> "TableDefinition":
        keys = {}
        if left_key and right_key:
            keys = {"left": left_key, "right": right_key}
        return self.relation(RelationDescriptor(
            name=name or f"cross_{target}",
            type=RelationType.CROSS_JOIN,
            target=target,
            keys=keys,
        ))

    def dimension(self, *dimensions: Dimension) -> "TableDefinition":
        self._dimensions.extend(dimensions)
        return self

    def build(self, provider: str, connection: Optional[str] = None) -> Table:
        return Table(
            name=self.name,
            provider=provider,
            connection=self._connection or connection,
            primary_key=self._primary_key,
            relations=RelationGraph.of(*self._relations),
            dimensions=DimensionCatalog.from_dimensions(self._dimensions),
            columns=tuple(self._columns),
            sql=self._sql,
            meta=dict(self._meta),
        )


class ManualSchemaProvider(IndexedSchemaProvider):
    """
    Provider over tables declared in code.

    Config:
        name: Provider name (identifier prefix)
        tables: TableDefinitions or finished Tables
        connection: Default connection for tables that do not set one
    """

    def __init__(
        self,
        name: str,
        tables: Iterable[Union[TableDefinition, Table]] = (),
        connection: Optional[str] = None,
    ):
        self._name = name
        self._connection = connection
        self._tables: Dict[str, Table] = {}
        for table in tables:
            self.add_table(table)

    def name(self) -> str:
        return self._name

    def add_table(self, table: Union[TableDefinition, Table]) -> "ManualSchemaProvider":
        if isinstance(table, TableDefinition):
            table = table.build(self._name, self._connection)
        elif table.provider != self._name:
            raise ValueError(
                f"Table '{table.identifier}' belongs to provider '{table.provider}', "
                f"not '{self._name}'"
            )
        self._tables[table.name] = table
        return self

    def _index(self) -> Mapping[str, Table]:
        return self._tables


class LazySchemaProvider(IndexedSchemaProvider, CachableSchemaProvider):
    """
    Base for cachable providers that build their index on first use.

    The scan runs at most once per process under a lock; concurrent first
    callers wait for the winner instead of scanning twice.
    """

    def __init__(self):
        self._tables: Dict[str, Table] = {}
        self._scanned = False
        self._scan_lock = threading.Lock()

    @abstractmethod
    def discover(self) -> Iterable[Table]:
        """Produce the provider's tables (called by scan())."""

    def scan(self) -> None:
        with self._scan_lock:
            if self._scanned:
                return
            tables = {table.name: table for table in self.discover()}
            self._tables = tables
            self._scanned = True
        logger.info(f"Schema provider '{self.name()}' scanned {len(tables)} tables")

    def rescan(self) -> None:
        """Drop the current index and scan again."""
        with self._scan_lock:
            self._scanned = False
        self.scan()
        if self._cache is not None and self._cache.is_enabled():
            self._cache.put(self.cache_key(), self.to_cache())

    def _ensure_scanned(self) -> None:
        if not self._scanned:
            self.scan()

    def _index(self) -> Mapping[str, Table]:
        self._ensure_scanned()
        return self._tables

    def _restore(self, tables: Iterable[Table]) -> None:
        with self._scan_lock:
            self._tables = {table.name: table for table in tables}
            self._scanned = True
