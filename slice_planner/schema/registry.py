"""
Schema Registry

Aggregates every registered schema provider into one lookup surface and
disambiguates table names that more than one provider owns.

DISAMBIGUATION RULE:
--------------------
- "provider:table" routes straight to that provider
- "table" asks every provider; zero owners -> TableNotFound,
  one owner -> resolved, several owners -> AmbiguousTable

The registry never silently picks a provider when a bare name is shared.

Usage:
    registry = SchemaRegistry()
    registry.register(ManualSchemaProvider("shop", [...]))
    registry.register(CatalogSchemaProvider("warehouse", ["catalog.yaml"]))

    source = registry.resolve_metric_source("shop:orders.total")
    schema = registry.compile()
"""

import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..errors import AmbiguousTable, ReferenceNotFound, TableNotFound
from .cache import SchemaCache
from .dimensions import DimensionCatalog
from .providers import CachableSchemaProvider, SchemaProvider
from .relations import RelationGraph
from .table import MetricSource, Table

logger = logging.getLogger(__name__)


def split_reference(reference: str) -> Tuple[Optional[str], str]:
    """Split "provider:rest" into (provider, rest); bare references give (None, rest)."""
    if ":" in reference:
        provider, rest = reference.split(":", 1)
        return provider, rest
    return None, reference


class SchemaRegistry:
    """Ordered collection of schema providers with disambiguated lookups."""

    def __init__(self, cache: Optional[SchemaCache] = None):
        self._providers: "OrderedDict[str, SchemaProvider]" = OrderedDict()
        self._cache = cache if cache is not None else SchemaCache()

    # -------------------------------------------------------------------------
    # Providers
    # -------------------------------------------------------------------------

    def register(self, provider: SchemaProvider) -> "SchemaRegistry":
        """Register (and boot, when cachable) a provider."""
        if isinstance(provider, CachableSchemaProvider):
            provider.boot(self._cache)

        name = provider.name()
        if name in self._providers:
            logger.warning(f"Replacing schema provider '{name}'")
        self._providers[name] = provider
        logger.info(f"Registered schema provider: {name}")
        return self

    def get_provider(self, name: str) -> Optional[SchemaProvider]:
        return self._providers.get(name)

    def providers(self) -> Dict[str, SchemaProvider]:
        return dict(self._providers)

    @property
    def cache(self) -> SchemaCache:
        return self._cache

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve_table(self, identifier: str) -> Table:
        """
        Resolve a bare or provider-prefixed table identifier.

        Raises:
            TableNotFound: No provider owns the table
            AmbiguousTable: More than one provider owns the bare name
        """
        provider_name, table_name = split_reference(identifier)

        if provider_name is not None:
            provider = self._providers.get(provider_name)
            if provider is None:
                raise TableNotFound(
                    identifier,
                    provider=provider_name,
                    available_providers=list(self._providers),
                    reason="provider is not registered",
                )
            if not provider.provides(table_name):
                raise TableNotFound(table_name, provider=provider_name)
            return provider.get_table(table_name)

        owners = [p for p in self._providers.values() if p.provides(identifier)]
        if not owners:
            raise TableNotFound(identifier, available_providers=list(self._providers))
        if len(owners) > 1:
            raise AmbiguousTable(identifier, [p.name() for p in owners])

        return owners[0].get_table(identifier)

    def resolve_metric_source(self, reference: str) -> MetricSource:
        """
        Resolve "table.column" or "provider:table.column".

        The table part is disambiguated exactly like resolve_table(); column
        resolution is delegated to the owning provider.
        """
        provider_name, rest = split_reference(reference)
        if "." not in rest:
            raise ReferenceNotFound(reference, reason="expected 'table.column' or 'provider:table.column'")

        table_part, column = rest.split(".", 1)
        table_identifier = f"{provider_name}:{table_part}" if provider_name else table_part
        table = self.resolve_table(table_identifier)

        provider = self._providers[table.provider]
        return provider.resolve_metric_source(f"{table.name}.{column}")

    def normalize_metrics(self, aggregations: Iterable) -> List[Tuple[MetricSource, object]]:
        """Pair each aggregation with the MetricSource its reference resolves to."""
        return [
            (self.resolve_metric_source(aggregation.get_reference()), aggregation)
            for aggregation in aggregations
        ]

    def can_resolve(self, identifier: str) -> bool:
        try:
            self.resolve_table(identifier)
            return True
        except (TableNotFound, AmbiguousTable):
            return False

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def all_tables(self) -> Dict[str, Table]:
        """
        Every known table keyed by its shortest unambiguous reference.

        Names owned by one provider use the bare name; shared names are
        listed once per provider as "provider:name".
        """
        by_name: "OrderedDict[str, List[Table]]" = OrderedDict()
        for provider in self._providers.values():
            for table in provider.tables():
                by_name.setdefault(table.name, []).append(table)

        result: Dict[str, Table] = {}
        for name, tables in by_name.items():
            if len(tables) == 1:
                result[name] = tables[0]
            else:
                for table in tables:
                    result[table.identifier] = table
        return result

    def available_tables(self) -> List[str]:
        return list(self.all_tables())

    def compile(self) -> "CompiledSchema":
        """Snapshot every provider's tables into a CompiledSchema."""
        tables_by_identifier: Dict[str, Table] = {}
        name_owners: Dict[str, List[Table]] = {}
        table_providers: Dict[str, str] = {}
        relations: Dict[str, RelationGraph] = {}
        dimensions: Dict[str, DimensionCatalog] = {}
        connection_index: Dict[str, List[str]] = {}

        for provider_name, provider in self._providers.items():
            for table in provider.tables():
                identifier = table.identifier
                tables_by_identifier[identifier] = table
                name_owners.setdefault(table.name, []).append(table)
                table_providers[identifier] = provider_name
                relations[identifier] = table.relations
                dimensions[identifier] = table.dimensions
                connection_index.setdefault(table.connection_key, []).append(identifier)

        tables_by_name = {
            name: owners[0] for name, owners in name_owners.items() if len(owners) == 1
        }

        logger.debug(
            f"Compiled schema: {len(tables_by_identifier)} tables, "
            f"{len(connection_index)} connections"
        )

        return CompiledSchema(
            tables_by_identifier=tables_by_identifier,
            tables_by_name=tables_by_name,
            table_providers=table_providers,
            relations=relations,
            dimensions=dimensions,
            connection_index=connection_index,
        )


class CompiledSchema:
    """
    Immutable snapshot of every table known to a registry.

    Bare-name lookups only succeed for names a single provider owns.
    """

    def __init__(
        self,
        tables_by_identifier: Mapping[str, Table],
        tables_by_name: Mapping[str, Table],
        table_providers: Mapping[str, str],
        relations: Mapping[str, RelationGraph],
        dimensions: Mapping[str, DimensionCatalog],
        connection_index: Mapping[str, Sequence[str]],
    ):
        self._tables_by_identifier = dict(tables_by_identifier)
        self._tables_by_name = dict(tables_by_name)
        self._table_providers = dict(table_providers)
        self._relations = dict(relations)
        self._dimensions = dict(dimensions)
        self._connection_index = {key: list(ids) for key, ids in connection_index.items()}

    @classmethod
    def from_tables(cls, tables: Iterable[Table]) -> "CompiledSchema":
        tables = list(tables)
        name_counts: Dict[str, int] = {}
        for table in tables:
            name_counts[table.name] = name_counts.get(table.name, 0) + 1

        connection_index: Dict[str, List[str]] = {}
        for table in tables:
            connection_index.setdefault(table.connection_key, []).append(table.identifier)

        return cls(
            tables_by_identifier={t.identifier: t for t in tables},
            tables_by_name={t.name: t for t in tables if name_counts[t.name] == 1},
            table_providers={t.identifier: t.provider for t in tables},
            relations={t.identifier: t.relations for t in tables},
            dimensions={t.identifier: t.dimensions for t in tables},
            connection_index=connection_index,
        )

    def resolve_table(self, identifier: str, prefer_provider: Optional[str] = None) -> Optional[Table]:
        if identifier in self._tables_by_identifier:
            return self._tables_by_identifier[identifier]

        if prefer_provider and ":" not in identifier:
            preferred = self._tables_by_identifier.get(f"{prefer_provider}:{identifier}")
            if preferred is not None:
                return preferred

        return self._tables_by_name.get(identifier)

    def resolve_table_by_name(self, name: str) -> Optional[Table]:
        return self._tables_by_name.get(name)

    def get_relations(self, identifier: str) -> RelationGraph:
        if identifier not in self._relations:
            raise TableNotFound(identifier, reason="no relations in compiled schema")
        return self._relations[identifier]

    def get_dimensions(self, identifier: str) -> DimensionCatalog:
        if identifier not in self._dimensions:
            raise TableNotFound(identifier, reason="no dimensions in compiled schema")
        return self._dimensions[identifier]

    def get_tables_on_connection(self, connection_key: str) -> List[str]:
        return list(self._connection_index.get(connection_key, []))

    def get_all_tables(self) -> Dict[str, Table]:
        return dict(self._tables_by_identifier)

    def has_table(self, identifier: str) -> bool:
        return identifier in self._tables_by_identifier or identifier in self._tables_by_name

    def connections(self) -> List[str]:
        return list(self._connection_index)

    def get_table_provider(self, identifier: str) -> Optional[str]:
        return self._table_providers.get(identifier)

    def get_connections_for_metrics(self, metrics: Iterable[MetricSource]) -> List[str]:
        keys: Dict[str, bool] = {}
        for metric in metrics:
            table = metric.table
            connection = metric.get_connection()
            keys[f"{table.provider}:{connection if connection is not None else 'null'}"] = True
        return list(keys)
