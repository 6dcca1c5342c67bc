"""
Table metadata

A Table is the immutable, provider-produced description of one queryable
source: a physical table, or a virtual one backed by raw SQL. Tables are
recreated on every provider scan or cache load and never mutated after.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from .dimensions import DimensionCatalog, dimension_from_dict
from .keys import PrimaryKeyDescriptor
from .relations import RelationGraph


@dataclass(frozen=True, eq=False)
class Table:
    """
    A table known to a schema provider.

    Attributes:
        name: Bare table name (not unique across providers)
        provider: Name of the owning schema provider
        connection: Connection name the table lives on
        primary_key: Optional primary key descriptor
        relations: Declared outgoing relations
        dimensions: Declared groupable columns
        columns: Known column names (empty when the provider does not know them)
        sql: Raw SQL for virtual tables (used instead of the physical name)
        meta: Arbitrary provider metadata
    """
    name: str
    provider: str
    connection: Optional[str] = None
    primary_key: Optional[PrimaryKeyDescriptor] = None
    relations: RelationGraph = field(default_factory=RelationGraph)
    dimensions: DimensionCatalog = field(default_factory=DimensionCatalog)
    columns: Tuple[str, ...] = ()
    sql: Optional[str] = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))

    @property
    def identifier(self) -> str:
        """Globally unique, provider-prefixed identifier."""
        return f"{self.provider}:{self.name}"

    @property
    def connection_key(self) -> str:
        """Provider-scoped connection key; tables sharing it may be SQL-joined."""
        return f"{self.provider}:{self.connection if self.connection is not None else 'null'}"

    def is_virtual(self) -> bool:
        return self.sql is not None

    def has_column(self, column: str) -> bool:
        """Unknown column sets accept every column."""
        if not self.columns:
            return True
        return column in self.columns or column == "*"

    def __eq__(self, other) -> bool:
        return isinstance(other, Table) and self.identifier == other.identifier

    def __hash__(self) -> int:
        return hash(self.identifier)

    def __repr__(self) -> str:
        return f"Table({self.identifier!r}, connection={self.connection!r})"

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {
            "name": self.name,
            "connection": self.connection,
            "primaryKey": self.primary_key.to_dict() if self.primary_key else None,
            "relations": self.relations.to_dict(),
            "dimensions": self.dimensions.to_dict(),
            "columns": list(self.columns),
            "meta": dict(self.meta),
        }
        if self.sql is not None:
            data["sql"] = self.sql
        return data

    @classmethod
    def from_dict(cls, data: dict, provider: str, connection: Optional[str] = None) -> "Table":
        primary_key = data.get("primaryKey", data.get("primary_key"))
        dimensions = data.get("dimensions") or {}
        if isinstance(dimensions, list):
            catalog = DimensionCatalog.from_dimensions(dimension_from_dict(d) for d in dimensions)
        else:
            catalog = DimensionCatalog.from_dict(dimensions)

        return cls(
            name=data["name"],
            provider=provider,
            connection=data.get("connection") or connection,
            primary_key=PrimaryKeyDescriptor.from_dict(primary_key) if primary_key else None,
            relations=RelationGraph.from_dict(data.get("relations") or {}),
            dimensions=catalog,
            columns=tuple(data.get("columns") or ()),
            sql=data.get("sql"),
            meta=data.get("meta") or {},
        )


@dataclass(frozen=True)
class MetricSource:
    """A resolved Table plus the bare column an aggregation reads."""
    table: Table
    column: str
    connection: Optional[str] = None

    def key(self) -> str:
        return f"{self.table.identifier}.{self.column}"

    def table_name(self) -> str:
        return self.table.name

    def table_identifier(self) -> str:
        return self.table.identifier

    def get_connection(self) -> Optional[str]:
        return self.connection if self.connection is not None else self.table.connection
