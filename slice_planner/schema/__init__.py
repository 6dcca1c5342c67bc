"""
Slice Planner Schema Module

Provides the metadata layer the planner works from:
- Dimension and relation value types
- Schema providers (in-code declarations, YAML catalogs)
- Schema cache backends (memory, Redis)
- Registry with provider disambiguation and compiled snapshots
"""

from .cache import RedisSchemaCache, SchemaCache
from .catalog import CatalogSchemaProvider
from .dimensions import (
    BooleanDimension,
    Dimension,
    DimensionCatalog,
    EnumDimension,
    StringDimension,
    TimeDimension,
    TimeGranularity,
    dimension_from_dict,
)
from .keys import PrimaryKeyDescriptor
from .providers import (
    CachableSchemaProvider,
    ManualSchemaProvider,
    SchemaProvider,
    TableDefinition,
)
from .registry import CompiledSchema, SchemaRegistry
from .relations import RelationDescriptor, RelationGraph, RelationType
from .table import MetricSource, Table

__all__ = [
    "BooleanDimension",
    "CachableSchemaProvider",
    "CatalogSchemaProvider",
    "CompiledSchema",
    "Dimension",
    "DimensionCatalog",
    "EnumDimension",
    "ManualSchemaProvider",
    "MetricSource",
    "PrimaryKeyDescriptor",
    "RedisSchemaCache",
    "RelationDescriptor",
    "RelationGraph",
    "RelationType",
    "SchemaCache",
    "SchemaProvider",
    "SchemaRegistry",
    "StringDimension",
    "Table",
    "TableDefinition",
    "TimeDimension",
    "TimeGranularity",
    "dimension_from_dict",
]
