"""
Dimension metadata

Dimensions are the groupable attributes of a table. Every variant exposes
name() and column(); a dimension built from a "table.column" reference
also remembers its owning table, which the plan builder uses to decide
which table the dimension is selected from.

Variants:
    Dimension          generic labeled dimension with optional value filters
    TimeDimension      bucketed by granularity (hour, day, week, month, ...)
    StringDimension    optional known-value set
    BooleanDimension
    EnumDimension      backing enum identity and ordered case list

All variants are immutable; builder methods return modified copies.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Type


class TimeGranularity(str, Enum):
    """Time dimension granularities."""
    YEAR = "year"
    QUARTER = "quarter"
    MONTH = "month"
    WEEK = "week"
    DAY = "day"
    HOUR = "hour"
    MINUTE = "minute"


class TimePrecision(str, Enum):
    """Storage precision of a time column."""
    DATE = "date"
    TIMESTAMP = "timestamp"


def _granularity_value(granularity: Any) -> str:
    if isinstance(granularity, Enum):
        return granularity.value
    return str(granularity).lower()


@dataclass(frozen=True)
class Dimension:
    """
    A generic labeled dimension.

    Attributes:
        reference: Column name, or "table.column" to pin the owning table
        label: Display label (defaults to the name)
        type: Free-form type tag
        meta: Arbitrary metadata
        filters: Value filters ("only", "except", "where")
        display_name: Name override (defaults to the column)
    """
    KIND: ClassVar[str] = "dimension"

    reference: str
    label: Optional[str] = None
    type: str = "string"
    meta: Mapping[str, Any] = field(default_factory=dict)
    filters: Mapping[str, Any] = field(default_factory=dict)
    display_name: Optional[str] = None

    @classmethod
    def make(cls, reference: str):
        return cls(reference=reference)

    # -- identity -------------------------------------------------------------

    def column(self) -> str:
        return self.reference.rsplit(".", 1)[-1]

    def table(self) -> Optional[str]:
        if "." not in self.reference:
            return None
        return self.reference.rsplit(".", 1)[0]

    def name(self) -> str:
        return self.display_name or self.column()

    def key(self) -> str:
        return f"{self.KIND}::{self.name()}"

    def alias(self) -> str:
        return self.name()

    # -- builders -------------------------------------------------------------

    def with_name(self, name: str):
        return replace(self, display_name=name)

    def with_label(self, label: str):
        return replace(self, label=label)

    def with_type(self, type_tag: str):
        return replace(self, type=type_tag)

    def with_meta(self, meta: Mapping[str, Any]):
        return replace(self, meta=dict(meta))

    def on_table(self, table: str):
        """Pin the dimension to an owning table."""
        return replace(self, reference=f"{table}.{self.column()}")

    def only(self, values: Iterable[Any]):
        """Filter to only include specific values."""
        return replace(self, filters={**self.filters, "only": list(values)})

    def except_(self, values: Iterable[Any]):
        """Filter to exclude specific values."""
        return replace(self, filters={**self.filters, "except": list(values)})

    def where(self, operator: str, value: Any):
        """Add a custom comparison filter."""
        return replace(
            self,
            filters={**self.filters, "where": {"operator": operator, "value": value}},
        )

    def has_filters(self) -> bool:
        return bool(self.filters)

    # -- serialization --------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "kind": self.KIND,
            "reference": self.reference,
            "name": self.name(),
            "label": self.label or self.name(),
            "column": self.column(),
            "type": self.type,
            "meta": dict(self.meta),
            "filters": dict(self.filters),
        }

    @classmethod
    def _from_dict_kwargs(cls, data: dict) -> Dict[str, Any]:
        reference = data.get("reference") or data.get("column") or data["name"]
        name = data.get("name")
        label = data.get("label")
        kwargs: Dict[str, Any] = {
            "reference": reference,
            "label": label if label != (name or reference.rsplit(".", 1)[-1]) else None,
            "meta": data.get("meta", {}),
            "filters": data.get("filters", {}),
            "display_name": name if name and name != reference.rsplit(".", 1)[-1] else None,
        }
        if "type" in data:
            kwargs["type"] = data["type"]
        return kwargs


@dataclass(frozen=True)
class TimeDimension(Dimension):
    """A time column bucketed by granularity."""
    KIND: ClassVar[str] = "time"

    HOURLY: ClassVar[str] = TimeGranularity.HOUR.value
    DAILY: ClassVar[str] = TimeGranularity.DAY.value
    WEEKLY: ClassVar[str] = TimeGranularity.WEEK.value
    MONTHLY: ClassVar[str] = TimeGranularity.MONTH.value
    YEARLY: ClassVar[str] = TimeGranularity.YEAR.value

    type: str = "datetime"
    granularity: str = TimeGranularity.DAY.value
    precision: str = TimePrecision.TIMESTAMP.value

    def set_granularity(self, granularity) -> "TimeDimension":
        return replace(self, granularity=_granularity_value(granularity))

    def hourly(self) -> "TimeDimension":
        return self.set_granularity(self.HOURLY)

    def daily(self) -> "TimeDimension":
        return self.set_granularity(self.DAILY)

    def weekly(self) -> "TimeDimension":
        return self.set_granularity(self.WEEKLY)

    def monthly(self) -> "TimeDimension":
        return self.set_granularity(self.MONTHLY)

    def yearly(self) -> "TimeDimension":
        return self.set_granularity(self.YEARLY)

    def as_date(self) -> "TimeDimension":
        return replace(self, precision=TimePrecision.DATE.value)

    def as_timestamp(self) -> "TimeDimension":
        return replace(self, precision=TimePrecision.TIMESTAMP.value)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["granularity"] = self.granularity
        data["precision"] = self.precision
        return data

    @classmethod
    def _from_dict_kwargs(cls, data: dict) -> Dict[str, Any]:
        kwargs = super()._from_dict_kwargs(data)
        kwargs["granularity"] = _granularity_value(data.get("granularity", "day"))
        kwargs["precision"] = data.get("precision", TimePrecision.TIMESTAMP.value)
        return kwargs


@dataclass(frozen=True)
class StringDimension(Dimension):
    """A string column with an optional known-value set."""
    KIND: ClassVar[str] = "string"

    values: Tuple[str, ...] = ()

    def with_values(self, values: Iterable[str]) -> "StringDimension":
        return replace(self, values=tuple(values))

    def add_value(self, value: str) -> "StringDimension":
        return replace(self, values=self.values + (value,))

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["values"] = list(self.values)
        return data

    @classmethod
    def _from_dict_kwargs(cls, data: dict) -> Dict[str, Any]:
        kwargs = super()._from_dict_kwargs(data)
        kwargs["values"] = tuple(data.get("values", ()))
        return kwargs


@dataclass(frozen=True)
class BooleanDimension(Dimension):
    """A true/false column."""
    KIND: ClassVar[str] = "boolean"

    type: str = "boolean"


@dataclass(frozen=True)
class EnumDimension(Dimension):
    """A column backed by an enumeration."""
    KIND: ClassVar[str] = "enum"

    type: str = "enum"
    enum_class: Optional[str] = None
    cases: Tuple[Any, ...] = ()

    @classmethod
    def from_enum(cls, reference: str, enum_cls: Type[Enum]) -> "EnumDimension":
        return cls(
            reference=reference,
            enum_class=f"{enum_cls.__module__}.{enum_cls.__qualname__}",
            cases=tuple(member.value for member in enum_cls),
        )

    def with_enum_class(self, enum_class: str) -> "EnumDimension":
        return replace(self, enum_class=enum_class)

    def with_cases(self, cases: Iterable[Any]) -> "EnumDimension":
        return replace(self, cases=tuple(cases))

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["enumClass"] = self.enum_class
        data["cases"] = list(self.cases)
        return data

    @classmethod
    def _from_dict_kwargs(cls, data: dict) -> Dict[str, Any]:
        kwargs = super()._from_dict_kwargs(data)
        kwargs["enum_class"] = data.get("enumClass", data.get("enum_class"))
        kwargs["cases"] = tuple(data.get("cases", ()))
        return kwargs


DIMENSION_KINDS: Dict[str, Type[Dimension]] = {
    Dimension.KIND: Dimension,
    TimeDimension.KIND: TimeDimension,
    StringDimension.KIND: StringDimension,
    BooleanDimension.KIND: BooleanDimension,
    EnumDimension.KIND: EnumDimension,
}


def dimension_from_dict(data: dict) -> Dimension:
    """Rebuild a dimension from its to_dict() form."""
    kind = data.get("kind", Dimension.KIND)
    dimension_cls = DIMENSION_KINDS.get(kind)
    if dimension_cls is None:
        raise ValueError(f"Unknown dimension kind: {kind}")
    return dimension_cls(**dimension_cls._from_dict_kwargs(data))


class DimensionCatalog:
    """
    Per-table map of dimension key -> Dimension.

    Keys are usually "<kind>::<name>" (see Dimension.key()).
    """

    def __init__(self, dimensions: Optional[Mapping[str, Dimension]] = None):
        self._dimensions: Dict[str, Dimension] = dict(dimensions or {})

    @classmethod
    def from_dimensions(cls, dimensions: Iterable[Dimension]) -> "DimensionCatalog":
        return cls({dimension.key(): dimension for dimension in dimensions})

    def get(self, key: str) -> Optional[Dimension]:
        return self._dimensions.get(key)

    def has(self, key: str) -> bool:
        return key in self._dimensions

    def all(self) -> Dict[str, Dimension]:
        return dict(self._dimensions)

    def keys(self) -> List[str]:
        return list(self._dimensions)

    def of_type(self, dimension_cls: Type[Dimension]) -> Dict[str, Dimension]:
        return {
            key: dimension
            for key, dimension in self._dimensions.items()
            if isinstance(dimension, dimension_cls)
        }

    def count(self) -> int:
        return len(self._dimensions)

    def is_empty(self) -> bool:
        return not self._dimensions

    def add(self, key: str, dimension: Dimension) -> "DimensionCatalog":
        return DimensionCatalog({**self._dimensions, key: dimension})

    def merge(self, other: "DimensionCatalog") -> "DimensionCatalog":
        """Union of both catalogs; `other` wins on key collisions."""
        return DimensionCatalog({**self._dimensions, **other.all()})

    def __iter__(self) -> Iterator[Dimension]:
        return iter(self._dimensions.values())

    def __len__(self) -> int:
        return len(self._dimensions)

    def __eq__(self, other) -> bool:
        return isinstance(other, DimensionCatalog) and self._dimensions == other._dimensions

    def __repr__(self) -> str:
        return f"DimensionCatalog({self.keys()!r})"

    def to_dict(self) -> dict:
        return {key: dimension.to_dict() for key, dimension in self._dimensions.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, dict]) -> "DimensionCatalog":
        return cls({key: dimension_from_dict(item) for key, item in (data or {}).items()})
