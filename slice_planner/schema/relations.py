"""
Relation metadata

A RelationDescriptor is a directed edge from one table to another. The
inverse edge is never implied: orders -> customers does not let the
resolver walk customers -> orders unless customers declares it.

Key roles by relation type:
    BELONGS_TO / MORPH_TO        foreign, owner
    HAS_MANY / HAS_ONE / MORPH_MANY   local, foreign
    BELONGS_TO_MANY              foreign, related (pivot columns), local, owner
    CROSS_JOIN                   left, right (absent = unconditional)
    DIMENSION                    left, right (emitted by the dimension fallback)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Mapping, Optional


class RelationType(str, Enum):
    """Relation kinds understood by the join resolver."""
    BELONGS_TO = "belongs_to"
    HAS_MANY = "has_many"
    HAS_ONE = "has_one"
    BELONGS_TO_MANY = "belongs_to_many"
    MORPH_TO = "morph_to"
    MORPH_MANY = "morph_many"
    CROSS_JOIN = "cross_join"
    DIMENSION = "dimension"


_ONE_TYPES = (RelationType.BELONGS_TO, RelationType.HAS_ONE, RelationType.MORPH_TO)
_MANY_TYPES = (RelationType.HAS_MANY, RelationType.MORPH_MANY, RelationType.BELONGS_TO_MANY)


@dataclass(frozen=True)
class RelationDescriptor:
    """
    A declared relationship from the owning table to `target`.

    Attributes:
        name: Relation name (unique per table)
        type: Relation kind
        target: Target table identifier ("provider:table" or bare table name)
        keys: Role name -> column name
        pivot: Pivot table name for BELONGS_TO_MANY
    """
    name: str
    type: RelationType
    target: str
    keys: Mapping[str, str] = field(default_factory=dict)
    pivot: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.type, RelationType):
            object.__setattr__(self, "type", RelationType(self.type))
        object.__setattr__(self, "keys", dict(self.keys))

    def key(self, role: str, default: Optional[str] = None) -> Optional[str]:
        return self.keys.get(role, default)

    def is_one(self) -> bool:
        return self.type in _ONE_TYPES

    def is_many(self) -> bool:
        return self.type in _MANY_TYPES

    def is_pivot(self) -> bool:
        return self.type == RelationType.BELONGS_TO_MANY

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "type": self.type.value,
            "target": self.target,
            "keys": dict(self.keys),
        }
        if self.pivot:
            data["pivot"] = self.pivot
        return data

    @classmethod
    def from_dict(cls, data: dict, name: Optional[str] = None) -> "RelationDescriptor":
        return cls(
            name=data.get("name", name or ""),
            type=RelationType(data["type"]),
            target=data["target"],
            keys=data.get("keys", {}),
            pivot=data.get("pivot"),
        )


class RelationGraph:
    """
    Per-table map of relation name -> RelationDescriptor.

    Declaration order is preserved; the join resolver's tie-break between
    equally short paths depends on it. Cycles are never checked here.
    """

    def __init__(self, relations: Optional[Mapping[str, RelationDescriptor]] = None):
        self._relations: Dict[str, RelationDescriptor] = dict(relations or {})

    @classmethod
    def of(cls, *relations: RelationDescriptor) -> "RelationGraph":
        return cls({relation.name: relation for relation in relations})

    def get(self, name: str) -> Optional[RelationDescriptor]:
        return self._relations.get(name)

    def has(self, name: str) -> bool:
        return name in self._relations

    def all(self) -> Dict[str, RelationDescriptor]:
        return dict(self._relations)

    def names(self) -> List[str]:
        return list(self._relations)

    def of_type(self, relation_type: RelationType) -> Dict[str, RelationDescriptor]:
        return {
            name: descriptor
            for name, descriptor in self._relations.items()
            if descriptor.type == relation_type
        }

    def for_each(self, callback: Callable[[str, RelationDescriptor], None]) -> None:
        for name, descriptor in self._relations.items():
            callback(name, descriptor)

    def count(self) -> int:
        return len(self._relations)

    def is_empty(self) -> bool:
        return not self._relations

    def __iter__(self) -> Iterator[RelationDescriptor]:
        return iter(self._relations.values())

    def __len__(self) -> int:
        return len(self._relations)

    def __eq__(self, other) -> bool:
        return isinstance(other, RelationGraph) and self._relations == other._relations

    def __repr__(self) -> str:
        return f"RelationGraph({self.names()!r})"

    def to_dict(self) -> dict:
        return {name: descriptor.to_dict() for name, descriptor in self._relations.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, dict]) -> "RelationGraph":
        return cls({
            name: RelationDescriptor.from_dict(item, name=name)
            for name, item in (data or {}).items()
        })
