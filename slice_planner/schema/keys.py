"""Primary key metadata for schema tables."""

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class PrimaryKeyDescriptor:
    """
    Ordered primary key columns of a table.

    Used to decide which side of a join deduplicates rows.
    """
    columns: Tuple[str, ...]
    auto_increment: bool = True

    def __post_init__(self):
        # Lists from catalogs are normalized to tuples
        object.__setattr__(self, "columns", tuple(self.columns))

    def is_single(self) -> bool:
        return len(self.columns) == 1

    def is_composite(self) -> bool:
        return len(self.columns) > 1

    def column(self) -> Optional[str]:
        return self.columns[0] if self.is_single() else None

    def to_dict(self) -> dict:
        return {
            "columns": list(self.columns),
            "autoIncrement": self.auto_increment,
        }

    @classmethod
    def from_dict(cls, data) -> "PrimaryKeyDescriptor":
        if isinstance(data, str):
            return cls(columns=(data,))
        if isinstance(data, (list, tuple)):
            return cls(columns=tuple(data))
        return cls(
            columns=tuple(data.get("columns", [])),
            auto_increment=data.get("autoIncrement", data.get("auto_increment", True)),
        )
