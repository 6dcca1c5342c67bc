"""
Aggregations

Metric value types. An aggregation reads one "table.column" reference
(optionally provider-prefixed) and compiles to SQL through an
AggregationCompiler; it never renders SQL itself.

ROLLUPS:
--------
When a plan is executed as a software join, each table's partial results
are combined in process. rollup() says how:

    Sum, Count  -> "sum"
    Min         -> "min"
    Max         -> "max"
    Avg         -> "avg"   (selected as <alias>__sum and <alias>__count)
    Percentile  -> None    (cannot be combined)
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from ..errors import InvalidAggregation

if TYPE_CHECKING:
    from ..drivers.grammar import QueryGrammar
    from .compiler import AggregationCompiler

logger = logging.getLogger(__name__)


class Aggregation:
    """Base aggregation over a single column reference."""

    ROLLUP: Optional[str] = None

    def __init__(self, reference: str):
        if not reference or "." not in reference:
            raise InvalidAggregation(
                f"Aggregation reference must be 'table.column' or "
                f"'provider:table.column', got '{reference}'"
            )
        self._reference = reference
        self._alias: Optional[str] = None

    @classmethod
    def make(cls, reference: str, *args, **kwargs):
        return cls(reference, *args, **kwargs)

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def kind(self) -> str:
        return type(self).__name__.lower()

    def get_reference(self) -> str:
        return self._reference

    def provider(self) -> Optional[str]:
        if ":" in self._reference:
            return self._reference.split(":", 1)[0]
        return None

    def local_reference(self) -> str:
        """The reference without its provider prefix ("table.column")."""
        if ":" in self._reference:
            return self._reference.split(":", 1)[1]
        return self._reference

    def table(self) -> str:
        return self.local_reference().rsplit(".", 1)[0]

    def column(self) -> str:
        return self.local_reference().rsplit(".", 1)[1]

    def set_alias(self, alias: str) -> "Aggregation":
        self._alias = alias
        return self

    def get_alias(self) -> str:
        if self._alias:
            return self._alias
        normalized = self._reference.replace(":", "_").replace(".", "_")
        return f"{self.kind()}_{normalized}"

    def rollup(self) -> Optional[str]:
        return self.ROLLUP

    # -------------------------------------------------------------------------
    # Compilation
    # -------------------------------------------------------------------------

    def to_sql(self, grammar: "QueryGrammar", compiler: "AggregationCompiler") -> str:
        return compiler.compile(self, grammar)

    def with_reference(self, reference: str, alias: Optional[str] = None) -> "Aggregation":
        """Copy of this aggregation reading a different reference."""
        clone = self._copy(reference)
        clone.set_alias(alias or self.get_alias())
        return clone

    def _copy(self, reference: str) -> "Aggregation":
        return type(self)(reference)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind(),
            "reference": self._reference,
            "alias": self.get_alias(),
            "rollup": self.rollup(),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._reference!r}, alias={self.get_alias()!r})"


class Sum(Aggregation):
    ROLLUP = "sum"


class Count(Aggregation):
    # Per-table counts add up across partitions
    ROLLUP = "sum"


class Avg(Aggregation):
    ROLLUP = "avg"

    def partial_aliases(self) -> Tuple[str, str]:
        alias = self.get_alias()
        return f"{alias}__sum", f"{alias}__count"


class Min(Aggregation):
    ROLLUP = "min"


class Max(Aggregation):
    ROLLUP = "max"


class Percentile(Aggregation):
    """
    Continuous percentile (0.0 to 1.0, default median).

    Compiled per backend; there is no portable default.
    """

    ROLLUP = None

    def __init__(self, reference: str, percentile: float = 0.5):
        super().__init__(reference)
        self._percentile = 0.5
        self.percentile(percentile)

    def percentile(self, percentile: float) -> "Percentile":
        if percentile < 0 or percentile > 1:
            raise InvalidAggregation(f"Percentile must be between 0 and 1. Got: {percentile}")
        self._percentile = float(percentile)
        return self

    def median(self) -> "Percentile":
        return self.percentile(0.5)

    def get_percentile(self) -> float:
        return self._percentile

    def _copy(self, reference: str) -> "Percentile":
        return Percentile(reference, self._percentile)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["percentile"] = self._percentile
        return data


AGGREGATIONS = {cls.__name__.lower(): cls for cls in (Sum, Count, Avg, Min, Max, Percentile)}
