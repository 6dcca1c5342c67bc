"""
Dimension Resolution

Matches a requested dimension against the dimension catalogs of candidate
tables. A catalog entry matches when it is an instance of the requested
dimension's class and carries the same name, so a generic Dimension
request matches any variant while a TimeDimension request only matches
time dimensions.
"""

import logging
from typing import Dict, Iterable, Mapping, Optional

from ..errors import UnsupportedGranularity
from ..schema.dimensions import Dimension, TimeDimension, TimeGranularity
from ..schema.table import Table

logger = logging.getLogger(__name__)

# Finest to coarsest
GRANULARITY_ORDER = [
    TimeGranularity.MINUTE.value,
    TimeGranularity.HOUR.value,
    TimeGranularity.DAY.value,
    TimeGranularity.WEEK.value,
    TimeGranularity.MONTH.value,
    TimeGranularity.QUARTER.value,
    TimeGranularity.YEAR.value,
]


class DimensionResolver:
    """Resolves requested dimensions to the tables that declare them."""

    def resolve_dimension(self, dimension: Dimension, tables: Iterable[Table]) -> Dict[str, Dimension]:
        """Table name -> matching catalog dimension, for every table that declares it."""
        resolved: Dict[str, Dimension] = {}
        for table in tables:
            match = self._find_in_catalog(dimension, table)
            if match is not None:
                resolved[table.name] = match
        return resolved

    def _find_in_catalog(self, requested: Dimension, table: Table) -> Optional[Dimension]:
        for candidate in table.dimensions:
            if isinstance(candidate, type(requested)) and candidate.name() == requested.name():
                return candidate
        return None

    def get_column_for_table(self, dimension: Dimension) -> str:
        return dimension.column()

    def validate_granularity(self, resolved: Mapping[str, Dimension], requested: Dimension,
                             grammar=None) -> None:
        """
        Check a time dimension's granularity.

        A catalog time dimension may declare meta["minGranularity"]; asking
        for anything finer is rejected.

        Raises:
            UnsupportedGranularity: Unknown granularity, one the grammar
                cannot bucket, or one finer than a table allows
        """
        if not isinstance(requested, TimeDimension):
            return

        granularity = requested.granularity
        if granularity not in GRANULARITY_ORDER:
            raise UnsupportedGranularity(granularity)

        if grammar is not None and not grammar.supports_granularity(granularity):
            raise UnsupportedGranularity(granularity, grammar=grammar.name())

        for table_name, dimension in resolved.items():
            minimum = dimension.meta.get("minGranularity")
            if minimum in GRANULARITY_ORDER and GRANULARITY_ORDER.index(granularity) < GRANULARITY_ORDER.index(minimum):
                logger.debug(f"{table_name} stores {dimension.name()} at {minimum} granularity")
                raise UnsupportedGranularity(granularity, grammar=grammar.name() if grammar else None)
