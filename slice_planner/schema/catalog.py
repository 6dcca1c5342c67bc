"""
Catalog Schema Provider

Loads table metadata from YAML catalog files. The file format is the
Table.to_dict() shape under a top-level "tables" key, as a list or as a
name -> table mapping:

    tables:
      orders:
        connection: warehouse
        primaryKey: [id]
        columns: [id, customer_id, total, created_at]
        relations:
          customer:
            type: belongs_to
            target: customers
            keys: {foreign: customer_id, owner: id}
        dimensions:
          - {kind: time, reference: created_at}

Scan results are cachable. A cache entry is invalidated as soon as any
catalog file is modified after the entry was written.
"""

import hashlib
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import yaml

from ..errors import CatalogLoadError
from .providers import LazySchemaProvider
from .table import Table

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class CatalogSchemaProvider(LazySchemaProvider):
    """
    Provider backed by one or more YAML catalog files.

    Config:
        name: Provider name (identifier prefix)
        paths: Catalog files to load, in order (later files win on name clashes)
        connection: Default connection for tables that do not set one
    """

    def __init__(self, name: str, paths: Sequence[PathLike], connection: Optional[str] = None):
        super().__init__()
        self._name = name
        self._paths: List[Path] = [Path(p) for p in paths]
        self._connection = connection

    def name(self) -> str:
        return self._name

    @property
    def paths(self) -> List[Path]:
        return list(self._paths)

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def discover(self) -> Iterable[Table]:
        for path in self._paths:
            for data in self._load_file(path):
                yield Table.from_dict(data, provider=self._name, connection=self._connection)

    def _load_file(self, path: Path) -> List[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise CatalogLoadError(str(path), str(e)) from e

        tables = document.get("tables", {})
        if isinstance(tables, dict):
            # Mapping format: name -> table
            entries = []
            for table_name, table in tables.items():
                entry = dict(table or {})
                entry.setdefault("name", table_name)
                entries.append(entry)
            return entries
        if isinstance(tables, list):
            return [dict(table) for table in tables]

        raise CatalogLoadError(str(path), "'tables' must be a mapping or a list")

    # -------------------------------------------------------------------------
    # Cache hooks
    # -------------------------------------------------------------------------

    def cache_key(self) -> str:
        fingerprint = self._name + "|" + "|".join(sorted(str(p.resolve()) for p in self._paths))
        return "catalog_schema_" + hashlib.md5(fingerprint.encode("utf-8")).hexdigest()

    def to_cache(self) -> Dict[str, Any]:
        self._ensure_scanned()
        return {
            "provider": self._name,
            "paths": [str(p) for p in self._paths],
            "tables": [table.to_dict() for table in self._tables.values()],
            "cached_at": time.time(),
        }

    def from_cache(self, data: Dict[str, Any]) -> None:
        self._restore(
            Table.from_dict(item, provider=self._name, connection=self._connection)
            for item in data.get("tables", [])
        )

    def is_cache_valid(self) -> bool:
        if self._cache is None:
            return False

        cached = self._cache.get(self.cache_key())
        if not cached:
            return False

        cached_at = cached.get("cached_at", 0)
        for path in self._paths:
            if self._modified_after(path, cached_at):
                logger.info(f"Catalog '{path}' changed since cache was written; rescanning")
                return False
        return True

    @staticmethod
    def _modified_after(path: Path, timestamp: float) -> bool:
        try:
            return os.path.getmtime(path) > timestamp
        except OSError:
            # Missing files are reported by the scan itself
            return True
