"""
Driver Factory for Slice Planner

Two registries live here:

- Driver classes by engine name (create_driver("sqlite", path=...))
- DriverManager: which driver instance serves which connection

Usage:
    drivers = DriverManager()
    drivers.register("warehouse", SqlDriver.for_duckdb("warehouse.duckdb"))
    drivers.register("events", ClickHouseDriver(config={...}), provider="analytics")
    drivers.set_default(SqlDriver.for_sqlite())

    driver = drivers.for_table(table)
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ..errors import DriverNotFound
from ..schema.table import Table
from .base import QueryDriver
from .clickhouse import ClickHouseDriver
from .sql import SqlDriver

logger = logging.getLogger(__name__)


# =============================================================================
# DRIVER REGISTRY
# =============================================================================

# Map of engine name -> driver class or factory callable
_DRIVER_REGISTRY: Dict[str, Callable[..., QueryDriver]] = {}


def register_driver(engine: str, driver_class: Callable[..., QueryDriver]) -> None:
    """
    Register a driver class (or factory) for an engine.

    Args:
        engine: Engine identifier (e.g., "sqlite", "clickhouse")
        driver_class: Class or callable returning a QueryDriver
    """
    _DRIVER_REGISTRY[engine.lower()] = driver_class
    logger.info(f"Registered driver for engine: {engine}")


def get_driver_class(engine: str) -> Callable[..., QueryDriver]:
    engine_lower = engine.lower()
    if engine_lower not in _DRIVER_REGISTRY:
        raise DriverNotFound(engine, available=list_drivers())
    return _DRIVER_REGISTRY[engine_lower]


def list_drivers() -> List[str]:
    """Get list of registered driver engines."""
    return list(_DRIVER_REGISTRY.keys())


def create_driver(engine: str, **config: Any) -> QueryDriver:
    """
    Create a driver instance for the specified engine.

    Raises:
        DriverNotFound: If no driver is registered for the engine
    """
    return get_driver_class(engine)(**config)


# =============================================================================
# DRIVER MANAGER
# =============================================================================

class DriverManager:
    """
    Maps connections to driver instances.

    Lookup order for a table: "provider:connection", then "connection",
    then the default driver.
    """

    def __init__(self, default: Optional[QueryDriver] = None):
        self._drivers: Dict[str, QueryDriver] = {}
        self._default = default

    def register(self, connection: str, driver: QueryDriver,
                 provider: Optional[str] = None) -> "DriverManager":
        key = f"{provider}:{connection}" if provider else connection
        self._drivers[key] = driver
        logger.debug(f"Driver '{driver.name()}' serves connection '{key}'")
        return self

    def set_default(self, driver: QueryDriver) -> "DriverManager":
        self._default = driver
        return self

    @property
    def default(self) -> Optional[QueryDriver]:
        return self._default

    def for_connection(self, connection: Optional[str], provider: Optional[str] = None) -> QueryDriver:
        if connection is not None:
            if provider and f"{provider}:{connection}" in self._drivers:
                return self._drivers[f"{provider}:{connection}"]
            if connection in self._drivers:
                return self._drivers[connection]

        if self._default is not None:
            return self._default

        name = f"{provider}:{connection}" if provider else str(connection)
        raise DriverNotFound(name, available=list(self._drivers))

    def for_table(self, table: Table) -> QueryDriver:
        """
        Driver serving a table's connection.

        Raises:
            DriverNotFound: If neither a matching nor a default driver exists
        """
        return self.for_connection(table.connection, table.provider)

    def connections(self) -> List[str]:
        return list(self._drivers)

    def all(self) -> Dict[str, QueryDriver]:
        return dict(self._drivers)


# =============================================================================
# AUTO-REGISTER BUILT-IN DRIVERS
# =============================================================================

def _sqlite_driver(path: str = ":memory:", **kwargs: Any) -> QueryDriver:
    return SqlDriver.for_sqlite(path, **kwargs)


def _duckdb_driver(path: str = ":memory:", **kwargs: Any) -> QueryDriver:
    return SqlDriver.for_duckdb(path, **kwargs)


def _clickhouse_driver(client: Any = None, **config: Any) -> QueryDriver:
    return ClickHouseDriver(client=client, config=config)


def _register_builtin_drivers():
    """Register all built-in drivers."""
    register_driver("sqlite", _sqlite_driver)
    register_driver("sqlite3", _sqlite_driver)  # Alias
    register_driver("duckdb", _duckdb_driver)
    register_driver("clickhouse", _clickhouse_driver)
    register_driver("ch", _clickhouse_driver)  # Alias


# Register on module load
_register_builtin_drivers()
