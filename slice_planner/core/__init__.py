"""Settings and logging setup."""

from .config import Settings, create_schema_cache, get_settings
from .logging import PlanIdFilter, configure_logging

__all__ = [
    "PlanIdFilter",
    "Settings",
    "configure_logging",
    "create_schema_cache",
    "get_settings",
]
