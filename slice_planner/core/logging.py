"""
Logging Configuration

Planner log lines carry the id of the plan they belong to. Builder and
executor pass it as extra={"plan_id": ...}; PlanIdFilter fills in "-" for
every other record so the format string always resolves.
"""

import logging
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(plan_id)s] %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"


class PlanIdFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "plan_id"):
            record.plan_id = "-"
        return True


def configure_logging(level: Union[int, str] = logging.INFO, fmt: Optional[str] = None) -> None:
    """Install a root handler and attach PlanIdFilter to every root handler."""
    if isinstance(level, str):
        level = level.upper()

    logging.basicConfig(
        level=level,
        format=fmt or DEFAULT_FORMAT,
        datefmt=DEFAULT_DATEFMT,
    )

    for handler in logging.root.handlers:
        if not any(isinstance(f, PlanIdFilter) for f in handler.filters):
            handler.addFilter(PlanIdFilter())
