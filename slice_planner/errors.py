"""
Slice Planner - Structured Error Handling

Every failure the planner raises is a SliceError subclass carrying a stable
error code, a human-readable message, structured details and (where one
exists) a suggestion telling the caller how to fix it.

ERROR CODE RANGES:
------------------
1xxx  Schema registry and providers
2xxx  Join resolution
3xxx  Query planning
4xxx  Drivers, grammars and adapters
5xxx  Aggregations and compilers
9xxx  Internal

None of these are transient: they describe caller or configuration mistakes,
so they are propagated to the planning API caller and never retried.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCode(str, Enum):
    """Unique error codes for every error type."""

    # Schema (1xxx)
    ERR_TABLE_NOT_FOUND = "ERR_1001"
    ERR_TABLE_AMBIGUOUS = "ERR_1002"
    ERR_REFERENCE_NOT_FOUND = "ERR_1003"
    ERR_CATALOG_LOAD_FAILED = "ERR_1004"
    ERR_SCHEMA_CACHE = "ERR_1005"

    # Joins (2xxx)
    ERR_JOIN_PATH_NOT_FOUND = "ERR_2001"
    ERR_RELATION_UNHANDLED = "ERR_2002"
    ERR_SOFTWARE_JOIN_FAILED = "ERR_2003"

    # Planning (3xxx)
    ERR_NO_METRICS = "ERR_3001"
    ERR_PLAN_UNSUPPORTED = "ERR_3002"
    ERR_SOFTWARE_AGGREGATION = "ERR_3003"
    ERR_CIRCULAR_DEPENDENCY = "ERR_3004"
    ERR_UNKNOWN_DEPENDENCY = "ERR_3005"

    # Drivers (4xxx)
    ERR_GRANULARITY_UNSUPPORTED = "ERR_4001"
    ERR_DIALECT_UNSUPPORTED = "ERR_4002"
    ERR_CTE_UNSUPPORTED = "ERR_4003"
    ERR_DRIVER_NOT_FOUND = "ERR_4004"
    ERR_DRIVER_UNAVAILABLE = "ERR_4005"
    ERR_QUERY_FAILED = "ERR_4006"

    # Metrics (5xxx)
    ERR_COMPILER_NOT_FOUND = "ERR_5001"
    ERR_INVALID_AGGREGATION = "ERR_5002"
    ERR_INVALID_EXPRESSION = "ERR_5003"

    # Internal (9xxx)
    ERR_INTERNAL = "ERR_9001"


# =============================================================================
# BASE ERROR
# =============================================================================

@dataclass(eq=False)
class SliceError(Exception):
    """
    Structured error with all context needed for debugging.

    Attributes:
        code: Unique error code for searching logs
        message: Human-readable error message
        details: Additional context (dict)
        suggestion: How to fix the issue
    """
    code: ErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    suggestion: Optional[str] = None

    def __post_init__(self):
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a serializable error payload."""
        error_dict = {
            "code": self.code.value,
            "message": self.message,
        }

        if self.details:
            error_dict["details"] = self.details

        if self.suggestion:
            error_dict["suggestion"] = self.suggestion

        return {"error": error_dict}

    def log(self, level: str = "error"):
        """Log the error with context."""
        log_msg = f"[{self.code.value}] {self.message}"
        if self.details:
            log_msg += f" | details={self.details}"

        getattr(logger, level)(log_msg)


# =============================================================================
# SCHEMA ERRORS
# =============================================================================

class TableNotFound(SliceError):
    """A table reference resolved to zero providers."""

    def __init__(
        self,
        table: str,
        provider: Optional[str] = None,
        available_providers: Optional[Sequence[str]] = None,
        reason: Optional[str] = None,
    ):
        details: Dict[str, Any] = {"table": table}
        if provider:
            details["provider"] = provider
            message = f"Provider '{provider}' could not resolve table '{table}'"
        else:
            message = f"Table '{table}' not found in any provider"

        if available_providers is not None:
            details["available_providers"] = list(available_providers)
            message += ". Available providers: " + ", ".join(available_providers)

        if reason:
            message += f": {reason}"

        super().__init__(
            code=ErrorCode.ERR_TABLE_NOT_FOUND,
            message=message,
            details=details,
            suggestion="Check that the table is declared by a registered schema provider",
        )
        self.table = table
        self.provider = provider


class AmbiguousTable(SliceError):
    """A bare table name is owned by more than one provider."""

    def __init__(self, table: str, providers: Sequence[str]):
        self.table = table
        self.providers: List[str] = list(providers)

        suggestions = [f"{provider}:{table}.column" for provider in self.providers]
        message = (
            f"Ambiguous table '{table}' found in multiple providers: "
            f"{', '.join(self.providers)}.\n"
            "Specify the provider explicitly using one of these formats:\n"
            + "\n".join(f"  - {s}" for s in suggestions)
        )

        super().__init__(
            code=ErrorCode.ERR_TABLE_AMBIGUOUS,
            message=message,
            details={"table": table, "providers": self.providers},
            suggestion=f"Use a provider prefix, e.g. '{suggestions[0]}'" if suggestions else None,
        )


class ReferenceNotFound(SliceError):
    """The table resolved but the column or metric reference is unknown."""

    def __init__(self, reference: str, reason: Optional[str] = None, provider: Optional[str] = None):
        message = f"Reference '{reference}' not found"
        if provider:
            message += f" in provider '{provider}'"
        if reason:
            message += f": {reason}"

        super().__init__(
            code=ErrorCode.ERR_REFERENCE_NOT_FOUND,
            message=message,
            details={"reference": reference, "provider": provider},
            suggestion="Expected format: 'table.column' or 'provider:table.column'",
        )
        self.reference = reference


class CatalogLoadError(SliceError):
    """A catalog file could not be read or parsed."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            code=ErrorCode.ERR_CATALOG_LOAD_FAILED,
            message=f"Failed to load catalog '{path}': {reason}",
            details={"path": path},
        )


class SchemaCacheError(SliceError):
    """The schema cache backend failed."""

    def __init__(self, message: str, backend: str = "memory"):
        super().__init__(
            code=ErrorCode.ERR_SCHEMA_CACHE,
            message=message,
            details={"backend": backend},
        )


# =============================================================================
# JOIN ERRORS
# =============================================================================

class JoinPathNotFound(SliceError):
    """A table set cannot be connected by relation or dimension edges."""

    def __init__(self, table: str, connected: Sequence[str]):
        super().__init__(
            code=ErrorCode.ERR_JOIN_PATH_NOT_FOUND,
            message=(
                f"No join path connects table '{table}' to "
                f"[{', '.join(connected)}]"
            ),
            details={"table": table, "connected": list(connected)},
            suggestion="Declare a relation between the tables or request a dimension both tables share",
        )
        self.table = table


class UnhandledRelationType(SliceError):
    """Join application met a relation type it has no branch for."""

    def __init__(self, relation_type: Any, relation: str):
        super().__init__(
            code=ErrorCode.ERR_RELATION_UNHANDLED,
            message=f"Unhandled relation type '{relation_type}' on relation '{relation}'",
            details={"relation_type": str(relation_type), "relation": relation},
        )


class SoftwareJoinError(SliceError):
    """The in-process merge could not make progress."""

    def __init__(self, pending: Sequence[str]):
        super().__init__(
            code=ErrorCode.ERR_SOFTWARE_JOIN_FAILED,
            message="Unable to resolve software join plan. Verify relation definitions.",
            details={"pending_relations": list(pending)},
        )


# =============================================================================
# PLANNING ERRORS
# =============================================================================

class NoMetricsError(SliceError):
    """A plan was requested with zero metrics."""

    def __init__(self):
        super().__init__(
            code=ErrorCode.ERR_NO_METRICS,
            message="At least one metric is required to build a query plan",
            suggestion="Add an aggregation such as Sum.make('orders.total')",
        )


class UnsupportedQueryPlan(SliceError):
    """The executor was handed a join plan it does not know how to run."""

    def __init__(self, plan_type: str):
        super().__init__(
            code=ErrorCode.ERR_PLAN_UNSUPPORTED,
            message=f"Unsupported query plan: {plan_type}",
            details={"plan_type": plan_type},
        )


class UnsupportedSoftwareAggregation(SliceError):
    """An aggregation cannot be combined across independently executed tables."""

    def __init__(self, kind: str, alias: str):
        super().__init__(
            code=ErrorCode.ERR_SOFTWARE_AGGREGATION,
            message=f"Aggregation '{kind}' ({alias}) cannot be merged across backends",
            details={"kind": kind, "alias": alias},
            suggestion="Query this metric from tables that share one joinable connection",
        )


class CircularDependency(SliceError):
    """Computed metrics depend on each other in a cycle."""

    def __init__(self, metric: str):
        super().__init__(
            code=ErrorCode.ERR_CIRCULAR_DEPENDENCY,
            message=f"Circular dependency detected for metric: {metric}",
            details={"metric": metric},
            suggestion="Break the cycle so every computed metric bottoms out in aggregations",
        )


class UnknownMetricDependency(SliceError):
    """A computed metric names a metric that is not part of the request."""

    def __init__(self, metric: str, dependency: str, available: Sequence[str]):
        super().__init__(
            code=ErrorCode.ERR_UNKNOWN_DEPENDENCY,
            message=f"Computed metric '{metric}' depends on unknown metric '{dependency}'",
            details={"metric": metric, "dependency": dependency, "available": list(available)},
            suggestion="Request the dependency alongside the computed metric",
        )


# =============================================================================
# DRIVER ERRORS
# =============================================================================

class UnsupportedGranularity(SliceError):
    """A grammar was asked to bucket time at an unrecognized granularity."""

    def __init__(self, granularity: str, grammar: Optional[str] = None):
        message = f"Unsupported granularity: {granularity}"
        if grammar:
            message += f" (grammar: {grammar})"
        super().__init__(
            code=ErrorCode.ERR_GRANULARITY_UNSUPPORTED,
            message=message,
            details={"granularity": granularity, "grammar": grammar},
        )
        self.granularity = granularity


class UnsupportedDialect(SliceError):
    """No grammar is registered for a backend name."""

    def __init__(self, dialect: str, available: Sequence[str]):
        super().__init__(
            code=ErrorCode.ERR_DIALECT_UNSUPPORTED,
            message=f"No grammar registered for dialect '{dialect}'",
            details={"dialect": dialect, "available": list(available)},
        )


class CTEUnsupported(SliceError):
    """A CTE was requested from a backend that lacks the capability."""

    def __init__(self, driver: str):
        super().__init__(
            code=ErrorCode.ERR_CTE_UNSUPPORTED,
            message=f"Driver '{driver}' does not support common table expressions",
            details={"driver": driver},
        )


class DriverNotFound(SliceError):
    """No driver is registered for an engine or connection."""

    def __init__(self, name: str, available: Optional[Sequence[str]] = None):
        details: Dict[str, Any] = {"driver": name}
        if available is not None:
            details["available"] = list(available)
        super().__init__(
            code=ErrorCode.ERR_DRIVER_NOT_FOUND,
            message=f"No query driver registered for '{name}'",
            details=details,
            suggestion="Register a driver with DriverManager.register() or set a default driver",
        )


class DriverUnavailable(SliceError):
    """A driver's client library is not installed."""

    def __init__(self, driver: str, package: str):
        super().__init__(
            code=ErrorCode.ERR_DRIVER_UNAVAILABLE,
            message=f"{package} not installed. Run: pip install {package}",
            details={"driver": driver, "package": package},
        )


class QueryExecutionError(SliceError):
    """A backend rejected or failed to run a compiled query."""

    def __init__(self, driver: str, sql: str, reason: str):
        super().__init__(
            code=ErrorCode.ERR_QUERY_FAILED,
            message=f"{driver} query failed: {reason}",
            details={"driver": driver, "sql": sql},
        )


# =============================================================================
# METRIC ERRORS
# =============================================================================

class CompilerNotFound(SliceError):
    """No aggregation compiler is registered for a kind and backend."""

    def __init__(self, kind: str, backend: str):
        super().__init__(
            code=ErrorCode.ERR_COMPILER_NOT_FOUND,
            message=(
                f"No compiler registered for aggregation '{kind}' on backend "
                f"'{backend}' and no default compiler is available"
            ),
            details={"kind": kind, "backend": backend},
            suggestion=f"Register one with compiler.register('{kind}', {{'default': fn}})",
        )
        self.kind = kind
        self.backend = backend


class InvalidAggregation(SliceError):
    """An aggregation was built with an invalid reference or option."""

    def __init__(self, message: str):
        super().__init__(code=ErrorCode.ERR_INVALID_AGGREGATION, message=message)


class InvalidExpression(SliceError):
    """A computed metric expression cannot be parsed or evaluated."""

    def __init__(self, expression: str, reason: str):
        super().__init__(
            code=ErrorCode.ERR_INVALID_EXPRESSION,
            message=f"Invalid computed metric expression '{expression}': {reason}",
            details={"expression": expression, "reason": reason},
            suggestion="Use metric aliases, numbers, + - * / %, parentheses, NULLIF, COALESCE and ABS",
        )
