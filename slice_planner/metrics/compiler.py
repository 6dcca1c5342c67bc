"""
Aggregation Compiler

Maps (aggregation kind, backend) to a function that renders the
aggregation's SQL select fragment:

    fn(aggregation, grammar) -> "SUM(\"orders\".\"total\") AS \"sum_orders_total\""

Lookup order for compile(): the grammar's exact backend name, then
"default". A miss on both raises CompilerNotFound.

The compiler is a plain instance owned by whoever composes the planner;
tests build their own and never share state.

Usage:
    compiler = AggregationCompiler.with_defaults()
    compiler.register("sum", {"clickhouse": lambda agg, g: f"sumKahan(...)"})
    compiler.compile(Sum.make("orders.total"), get_grammar("clickhouse"))
"""

import logging
from typing import Callable, Dict, Mapping, Union

from ..errors import CompilerNotFound
from .aggregations import Aggregation

logger = logging.getLogger(__name__)

CompileFn = Callable[[Aggregation, object], str]
KindLike = Union[str, type]

DEFAULT_BACKEND = "default"


def _normalize_kind(kind: KindLike) -> str:
    if isinstance(kind, type):
        return kind.__name__.lower()
    return str(kind).lower()


class AggregationCompiler:
    """Registry of aggregation SQL compilers keyed by kind and backend."""

    def __init__(self):
        self._compilers: Dict[str, Dict[str, CompileFn]] = {}

    @classmethod
    def with_defaults(cls) -> "AggregationCompiler":
        compiler = cls()
        register_default_compilers(compiler)
        return compiler

    def register(self, kind: KindLike, mapping: Mapping[str, CompileFn]) -> "AggregationCompiler":
        """Merge backend -> fn entries for an aggregation kind."""
        key = _normalize_kind(kind)
        self._compilers.setdefault(key, {}).update(mapping)
        logger.debug(f"Registered aggregation compilers: {key} -> {sorted(mapping)}")
        return self

    def compile(self, aggregation: Aggregation, grammar) -> str:
        kind = aggregation.kind()
        backend = grammar.name()
        entries = self._compilers.get(kind, {})

        fn = entries.get(backend) or entries.get(DEFAULT_BACKEND)
        if fn is None:
            raise CompilerNotFound(kind, backend)
        return fn(aggregation, grammar)

    def has(self, kind: KindLike, backend: str = DEFAULT_BACKEND) -> bool:
        return backend in self._compilers.get(_normalize_kind(kind), {})

    def compilers(self) -> Dict[str, Dict[str, CompileFn]]:
        return {kind: dict(entries) for kind, entries in self._compilers.items()}

    def reset(self) -> None:
        self._compilers = {}


# =============================================================================
# DEFAULT COMPILERS
# =============================================================================

def _function_compiler(function: str) -> CompileFn:
    def compile_fn(aggregation: Aggregation, grammar) -> str:
        column = grammar.wrap(aggregation.local_reference())
        return f"{function}({column}) AS {grammar.wrap(aggregation.get_alias())}"
    return compile_fn


def _percentile_postgres(aggregation, grammar) -> str:
    column = grammar.wrap(aggregation.local_reference())
    return (
        f"PERCENTILE_CONT({aggregation.get_percentile()}) WITHIN GROUP (ORDER BY {column}) "
        f"AS {grammar.wrap(aggregation.get_alias())}"
    )


def _percentile_duckdb(aggregation, grammar) -> str:
    column = grammar.wrap(aggregation.local_reference())
    return f"quantile_cont({column}, {aggregation.get_percentile()}) AS {grammar.wrap(aggregation.get_alias())}"


def _percentile_clickhouse(aggregation, grammar) -> str:
    column = grammar.wrap(aggregation.local_reference())
    return f"quantile({aggregation.get_percentile()})({column}) AS {grammar.wrap(aggregation.get_alias())}"


def _count_clickhouse(aggregation, grammar) -> str:
    alias = grammar.wrap(aggregation.get_alias())
    if aggregation.column() == "*":
        return f"count() AS {alias}"
    return f"count({grammar.wrap(aggregation.local_reference())}) AS {alias}"


def register_default_compilers(compiler: AggregationCompiler) -> AggregationCompiler:
    """Install the built-in compilers into `compiler`."""
    for kind, function in (
        ("sum", "SUM"),
        ("count", "COUNT"),
        ("avg", "AVG"),
        ("min", "MIN"),
        ("max", "MAX"),
    ):
        compiler.register(kind, {DEFAULT_BACKEND: _function_compiler(function)})

    compiler.register("count", {"clickhouse": _count_clickhouse})
    compiler.register("percentile", {
        "postgres": _percentile_postgres,
        "duckdb": _percentile_duckdb,
        "clickhouse": _percentile_clickhouse,
    })
    return compiler
