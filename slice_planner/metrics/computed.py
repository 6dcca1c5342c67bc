"""
Computed Metrics

A computed metric is an arithmetic expression over other metrics in the
same request, evaluated per result row after aggregation:

    revenue = Sum.make("orders.total")
    orders = Count.make("orders.id")
    aov = Computed.make("sum_orders_total / NULLIF(count_orders_id, 0)").depends_on(revenue, orders)

EXPRESSIONS:
------------
Parsed with SQLGlot and evaluated in process. Supported: metric aliases
(unqualified column names), numbers, NULL, + - * / %, unary minus,
parentheses, NULLIF, COALESCE and ABS. Any NULL operand makes the result
NULL, and so does division or modulo by zero.

The key is "computed_" + md5(expression), so the same expression always
lands in the same result column unless an alias is set.
"""

import hashlib
import logging
import numbers
import operator
from typing import Any, Dict, List, Mapping, Optional

import sqlglot
from sqlglot import expressions as exp
from sqlglot.errors import ParseError, TokenError

from ..errors import InvalidExpression

logger = logging.getLogger(__name__)


_BINARY_OPERATORS = (
    (exp.Add, operator.add),
    (exp.Sub, operator.sub),
    (exp.Mul, operator.mul),
    (exp.Div, operator.truediv),
    (exp.Mod, operator.mod),
)


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Number):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


class Computed:
    """A metric derived from other metrics of the same request."""

    def __init__(self, expression: str):
        if not expression or not expression.strip():
            raise InvalidExpression(str(expression), "expression is empty")
        self._expression = expression
        self._tree = self._parse(expression)
        self._dependencies: List[str] = []
        self._alias: Optional[str] = None
        self._label: Optional[str] = None
        self._table: Optional[str] = None
        self._decimals: Optional[int] = 2
        self._percentage = False
        self._currency: Optional[str] = None

        # Surface unsupported syntax at construction, not at execution
        self._evaluate(self._tree, {})

    @classmethod
    def make(cls, expression: str) -> "Computed":
        return cls(expression)

    # -------------------------------------------------------------------------
    # Builder methods
    # -------------------------------------------------------------------------

    def depends_on(self, *metrics: Any) -> "Computed":
        """Declare dependencies: aggregations, other computed metrics, or aliases."""
        for metric in metrics:
            key = metric.get_alias() if hasattr(metric, "get_alias") else str(metric)
            if key not in self._dependencies:
                self._dependencies.append(key)
        return self

    def label(self, label: str) -> "Computed":
        self._label = label
        return self

    def for_table(self, table: str) -> "Computed":
        """Attribute the metric to a table ("table" or "provider:table")."""
        self._table = table
        return self

    def decimals(self, decimals: Optional[int]) -> "Computed":
        self._decimals = decimals
        return self

    def percentage(self, percentage: bool = True) -> "Computed":
        self._percentage = percentage
        return self

    def currency(self, currency: str) -> "Computed":
        self._currency = currency
        return self

    def set_alias(self, alias: str) -> "Computed":
        self._alias = alias
        return self

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def kind(self) -> str:
        return "computed"

    def key(self) -> str:
        return "computed_" + hashlib.md5(self._expression.encode("utf-8")).hexdigest()

    def get_alias(self) -> str:
        return self._alias or self.key()

    def get_expression(self) -> str:
        return self._expression

    def get_label(self) -> str:
        return self._label or self.get_alias()

    def get_table(self) -> Optional[str]:
        return self._table

    def get_decimals(self) -> Optional[int]:
        return self._decimals

    def referenced_metrics(self) -> List[str]:
        names: List[str] = []
        for column in self._tree.find_all(exp.Column, bfs=False):
            if column.name not in names:
                names.append(column.name)
        return names

    def get_dependencies(self) -> List[str]:
        """Declared dependencies followed by any other alias the expression reads."""
        dependencies = list(self._dependencies)
        for name in self.referenced_metrics():
            if name not in dependencies:
                dependencies.append(name)
        return dependencies

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate(self, row: Mapping[str, Any]) -> Optional[float]:
        """Evaluate against one result row; rounds to `decimals` when set."""
        value = self._evaluate(self._tree, row)
        if value is not None and self._decimals is not None:
            value = round(value, self._decimals)
        return value

    def _parse(self, expression: str) -> exp.Expression:
        try:
            tree = sqlglot.parse_one(expression)
        except (ParseError, TokenError) as e:
            raise InvalidExpression(expression, str(e)) from e
        if tree is None:
            raise InvalidExpression(expression, "expression is empty")
        return tree

    def _evaluate(self, node: exp.Expression, row: Mapping[str, Any]) -> Optional[float]:
        if isinstance(node, exp.Paren):
            return self._evaluate(node.this, row)

        if isinstance(node, exp.Null):
            return None

        if isinstance(node, exp.Literal):
            if node.is_string:
                raise InvalidExpression(self._expression, f"string literal {node.sql()} is not a number")
            return float(node.this)

        if isinstance(node, exp.Column):
            if node.table:
                raise InvalidExpression(self._expression, f"use metric aliases, not '{node.sql()}'")
            return _as_number(row.get(node.name))

        if isinstance(node, exp.Neg):
            value = self._evaluate(node.this, row)
            return None if value is None else -value

        for node_type, apply in _BINARY_OPERATORS:
            if isinstance(node, node_type):
                left = self._evaluate(node.this, row)
                right = self._evaluate(node.expression, row)
                if left is None or right is None:
                    return None
                if node_type in (exp.Div, exp.Mod) and right == 0:
                    return None
                return apply(left, right)

        if isinstance(node, exp.Nullif):
            value = self._evaluate(node.this, row)
            other = self._evaluate(node.expression, row)
            return None if value == other else value

        if isinstance(node, exp.Coalesce):
            result = None
            for argument in [node.this, *node.expressions]:
                value = self._evaluate(argument, row)
                if result is None:
                    result = value
            return result

        if isinstance(node, exp.Abs):
            value = self._evaluate(node.this, row)
            return None if value is None else abs(value)

        raise InvalidExpression(self._expression, f"unsupported syntax '{node.sql()}'")

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def format(self) -> Dict[str, Any]:
        precision = 2 if self._decimals is None else self._decimals
        if self._currency:
            return {"formatter": "currency", "currency": self._currency, "precision": precision}
        if self._percentage:
            return {"formatter": "percentage", "precision": precision}
        if self._decimals is not None:
            return {"formatter": "number", "precision": self._decimals}
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind(),
            "name": self.key(),
            "alias": self.get_alias(),
            "label": self.get_label(),
            "expression": self._expression,
            "computed": True,
            "dependencies": self.get_dependencies(),
            "table": self._table,
            "format": self.format(),
        }

    def __repr__(self) -> str:
        return f"Computed({self._expression!r}, alias={self.get_alias()!r})"
