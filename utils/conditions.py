"""
Condition evaluator — decides whether a deterministic guideline applies.

Guideline conditions are stored as JSON-logic style trees: every node is a
single-key object ``{operator: [args...]}`` and the ``var`` leaf reads a
dotted path from the fact snapshot, e.g.

    {"and": [
        {"==": [{"var": "facts.informationRetrieved.professionalType"}, "nutrition"]},
        {"!": {"var": "facts.informationRetrieved.location"}}
    ]}

The stored tree is parsed into a small tagged AST (Literal / Var / Sequence /
Operation) and interpreted through the OPERATORS table. Evaluation fails
closed: a broken condition never matches and never raises.
"""
from __future__ import annotations

import operator as op
import re
from dataclasses import dataclass
from typing import Any, Callable, Union

import structlog

from models.schemas import Facts

logger = structlog.get_logger()


class ExpressionError(ValueError):
    """Raised when a stored condition cannot be parsed."""


# ──────────────────────────────────────────────────────────────
#  AST
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Var:
    path: str
    default: Any = None


@dataclass(frozen=True)
class Sequence:
    items: tuple


@dataclass(frozen=True)
class Operation:
    op: str
    args: tuple


Expr = Union[Literal, Var, Sequence, Operation]


# ──────────────────────────────────────────────────────────────
#  Path lookup
# ──────────────────────────────────────────────────────────────

def get_nested_value(data: Any, field: str) -> Any:
    """Get a value from nested dicts using dot notation. e.g. 'order.status'

    Returns None as soon as an intermediate key is missing.
    """
    if not field:
        return data
    head, _, rest = field.partition(".")
    if isinstance(data, dict):
        current = data.get(head)
    elif isinstance(data, list) and head.isdigit():
        index = int(head)
        current = data[index] if index < len(data) else None
    else:
        return None
    if current is None or not rest:
        return current
    return get_nested_value(current, rest)


# ──────────────────────────────────────────────────────────────
#  Value semantics
# ──────────────────────────────────────────────────────────────

def truthy(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return bool(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_pair(a: Any, b: Any) -> tuple[Any, Any]:
    """Numeric strings compare as numbers against numbers."""
    if _is_number(a) and isinstance(b, str):
        return a, float(b)
    if isinstance(a, str) and _is_number(b):
        return float(a), b
    return a, b


def _loose_eq(a: Any, b: Any) -> bool:
    try:
        a, b = _coerce_pair(a, b)
    except ValueError:
        return False
    return a == b


def _strict_eq(a: Any, b: Any) -> bool:
    return type(a) is type(b) and a == b


def _compare(fn: Callable[[Any, Any], bool]) -> Callable[..., bool]:
    def compare(*values: Any) -> bool:
        if len(values) == 3:
            # between form: {"<": [low, x, high]}
            return compare(values[0], values[1]) and compare(values[1], values[2])
        a, b = _coerce_pair(values[0], values[1])
        return fn(a, b)
    return compare


def _number(value: Any) -> float:
    return value if _is_number(value) else float(value)


def _subtract(*values: Any) -> float:
    if len(values) == 1:
        return -_number(values[0])
    return _number(values[0]) - _number(values[1])


def _product(*values: Any) -> float:
    result = 1
    for v in values:
        result *= _number(v)
    return result


def _contains(needle: Any, haystack: Any) -> bool:
    if isinstance(haystack, str):
        return str(needle) in haystack
    return needle in haystack


def _concat(*values: Any) -> str:
    return "".join("" if v is None else str(v) for v in values)


def _regex(value: Any, pattern: Any) -> bool:
    return bool(re.search(str(pattern), str(value)))


# ──────────────────────────────────────────────────────────────
#  Interpreter
# ──────────────────────────────────────────────────────────────

def _eager(fn: Callable[..., Any]) -> Callable[[tuple, Any], Any]:
    """Wrap a plain function so its arguments are evaluated first."""
    def run(args: tuple, data: Any) -> Any:
        return fn(*[_eval(a, data) for a in args])
    return run


def _and(args: tuple, data: Any) -> Any:
    value = None
    for a in args:
        value = _eval(a, data)
        if not truthy(value):
            return value
    return value


def _or(args: tuple, data: Any) -> Any:
    value = None
    for a in args:
        value = _eval(a, data)
        if truthy(value):
            return value
    return value


def _if(args: tuple, data: Any) -> Any:
    # [cond1, then1, cond2, then2, ..., else]
    i = 0
    while i + 1 < len(args):
        if truthy(_eval(args[i], data)):
            return _eval(args[i + 1], data)
        i += 2
    return _eval(args[i], data) if i < len(args) else None


def _flatten_keys(values: list[Any]) -> list[Any]:
    if len(values) == 1 and isinstance(values[0], list):
        return values[0]
    return values


def _missing(args: tuple, data: Any) -> list[Any]:
    keys = _flatten_keys([_eval(a, data) for a in args])
    return [k for k in keys if get_nested_value(data, str(k)) in (None, "")]


def _missing_some(args: tuple, data: Any) -> list[Any]:
    need = _eval(args[0], data)
    keys = _eval(args[1], data)
    missing = [k for k in keys if get_nested_value(data, str(k)) in (None, "")]
    return [] if len(keys) - len(missing) >= need else missing


OPERATORS: dict[str, Callable[[tuple, Any], Any]] = {
    "==": _eager(_loose_eq),
    "!=": _eager(lambda a, b: not _loose_eq(a, b)),
    "===": _eager(_strict_eq),
    "!==": _eager(lambda a, b: not _strict_eq(a, b)),
    ">": _eager(_compare(op.gt)),
    ">=": _eager(_compare(op.ge)),
    "<": _eager(_compare(op.lt)),
    "<=": _eager(_compare(op.le)),
    "!": _eager(lambda a=None: not truthy(a)),
    "!!": _eager(lambda a=None: truthy(a)),
    "and": _and,
    "or": _or,
    "if": _if,
    "in": _eager(_contains),
    "missing": _missing,
    "missing_some": _missing_some,
    "cat": _eager(_concat),
    "+": _eager(lambda *v: sum(_number(x) for x in v)),
    "-": _eager(_subtract),
    "*": _eager(_product),
    "/": _eager(lambda a, b: _number(a) / _number(b)),
    "%": _eager(lambda a, b: _number(a) % _number(b)),
    "min": _eager(lambda *v: min(_number(x) for x in v)),
    "max": _eager(lambda *v: max(_number(x) for x in v)),
    "regex": _eager(_regex),
}


def parse_expression(raw: Any) -> Expr:
    """Convert a stored JSON-logic tree into the AST."""
    if isinstance(raw, dict):
        if len(raw) != 1:
            raise ExpressionError(f"Expression node must have exactly one operator, got {list(raw)}")
        name, args = next(iter(raw.items()))
        if not isinstance(args, list):
            args = [args]
        if name == "var":
            path = args[0] if args else ""
            if isinstance(path, (dict, list)):
                raise ExpressionError("var path must be a literal")
            default = args[1] if len(args) > 1 else None
            return Var(path="" if path is None else str(path), default=default)
        if name not in OPERATORS:
            raise ExpressionError(f"Unknown operator: {name}")
        return Operation(op=name, args=tuple(parse_expression(a) for a in args))
    if isinstance(raw, list):
        return Sequence(items=tuple(parse_expression(a) for a in raw))
    return Literal(raw)


def _eval(expr: Expr, data: Any) -> Any:
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, Var):
        value = get_nested_value(data, expr.path)
        return expr.default if value is None else value
    if isinstance(expr, Sequence):
        return [_eval(item, data) for item in expr.items]
    return OPERATORS[expr.op](expr.args, data)


def build_snapshot(facts: Facts) -> dict[str, Any]:
    """Read-only view of facts; both camelCase and snake_case names resolve."""
    return {
        "facts": {
            **facts.model_dump(mode="json"),
            **facts.model_dump(mode="json", by_alias=True),
        }
    }


def evaluate(expr: Any, facts: Facts) -> bool:
    """Evaluate a condition against facts. Any failure counts as no match."""
    try:
        tree = expr if isinstance(expr, (Literal, Var, Sequence, Operation)) else parse_expression(expr)
        return truthy(_eval(tree, build_snapshot(facts)))
    except Exception as e:
        logger.warning("condition_evaluation_failed", error=str(e))
        return False
