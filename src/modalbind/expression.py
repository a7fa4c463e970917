"""Sandboxed expressions and ``{{...}}`` template substitution.

Expressions follow a small JavaScript-like grammar (see ``expression.lark``):
literals, names, member and index access, arithmetic, comparison, logical
operators and the conditional operator. There are no calls and no
assignments, and names resolve only against the scope handed to
:meth:`Expression.evaluate`, which is presented read-only.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from lark import Lark, Token, Tree
from lark.exceptions import LarkError

from modalbind._logging import get_logger
from modalbind.models import EvaluationError, ExpressionError

_log = get_logger("expression")

_GRAMMAR_PATH = Path(__file__).with_name("expression.lark")
_PARSER = Lark(
    _GRAMMAR_PATH.read_text(encoding="utf-8"),
    parser="lalr",
    start="start",
    maybe_placeholders=False,
)

# A lone "=" that is not part of ==, !=, <=, >=, or =>.
_ASSIGNMENT_RE = re.compile(r"(?<![!=<>])=(?![=>])")
TEMPLATE_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


class _Undefined:
    _instance: "_Undefined | None" = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()


@dataclass(frozen=True)
class Node:
    pass


@dataclass(frozen=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True)
class Name(Node):
    ident: str


@dataclass(frozen=True)
class Member(Node):
    target: Node
    attr: str


@dataclass(frozen=True)
class Index(Node):
    target: Node
    index: Node


@dataclass(frozen=True)
class Unary(Node):
    op: str
    operand: Node


@dataclass(frozen=True)
class Binary(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Conditional(Node):
    test: Node
    then: Node
    other: Node


@dataclass(frozen=True)
class ArrayLiteral(Node):
    items: tuple[Node, ...]


_BINARY_RULES = {
    "or_": "||",
    "and_": "&&",
    "strict_eq": "===",
    "strict_ne": "!==",
    "eq": "==",
    "ne": "!=",
    "le": "<=",
    "ge": ">=",
    "lt": "<",
    "gt": ">",
    "add": "+",
    "sub": "-",
    "mul": "*",
    "div": "/",
    "mod": "%",
}
_UNARY_RULES = {"not_": "!", "neg": "-", "pos": "+"}
_CONSTANTS = {"true": True, "false": False, "null": None, "undefined": UNDEFINED}


def _decode_string(token: Token) -> str:
    body = str(token)[1:-1]
    if str(token).startswith("`"):
        return body
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def _decode_number(token: Token) -> int | float:
    text = str(token)
    if re.fullmatch(r"\d+", text):
        return int(text)
    return float(text)


def _build(tree: Tree | Token) -> Node:
    if isinstance(tree, Token):
        raise ExpressionError(f"unexpected token {tree!s}")
    rule = str(tree.data)
    children = tree.children
    if rule in _BINARY_RULES:
        return Binary(_BINARY_RULES[rule], _build(children[0]), _build(children[1]))
    if rule in _UNARY_RULES:
        return Unary(_UNARY_RULES[rule], _build(children[0]))
    if rule in _CONSTANTS:
        return Literal(_CONSTANTS[rule])
    if rule == "number":
        return Literal(_decode_number(children[0]))
    if rule == "string":
        return Literal(_decode_string(children[0]))
    if rule == "name":
        return Name(str(children[0]))
    if rule == "member":
        return Member(_build(children[0]), str(children[1]))
    if rule == "index":
        return Index(_build(children[0]), _build(children[1]))
    if rule == "conditional":
        return Conditional(_build(children[0]), _build(children[1]), _build(children[2]))
    if rule == "array":
        return ArrayLiteral(tuple(_build(child) for child in children))
    raise ExpressionError(f"unsupported expression construct '{rule}'")


def format_value(value: Any) -> str:
    """Render a value the way a template splices it into text."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if value is UNDEFINED:
        return "undefined"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else format_value(item) for item in value)
    if isinstance(value, Mapping):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _truthy(value: Any) -> bool:
    if value is None or value is UNDEFINED:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def _to_number(value: Any) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            pass
    raise EvaluationError(f"{format_value(value)!r} is not a number")


def _normalize_number(value: int | float) -> int | float:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _is_nullish(value: Any) -> bool:
    return value is None or value is UNDEFINED


def _loose_equal(left: Any, right: Any) -> bool:
    if _is_nullish(left) or _is_nullish(right):
        return _is_nullish(left) and _is_nullish(right)
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    scalars = (str, int, float, bool)
    if isinstance(left, scalars) and isinstance(right, scalars):
        try:
            return _to_number(left) == _to_number(right)
        except EvaluationError:
            return False
    return left is right or left == right


def _strict_equal(left: Any, right: Any) -> bool:
    numbers = (int, float)
    left_num = isinstance(left, numbers) and not isinstance(left, bool)
    right_num = isinstance(right, numbers) and not isinstance(right, bool)
    if left_num and right_num:
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        a: Any = left
        b: Any = right
    else:
        a, b = _to_number(left), _to_number(right)
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _arithmetic(op: str, left: Any, right: Any) -> Any:
    if op == "+" and (
        isinstance(left, (str, list, tuple)) or isinstance(right, (str, list, tuple))
    ):
        return format_value(left) + format_value(right)
    a, b = _to_number(left), _to_number(right)
    if op == "+":
        return _normalize_number(a + b)
    if op == "-":
        return _normalize_number(a - b)
    if op == "*":
        return _normalize_number(a * b)
    if b == 0:
        raise EvaluationError("division by zero")
    if op == "/":
        return _normalize_number(a / b)
    return _normalize_number(math.fmod(a, b))


def _lookup(target: Any, key: Any) -> Any:
    if _is_nullish(target):
        raise EvaluationError(
            f"cannot read property '{format_value(key)}' of {format_value(target)}"
        )
    if isinstance(target, Mapping):
        return target.get(format_value(key), UNDEFINED)
    if isinstance(target, (list, tuple, str)):
        if key == "length":
            return len(target)
        if isinstance(key, (int, float)) and not isinstance(key, bool):
            position = int(key)
            if position == key and 0 <= position < len(target):
                return target[position]
    return UNDEFINED


def _evaluate(node: Node, scope: Mapping[str, Any]) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Name):
        return scope.get(node.ident, UNDEFINED)
    if isinstance(node, Member):
        return _lookup(_evaluate(node.target, scope), node.attr)
    if isinstance(node, Index):
        return _lookup(_evaluate(node.target, scope), _evaluate(node.index, scope))
    if isinstance(node, ArrayLiteral):
        return [_evaluate(item, scope) for item in node.items]
    if isinstance(node, Conditional):
        if _truthy(_evaluate(node.test, scope)):
            return _evaluate(node.then, scope)
        return _evaluate(node.other, scope)
    if isinstance(node, Unary):
        operand = _evaluate(node.operand, scope)
        if node.op == "!":
            return not _truthy(operand)
        number = _to_number(operand)
        return -number if node.op == "-" else number
    if isinstance(node, Binary):
        left = _evaluate(node.left, scope)
        if node.op == "||":
            return left if _truthy(left) else _evaluate(node.right, scope)
        if node.op == "&&":
            return _evaluate(node.right, scope) if _truthy(left) else left
        right = _evaluate(node.right, scope)
        if node.op == "==":
            return _loose_equal(left, right)
        if node.op == "!=":
            return not _loose_equal(left, right)
        if node.op == "===":
            return _strict_equal(left, right)
        if node.op == "!==":
            return not _strict_equal(left, right)
        if node.op in ("<", "<=", ">", ">="):
            return _compare(node.op, left, right)
        return _arithmetic(node.op, left, right)
    raise EvaluationError(f"unknown node {type(node).__name__}")


@dataclass(frozen=True)
class Expression:
    source: str
    tree: Node

    def evaluate(self, scope: Mapping[str, Any] | None = None) -> Any:
        view = MappingProxyType(dict(scope or {}))
        try:
            return _evaluate(self.tree, view)
        except EvaluationError:
            raise
        except (TypeError, ValueError, OverflowError, RecursionError) as exc:
            raise EvaluationError(str(exc)) from exc


_CACHE: dict[str, Expression] = {}


def compile_expression(source: str) -> Expression:
    """Parse *source* into an :class:`Expression`, memoized by source text."""
    cached = _CACHE.get(source)
    if cached is not None:
        return cached
    if _ASSIGNMENT_RE.search(source):
        raise ExpressionError(
            f"expressions cannot assign: found an isolated '=' in {source!r}"
        )
    try:
        tree = _build(_PARSER.parse(source))
    except LarkError as exc:
        first_line = str(exc).strip().splitlines()[0] if str(exc).strip() else ""
        raise ExpressionError(
            f"could not parse expression {source!r}: {first_line}"
        ) from exc
    except RecursionError as exc:
        raise ExpressionError(
            f"expression is nested too deeply ({len(source)} characters)"
        ) from exc
    compiled = Expression(source=source, tree=tree)
    # Writes are idempotent so concurrent compiles may share the cache.
    _CACHE.setdefault(source, compiled)
    return compiled


class Evaluator:
    """Evaluates expressions for one compile session and collects failures."""

    def __init__(self, *, error_limit: int = 3) -> None:
        self.error_limit = error_limit
        self._errors: list[str] = []

    @property
    def errors(self) -> tuple[str, ...]:
        return tuple(self._errors)

    def _run(self, source: str, scope: Mapping[str, Any]) -> tuple[Any, str | None]:
        try:
            return compile_expression(source).evaluate(scope), None
        except (ExpressionError, EvaluationError) as exc:
            return UNDEFINED, str(exc)

    def evaluate(self, source: str, scope: Mapping[str, Any] | None = None) -> Any:
        """Return the value of *source*, or ``UNDEFINED`` after recording an error."""
        value, error = self._run(source, scope or {})
        if error is not None:
            self._errors.append(f"Error evaluating {source}: {error}")
            _log.debug("expression_error source=%r error=%s", source, error)
        return value

    def substitute_templates(self, text: str, scope: Mapping[str, Any]) -> str:
        def _replace(match: re.Match[str]) -> str:
            value, error = self._run(match.group(1).strip(), scope)
            if error is None and value is not UNDEFINED:
                return format_value(value)
            message = (
                f"The expression {match.group(0)}, found in {text}, "
                "could not be evaluated"
            )
            self._errors.append(f"{message}: {error}" if error else f"{message}.")
            return match.group(0)

        return TEMPLATE_RE.sub(_replace, text)

    def substitute(self, value: Any, scope: Mapping[str, Any]) -> Any:
        """Apply template substitution to every string inside *value*."""
        if isinstance(value, str):
            return self.substitute_templates(value, scope)
        if isinstance(value, Mapping):
            return {key: self.substitute(item, scope) for key, item in value.items()}
        if isinstance(value, list):
            return [self.substitute(item, scope) for item in value]
        return value

    def report_errors(self) -> list[str]:
        """Return at most ``error_limit`` errors and forget all of them."""
        reported = self._errors[: self.error_limit]
        self._errors.clear()
        return reported
