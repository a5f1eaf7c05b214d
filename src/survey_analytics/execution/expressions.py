"""
Restricted expression evaluation for schema-sourced formulas and conditions.

Formula and condition text comes from survey definitions stored as
configuration, so it is never handed to eval()/exec(). Expressions are parsed
with `ast` and walked by a small interpreter that only knows:

  - numeric, string and boolean literals
  - names looked up in a caller-supplied namespace
  - + - * / and unary +/-
  - comparisons < > <= >= == !=
  - and / or / not (JavaScript-style && || ! and true/false are accepted)
  - calls to min, max, abs and round

Anything else (other calls, attributes, subscripts, comprehensions, ...) is rejected
with ExpressionError.
"""
from __future__ import annotations

import ast
import operator
import re
from functools import lru_cache
from typing import Any, Callable, Dict, FrozenSet, Mapping

from survey_analytics.app.errors import ExpressionError, UnresolvedNameError
from survey_analytics.tools.stats import finite_or_zero, round_half_up, safe_div


MAX_EXPRESSION_LENGTH = 2000


def _div(left: Any, right: Any) -> float:
    # x / 0 resolves to 0 instead of raising or producing Infinity.
    return safe_div(left, right)


_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: _div,
}

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_COMPARE_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}


def _round(value: Any, digits: Any = 0) -> float:
    return round_half_up(value, int(digits))


_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "min": min,
    "max": max,
    "abs": abs,
    "round": _round,
}


_STRING = re.compile(r"\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*'")
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_ATOM = re.compile(r"[A-Za-z0-9_.]+")
_JS_OPERATOR = re.compile(r"!==|===|&&|\|\||×|÷")

_JS_SPELLINGS: Dict[str, str] = {
    "!==": "!=",
    "===": "==",
    "&&": " and ",
    "||": " or ",
    "×": "*",
    "÷": "/",
    "true": "True",
    "false": "False",
}


def _skip_string(s: str, i: int) -> int:
    m = _STRING.match(s, i)
    return m.end() if m else i


def _group_end(s: str, i: int) -> int:
    # s[i] is "("; returns the index after the matching ")" or len(s) when unbalanced.
    depth = 0
    while i < len(s):
        j = _skip_string(s, i)
        if j != i:
            i = j
            continue
        if s[i] == "(":
            depth += 1
        elif s[i] == ")":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return len(s)


def _operand_end(s: str, i: int) -> int:
    # End of the operand of a JavaScript "!": a name, number, call, group or another negation.
    while i < len(s) and s[i].isspace():
        i += 1
    if i >= len(s):
        return i
    if s[i] == "!":
        return _operand_end(s, i + 1)
    if s[i] == "(":
        return _group_end(s, i)
    m = _ATOM.match(s, i)
    if m is None:
        return i
    end = m.end()
    k = end
    while k < len(s) and s[k].isspace():
        k += 1
    if k < len(s) and s[k] == "(":
        return _group_end(s, k)
    return end


def _translate(expression: str) -> str:
    """
    Rewrites the JavaScript spellings used in existing survey definitions
    (&& || ! === !== true false × ÷) into Python. String literals are copied
    untouched and `!x` binds to its operand only, so `!a > b` stays `(not a) > b`.
    """
    out = []
    i = 0
    while i < len(expression):
        j = _skip_string(expression, i)
        if j != i:
            out.append(expression[i:j])
            i = j
            continue
        if expression[i] == "!" and not expression.startswith("!=", i):
            end = _operand_end(expression, i + 1)
            out.append(f"(not {_translate(expression[i + 1:end])})")
            i = end
            continue
        m = _JS_OPERATOR.match(expression, i) or _WORD.match(expression, i)
        if m is not None:
            token = m.group(0)
            out.append(_JS_SPELLINGS.get(token, token))
            i = m.end()
            continue
        out.append(expression[i])
        i += 1
    return "".join(out).strip()


@lru_cache(maxsize=1024)
def _compile(expression: str) -> ast.Expression:
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError("Empty expression")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError("Expression too long")
    try:
        tree = ast.parse(_translate(expression), mode="eval")
    except (SyntaxError, ValueError, RecursionError, MemoryError) as e:
        raise ExpressionError(f"Invalid expression {expression!r}: {e}") from e
    _check(tree.body)
    return tree


def _check(node: ast.AST) -> None:
    # Whitelist pass so malformed expressions fail before any lookup happens.
    if isinstance(node, ast.Constant):
        if not isinstance(node.value, (int, float, str, bool)):
            raise ExpressionError(f"Unsupported literal: {node.value!r}")
    elif isinstance(node, ast.Name):
        return
    elif isinstance(node, ast.BinOp):
        if type(node.op) not in _BIN_OPS:
            raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        _check(node.left)
        _check(node.right)
    elif isinstance(node, ast.UnaryOp):
        if type(node.op) not in _UNARY_OPS:
            raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        _check(node.operand)
    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if type(op) not in _COMPARE_OPS:
                raise ExpressionError(f"Unsupported comparison: {type(op).__name__}")
        _check(node.left)
        for comparator in node.comparators:
            _check(comparator)
    elif isinstance(node, ast.BoolOp):
        for value in node.values:
            _check(value)
    elif isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
            raise ExpressionError("Only min, max, abs and round can be called")
        if node.keywords or not node.args:
            raise ExpressionError(f"Unsupported call to {node.func.id}")
        for arg in node.args:
            _check(arg)
    else:
        raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")


def _eval(node: ast.AST, namespace: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        if node.id not in namespace:
            raise UnresolvedNameError(node.id)
        return namespace[node.id]
    if isinstance(node, ast.BinOp):
        left = _eval(node.left, namespace)
        right = _eval(node.right, namespace)
        return _BIN_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPS[type(node.op)](_eval(node.operand, namespace))
    if isinstance(node, ast.Compare):
        left = _eval(node.left, namespace)
        for op, comparator in zip(node.ops, node.comparators):
            right = _eval(comparator, namespace)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = _eval(value, namespace)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = _eval(value, namespace)
            if result:
                return result
        return result
    if isinstance(node, ast.Call):
        args = [_eval(arg, namespace) for arg in node.args]
        return _FUNCTIONS[node.func.id](*args)
    raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")


def evaluate(expression: str, namespace: Mapping[str, Any]) -> Any:
    tree = _compile(expression)
    try:
        return _eval(tree.body, namespace)
    except ExpressionError:
        raise
    except (TypeError, ValueError, ArithmeticError, RecursionError) as e:
        raise ExpressionError(f"Failed to evaluate {expression!r}: {e}") from e


def evaluate_number(expression: str, namespace: Mapping[str, Any]) -> float:
    """Evaluates an arithmetic formula; the result is always a finite float."""
    value = evaluate(expression, namespace)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ExpressionError(f"Formula {expression!r} did not produce a number")
    return finite_or_zero(value)


def evaluate_condition(expression: str, namespace: Mapping[str, Any]) -> bool:
    """True only when the condition evaluates to the boolean True."""
    return evaluate(expression, namespace) is True


def referenced_names(expression: str) -> FrozenSet[str]:
    # Unparsable expressions reference nothing.
    try:
        tree = _compile(expression)
    except ExpressionError:
        return frozenset()
    called = {id(n.func) for n in ast.walk(tree) if isinstance(n, ast.Call)}
    return frozenset(n.id for n in ast.walk(tree) if isinstance(n, ast.Name) and id(n) not in called)
