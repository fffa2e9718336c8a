"""Restricted arithmetic evaluator for the ``calculate`` tool.

The expression is parsed with ``ast`` in eval mode and walked against a
whitelist: numeric literals, unary +/-, and binary + - * / %. Nothing is
ever compiled or executed. Length and nesting depth are bounded.
"""

import ast
import math
import operator
import re

MAX_EXPRESSION_LENGTH = 256
MAX_DEPTH = 100


def _remainder(left, right):
    """Truncated remainder; the result takes the sign of the dividend."""
    if right == 0:
        raise ZeroDivisionError("remainder by zero")
    if isinstance(left, int) and isinstance(right, int):
        rest = abs(left) % abs(right)
        return -rest if left < 0 else rest
    return math.fmod(left, right)


# Characters kept before evaluation; everything else is stripped.
_DISALLOWED_CHARS = re.compile(r"[^0-9+\-*/().%\s]")

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: _remainder,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class CalculationError(ValueError):
    """The expression is not a well-formed arithmetic expression."""


def sanitize(expression: str) -> str:
    """Strip every character outside digits, operators, parentheses, '.', '%' and whitespace."""
    return _DISALLOWED_CHARS.sub("", expression)


def evaluate(expression: str) -> int | float:
    """Evaluate an already-sanitized arithmetic expression.

    Args:
        expression: Arithmetic over numeric literals and + - * / % ( ).

    Returns:
        The numeric result; integral floats are returned as int.

    Raises:
        CalculationError: On syntax errors, disallowed operators, division
            by zero, or when the length/depth limits are exceeded.
    """
    source = expression.strip()
    if not source:
        raise CalculationError("empty expression")
    if len(source) > MAX_EXPRESSION_LENGTH:
        raise CalculationError(f"expression longer than {MAX_EXPRESSION_LENGTH} characters")

    try:
        tree = ast.parse(source, mode="eval")
    except (SyntaxError, ValueError, RecursionError, MemoryError) as e:
        raise CalculationError(f"syntax error: {e}")

    result = _eval_node(tree.body, depth=0)
    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result


def _eval_node(node: ast.AST, depth: int) -> int | float:
    if depth > MAX_DEPTH:
        raise CalculationError(f"expression nested deeper than {MAX_DEPTH} levels")

    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise CalculationError(f"unsupported literal: {node.value!r}")
        return node.value

    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand, depth + 1))

    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _eval_node(node.left, depth + 1)
        right = _eval_node(node.right, depth + 1)
        try:
            return _BINARY_OPS[type(node.op)](left, right)
        except ZeroDivisionError:
            raise CalculationError("division by zero")
        except OverflowError:
            raise CalculationError("result out of range")

    raise CalculationError(f"unsupported syntax: {type(node).__name__}")
