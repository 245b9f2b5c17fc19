# File: backend/formula_evaluator.py
#
# AST + reference resolver -> float.
#
# Numeric edge cases never raise: a missing reference, a division by zero or
# an unknown function all give NaN, and NaN flows through every operator.
# The only way back from NaN is ifnull(). Unknown functions are a validation
# problem (see formula_validation), not a runtime one.

import math
from numbers import Real

from formula_errors import NonNumericResultError
from formula_parser import (
    BinaryExpression,
    CallExpression,
    NumberLiteral,
    Reference,
    UnaryExpression,
)

NAN = float("nan")

# Names usable in formulas without a matching metric/formula id.
CONSTANTS = {"pi": math.pi, "e": math.e}


def _finite_args(values):
    return [v for v in values if not math.isnan(v)]


def _fn_min(args):
    # No usable arguments -> NaN (chosen over +/-inf; keeps "no data" visible)
    valid = _finite_args(args)
    return min(valid) if valid else NAN


def _fn_max(args):
    valid = _finite_args(args)
    return max(valid) if valid else NAN


def _fn_sum(args):
    return math.fsum(_finite_args(args))


def _fn_avg(args):
    valid = _finite_args(args)
    return math.fsum(valid) / len(valid) if valid else NAN


def _fn_ifnull(args):
    value = args[0] if args else NAN
    fallback = args[1] if len(args) > 1 else NAN
    return fallback if math.isnan(value) else value


_FUNCTIONS = {
    "min": _fn_min,
    "max": _fn_max,
    "sum": _fn_sum,
    "avg": _fn_avg,
    "average": _fn_avg,
    "ifnull": _fn_ifnull,
}

# name -> (min args, max args or None for variadic); used by validation
BUILTIN_FUNCTIONS = {
    "min": (1, None),
    "max": (1, None),
    "sum": (0, None),
    "avg": (1, None),
    "average": (1, None),
    "ifnull": (2, 2),
}


def _to_number(name, value):
    if value is None:
        return NAN
    if isinstance(value, bool) or not isinstance(value, Real):
        raise NonNumericResultError(name, value)
    return float(value)


def evaluate(node, resolve_reference):
    """
    Evaluate an AST.

    resolve_reference(name) returns a number, or None when the name has no
    value (which evaluates to NaN).
    """
    if isinstance(node, NumberLiteral):
        return node.value

    if isinstance(node, Reference):
        return _to_number(node.name, resolve_reference(node.name))

    if isinstance(node, UnaryExpression):
        argument = evaluate(node.argument, resolve_reference)
        if math.isnan(argument):
            return NAN
        return -argument if node.operator == "-" else argument

    if isinstance(node, BinaryExpression):
        left = evaluate(node.left, resolve_reference)
        right = evaluate(node.right, resolve_reference)
        if math.isnan(left) or math.isnan(right):
            return NAN
        op = node.operator
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op == "/":
            return NAN if right == 0 else left / right
        return NAN

    if isinstance(node, CallExpression):
        fn = _FUNCTIONS.get(node.callee.lower())
        if fn is None:
            return NAN
        return fn([evaluate(arg, resolve_reference) for arg in node.arguments])

    raise TypeError(f"Unknown AST node: {node!r}")


def resolve_with_constants(values):
    """Resolver over an id -> value table that falls back to CONSTANTS."""
    def resolve(name):
        if name in values:
            return values[name]
        return CONSTANTS.get(name)
    return resolve
