"""
Unit Tests -- Formula Parser
============================
Precedence, associativity, calls, error offsets and nesting limits.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

import pytest

from formula_errors import ParseError
from formula_parser import (
    BinaryExpression,
    CallExpression,
    NumberLiteral,
    Reference,
    UnaryExpression,
    ast_depth,
    parse,
    parse_formula,
)
from formula_tokenizer import tokenize
from simulation_config import EngineLimits


# ---------------------------------------------------------------------------
# Tree shape
# ---------------------------------------------------------------------------
class TestTreeShape:

    def test_number_and_reference(self):
        assert parse_formula("12.5") == NumberLiteral(12.5)
        assert parse_formula("revenue") == Reference("revenue")

    def test_multiplication_binds_tighter(self):
        assert parse_formula("a + b * c") == BinaryExpression(
            "+", Reference("a"), BinaryExpression("*", Reference("b"), Reference("c")))

    def test_left_associative(self):
        assert parse_formula("a - b - c") == BinaryExpression(
            "-", BinaryExpression("-", Reference("a"), Reference("b")), Reference("c"))
        assert parse_formula("a / b / c") == BinaryExpression(
            "/", BinaryExpression("/", Reference("a"), Reference("b")), Reference("c"))

    def test_parentheses_override_precedence(self):
        assert parse_formula("(a + b) * c") == BinaryExpression(
            "*", BinaryExpression("+", Reference("a"), Reference("b")), Reference("c"))

    def test_unary_minus_binds_tighter_than_multiplication(self):
        assert parse_formula("-a * b") == BinaryExpression(
            "*", UnaryExpression("-", Reference("a")), Reference("b"))

    def test_stacked_unary(self):
        assert parse_formula("--x") == UnaryExpression("-", UnaryExpression("-", Reference("x")))

    def test_call_with_arguments(self):
        assert parse_formula("max(a, b + 1)") == CallExpression(
            "max", (Reference("a"), BinaryExpression("+", Reference("b"), NumberLiteral(1.0))))

    def test_call_without_arguments(self):
        assert parse_formula("sum()") == CallExpression("sum", ())

    def test_nested_calls(self):
        node = parse_formula("min(max(a, b), c)")
        assert isinstance(node, CallExpression)
        assert node.arguments[0] == CallExpression("max", (Reference("a"), Reference("b")))

    def test_parse_from_tokens(self):
        assert parse(tokenize("a*2"), "a*2") == BinaryExpression("*", Reference("a"), NumberLiteral(2.0))

    def test_parse_is_deterministic(self):
        assert parse_formula("a + b * (c - 1)") == parse_formula("a + b * (c - 1)")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class TestParseErrors:

    @pytest.mark.parametrize("source, offset", [
        ("a +", 3),
        ("(a + b", 6),
        ("max(a,", 6),
        ("", 0),
    ])
    def test_unexpected_end(self, source, offset):
        with pytest.raises(ParseError) as exc:
            parse_formula(source)
        assert exc.value.offset == offset
        assert exc.value.found is None
        assert "end of expression" in exc.value.message

    @pytest.mark.parametrize("source, offset, found", [
        ("a b", 2, "b"),
        ("a + * b", 4, "*"),
        ("(a))", 3, ")"),
        ("max(a,,b)", 6, ","),
        ("1 2", 2, "2"),
    ])
    def test_unexpected_token(self, source, offset, found):
        with pytest.raises(ParseError) as exc:
            parse_formula(source)
        assert exc.value.offset == offset
        assert exc.value.found == found
        assert exc.value.kind == "parse_error"


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------
class TestLimits:

    def test_nesting_limit(self):
        limits = EngineLimits(max_nesting=5, max_depth=256, max_expression_length=4000)
        parse_formula("((((a))))", limits)
        with pytest.raises(ParseError):
            parse_formula("((((((a))))))", limits)

    def test_unary_chain_counts_as_nesting(self):
        limits = EngineLimits(max_nesting=3, max_depth=256, max_expression_length=4000)
        with pytest.raises(ParseError):
            parse_formula("----a", limits)

    def test_depth_limit_on_long_chains(self):
        limits = EngineLimits(max_nesting=64, max_depth=10, max_expression_length=4000)
        with pytest.raises(ParseError):
            parse_formula(" + ".join(["a"] * 20), limits)

    def test_length_limit(self):
        limits = EngineLimits(max_nesting=64, max_depth=256, max_expression_length=10)
        with pytest.raises(ParseError):
            parse_formula("a + b + c + d", limits)

    def test_deep_nesting_fails_cleanly_with_defaults(self):
        with pytest.raises(ParseError):
            parse_formula("(" * 5000 + "a" + ")" * 5000,
                          EngineLimits(max_nesting=64, max_depth=256, max_expression_length=20000))

    def test_ast_depth(self):
        assert ast_depth(parse_formula("a")) == 1
        assert ast_depth(parse_formula("a + b * c")) == 3
