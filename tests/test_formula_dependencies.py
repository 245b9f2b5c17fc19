"""
Unit Tests -- Dependency Analyzer
=================================
Reference extraction, cycle detection and evaluation order.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

import pytest

from formula_dependencies import (
    build_dependency_map,
    collect_calls,
    collect_references,
    detect_circular_dependencies,
    topological_sort,
)
from formula_parser import parse_formula


def compile_all(sources):
    return {node_id: parse_formula(expr) for node_id, expr in sources.items()}


# ---------------------------------------------------------------------------
# Reference extraction
# ---------------------------------------------------------------------------
class TestCollect:

    def test_references_exclude_callees(self):
        node = parse_formula("max(a, b) + min(c, a) * 2")
        assert collect_references(node) == {"a", "b", "c"}

    def test_literal_has_no_references(self):
        assert collect_references(parse_formula("1 + 2")) == set()

    def test_calls_with_argument_counts(self):
        node = parse_formula("ifnull(max(a, b, c), 0)")
        assert sorted(collect_calls(node)) == [("ifnull", 2), ("max", 3)]

    def test_dependency_map_includes_leaves(self):
        dependency_map = build_dependency_map(compile_all({"total": "a + b"}), leaf_ids=["a", "b"])
        assert dependency_map == {"a": set(), "b": set(), "total": {"a", "b"}}

    def test_formula_id_wins_over_leaf(self):
        dependency_map = build_dependency_map(compile_all({"a": "b * 2"}), leaf_ids=["a", "b"])
        assert dependency_map["a"] == {"b"}


# ---------------------------------------------------------------------------
# Cycles
# ---------------------------------------------------------------------------
class TestCycles:

    def test_acyclic(self):
        dependency_map = build_dependency_map(compile_all({"x": "a + 1", "y": "x * 2"}), ["a"])
        assert detect_circular_dependencies(dependency_map) == []

    def test_two_node_cycle(self):
        dependency_map = build_dependency_map(compile_all({"x": "y + 1", "y": "x * 2"}))
        assert sorted(detect_circular_dependencies(dependency_map)) == ["x", "y"]

    def test_self_reference(self):
        dependency_map = build_dependency_map(compile_all({"x": "x + 1", "y": "2"}))
        assert detect_circular_dependencies(dependency_map) == ["x"]

    def test_members_reached_through_finished_branch(self):
        # p -> q -> r -> p, and q -> s -> r: s sits on a cycle too
        dependency_map = build_dependency_map(compile_all({
            "p": "q", "q": "r + s", "r": "p", "s": "r",
        }))
        assert sorted(detect_circular_dependencies(dependency_map)) == ["p", "q", "r", "s"]

    def test_dependent_of_cycle_is_not_reported(self):
        dependency_map = build_dependency_map(compile_all({"x": "y", "y": "x", "z": "x + 1"}))
        assert sorted(detect_circular_dependencies(dependency_map)) == ["x", "y"]

    def test_long_chain_does_not_recurse(self):
        sources = {f"n{i}": f"n{i + 1} + 1" for i in range(5000)}
        sources["n5000"] = "n0"
        dependency_map = build_dependency_map(compile_all(sources))
        assert len(detect_circular_dependencies(dependency_map)) == 5001


# ---------------------------------------------------------------------------
# Evaluation order
# ---------------------------------------------------------------------------
class TestTopologicalSort:

    def test_dependencies_come_first(self):
        dependency_map = build_dependency_map(
            compile_all({"net": "gross - cost", "gross": "units * price"}),
            leaf_ids=["units", "price", "cost"],
        )
        order = topological_sort(dependency_map)
        for node_id, dependencies in dependency_map.items():
            for dependency in dependencies:
                assert order.index(dependency) < order.index(node_id)
        assert set(order) == {"net", "gross", "units", "price", "cost"}

    def test_cycle_members_are_left_out(self):
        dependency_map = build_dependency_map(compile_all({"x": "y", "y": "x", "z": "1"}))
        assert topological_sort(dependency_map) == ["z"]

    @pytest.mark.parametrize("repeat", range(3))
    def test_order_is_stable(self, repeat):
        sources = {"d": "b + c", "b": "a", "c": "a", "e": "d"}
        first = topological_sort(build_dependency_map(compile_all(sources), ["a"]))
        again = topological_sort(build_dependency_map(compile_all(sources), ["a"]))
        assert first == again == ["a", "b", "c", "d", "e"]
