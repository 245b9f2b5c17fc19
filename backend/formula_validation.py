# File: backend/formula_validation.py
#
# Fast, synchronous checks run before any simulation. Each expression is
# checked on its own: one broken formula is reported without hiding problems
# (or blocking checks) in the others.

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from formula_dependencies import (
    build_dependency_map,
    collect_calls,
    collect_references,
    detect_circular_dependencies,
)
from formula_errors import (
    FormulaError,
    UnknownFunctionError,
    UnknownReferenceError,
)
from formula_evaluator import BUILTIN_FUNCTIONS, CONSTANTS
from formula_parser import parse_formula
from simulation_config import EngineLimits

ERROR = "error"
WARNING = "warning"

EMPTY_EXPRESSION_MESSAGE = "Start by selecting a metric"


@dataclass(frozen=True)
class ValidationIssue:
    target_id: Optional[str]
    kind: str
    message: str
    field: Optional[str] = None
    offset: Optional[int] = None
    severity: str = ERROR
    ids: Tuple[str, ...] = ()

    def to_dict(self):
        d = {"kind": self.kind, "message": self.message, "severity": self.severity}
        if self.target_id is not None:
            d["targetId"] = self.target_id
        if self.field is not None:
            d["field"] = self.field
        if self.offset is not None:
            d["offset"] = self.offset
        if self.ids:
            d["ids"] = list(self.ids)
        return d


def _issue_from_error(target_id, err, field_name=None):
    return ValidationIssue(
        target_id=target_id,
        kind=err.kind,
        message=err.message,
        field=field_name,
        offset=getattr(err, "offset", None),
    )


def check_expression(expression, known_ids, limits=None, target_id=None, field_name=None):
    """
    Compile one expression and check every name in it.

    Returns (ast, None) when the expression is usable, (ast_or_None, issue)
    otherwise. The AST is still returned for semantic failures so callers
    can keep analysing dependencies.
    """
    if expression is None or not expression.strip():
        return None, ValidationIssue(target_id, "empty_expression",
                                     EMPTY_EXPRESSION_MESSAGE, field=field_name)
    try:
        node = parse_formula(expression, limits)
    except FormulaError as err:
        return None, _issue_from_error(target_id, err, field_name)

    calls = collect_calls(node)
    unknown_functions = {callee for callee, _ in calls if callee.lower() not in BUILTIN_FUNCTIONS}
    if unknown_functions:
        return node, _issue_from_error(target_id, UnknownFunctionError(unknown_functions), field_name)

    for callee, count in calls:
        low, high = BUILTIN_FUNCTIONS[callee.lower()]
        if count < low or (high is not None and count > high):
            expected = str(low) if high == low else (f"at least {low}" if high is None else f"{low}-{high}")
            return node, ValidationIssue(
                target_id, "invalid_arguments",
                f"{callee}() takes {expected} argument(s), got {count}",
                field=field_name,
            )

    known = set(known_ids)
    missing = {name for name in collect_references(node) if name not in known and name not in CONSTANTS}
    if missing:
        return node, _issue_from_error(target_id, UnknownReferenceError(missing), field_name)

    return node, None


def validate_expression(expression, known_ids, limits=None):
    """None when the expression is valid, otherwise the first ValidationIssue."""
    _, issue = check_expression(expression, known_ids, limits)
    return issue


def validate_metric(metric):
    """Bounds of a three-point estimate: all present, min <= mode <= max."""
    issues = []
    if metric.value is not None and not math.isfinite(metric.value):
        issues.append(ValidationIssue(metric.id, "invalid_value", "Must be a finite number", field="value"))

    dist = metric.distribution
    if dist is None:
        return issues

    missing = False
    for name in ("min", "mode", "max"):
        bound = getattr(dist, name)
        if bound is None or not math.isfinite(bound):
            issues.append(ValidationIssue(metric.id, "invalid_distribution", "Required", field=name))
            missing = True
    if missing:
        return issues

    if dist.min > dist.max:
        issues.append(ValidationIssue(metric.id, "invalid_distribution", "Min must be ≤ Max", field="min"))
        issues.append(ValidationIssue(metric.id, "invalid_distribution", "Max must be ≥ Min", field="max"))
        return issues
    if dist.min > dist.mode:
        issues.append(ValidationIssue(metric.id, "invalid_distribution",
                                      "Min must be ≤ Most likely", field="min"))
    if dist.mode > dist.max:
        issues.append(ValidationIssue(metric.id, "invalid_distribution",
                                      "Max must be ≥ Most likely", field="max"))
    return issues


def validate_workbook(workbook, limits=None):
    """Every problem in the workbook, errors and warnings, in workbook order."""
    limits = limits or EngineLimits()
    issues = []
    known_ids = workbook.referenceable_ids()

    seen = set()
    for node_id in [m.id for m in workbook.metrics] + [f.id for f in workbook.formulas]:
        if node_id in seen:
            issues.append(ValidationIssue(node_id, "duplicate_id", f"Id '{node_id}' is used more than once"))
        seen.add(node_id)

    metric_ids = {m.id for m in workbook.metrics}
    category_ids = {c.id for c in workbook.categories}
    for category in workbook.categories:
        strays = [m for m in category.metric_ids if m not in metric_ids]
        if strays:
            issues.append(ValidationIssue(
                category.id, "unknown_reference",
                f"Category lists unknown metric(s): {', '.join(strays)}", field="metricIds"))

    compiled = {}
    for metric in workbook.metrics:
        issues.extend(validate_metric(metric))
        if metric.category_id and metric.category_id not in category_ids:
            issues.append(ValidationIssue(
                metric.id, "unknown_category",
                f"Category '{metric.category_id}' does not exist", field="categoryId", severity=WARNING))
        if metric.has_formula:
            node, issue = check_expression(metric.formula, known_ids, limits,
                                           target_id=metric.id, field_name="formula")
            if issue:
                issues.append(issue)
            if node is not None:
                compiled[metric.id] = node

    for formula in workbook.formulas:
        node, issue = check_expression(formula.expression, known_ids, limits,
                                       target_id=formula.id, field_name="expression")
        if issue:
            issues.append(issue)
        if node is not None:
            compiled[formula.id] = node

    cycle = detect_circular_dependencies(build_dependency_map(compiled))
    if cycle:
        issues.append(ValidationIssue(
            None, "circular_dependency",
            f"Circular formula dependency: {', '.join(cycle)}", ids=tuple(cycle)))

    return issues


def blocking(issues):
    return [issue for issue in issues if issue.severity == ERROR]
