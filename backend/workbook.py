# File: backend/workbook.py
#
# Plain-data snapshot of a business case: metrics, formulas, categories.
# No behaviour beyond parsing the payload and a couple of lookups.

import math
from dataclasses import dataclass, field
from enum import Enum
from numbers import Real
from typing import Optional, Tuple

from formula_errors import WorkbookFormatError


class CategoryType(Enum):
    BENEFIT = "benefit"
    COST = "cost"
    FACTS = "facts"     # informational; never rolled into benefits or costs


@dataclass(frozen=True)
class Distribution:
    """Three-point estimate: min / most likely / max."""
    min: float
    mode: float
    max: float

    def is_degenerate(self):
        return self.min == self.max


@dataclass(frozen=True)
class Metric:
    id: str
    name: str
    unit: Optional[str] = None
    value: Optional[float] = None
    distribution: Optional[Distribution] = None
    formula: Optional[str] = None
    category_id: Optional[str] = None
    description: Optional[str] = None

    @property
    def is_monetary(self):
        return bool(self.unit) and "$" in self.unit

    @property
    def has_formula(self):
        return bool(self.formula and self.formula.strip())


@dataclass(frozen=True)
class Formula:
    id: str
    name: str
    expression: str


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    type: CategoryType
    metric_ids: Tuple[str, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class Workbook:
    metrics: Tuple[Metric, ...] = field(default_factory=tuple)
    formulas: Tuple[Formula, ...] = field(default_factory=tuple)
    categories: Tuple[Category, ...] = field(default_factory=tuple)

    def metric(self, metric_id):
        for m in self.metrics:
            if m.id == metric_id:
                return m
        return None

    def referenceable_ids(self):
        return {m.id for m in self.metrics} | {f.id for f in self.formulas}

    def category_members(self, category):
        """metric_ids plus every metric that names this category, in workbook order."""
        listed = set(category.metric_ids)
        return tuple(
            m for m in self.metrics
            if m.id in listed or m.category_id == category.id
        )

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise WorkbookFormatError("Workbook must be an object")
        return cls(
            metrics=tuple(_metric_from_dict(m) for m in _list_of(data, "metrics")),
            formulas=tuple(_formula_from_dict(f) for f in _list_of(data, "formulas")),
            categories=tuple(_category_from_dict(c) for c in _list_of(data, "categories")),
        )


# --- payload parsing (accepts camelCase and snake_case keys) ---

def _list_of(data, key):
    items = data.get(key) or []
    if not isinstance(items, list):
        raise WorkbookFormatError(f"'{key}' must be a list")
    for item in items:
        if not isinstance(item, dict):
            raise WorkbookFormatError(f"Every entry of '{key}' must be an object")
    return items


def _pick(data, *keys):
    for key in keys:
        if key in data:
            return data[key]
    return None


def _require_id(data, what):
    raw = data.get("id")
    if not isinstance(raw, str) or not raw.strip():
        raise WorkbookFormatError(f"Every {what} needs a non-empty string 'id'")
    return raw.strip()


def _number_or_none(value, where):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, Real):
        raise WorkbookFormatError(f"{where} must be a number, got {value!r}")
    return float(value)


def _bound(dist, key, where):
    # Missing bounds become NaN so validation can report "Required" per field
    value = _number_or_none(dist.get(key), f"{where}.{key}")
    return math.nan if value is None else value


def _metric_from_dict(data):
    metric_id = _require_id(data, "metric")
    where = f"metric '{metric_id}'"
    dist = data.get("distribution")
    distribution = None
    if dist is not None:
        if not isinstance(dist, dict):
            raise WorkbookFormatError(f"{where}: 'distribution' must be an object or null")
        distribution = Distribution(
            min=_bound(dist, "min", where),
            mode=_bound(dist, "mode", where),
            max=_bound(dist, "max", where),
        )
    formula = data.get("formula")
    if formula is not None and not isinstance(formula, str):
        raise WorkbookFormatError(f"{where}: 'formula' must be a string")
    unit = data.get("unit")
    if unit is not None and not isinstance(unit, str):
        raise WorkbookFormatError(f"{where}: 'unit' must be a string")
    return Metric(
        id=metric_id,
        name=str(data.get("name") or metric_id),
        unit=unit,
        value=_number_or_none(data.get("value"), f"{where}.value"),
        distribution=distribution,
        formula=formula,
        category_id=_pick(data, "categoryId", "category_id"),
        description=data.get("description"),
    )


def _formula_from_dict(data):
    formula_id = _require_id(data, "formula")
    expression = data.get("expression")
    if not isinstance(expression, str):
        raise WorkbookFormatError(f"formula '{formula_id}': 'expression' must be a string")
    return Formula(id=formula_id, name=str(data.get("name") or formula_id), expression=expression)


def _category_from_dict(data):
    category_id = _require_id(data, "category")
    raw_type = data.get("type")
    try:
        category_type = CategoryType(raw_type)
    except ValueError:
        raise WorkbookFormatError(
            f"category '{category_id}': type must be one of "
            f"{[t.value for t in CategoryType]}, got {raw_type!r}"
        ) from None
    metric_ids = _pick(data, "metricIds", "metric_ids") or []
    if not isinstance(metric_ids, list) or not all(isinstance(m, str) for m in metric_ids):
        raise WorkbookFormatError(f"category '{category_id}': metricIds must be a list of ids")
    return Category(
        id=category_id,
        name=str(data.get("name") or category_id),
        type=category_type,
        metric_ids=tuple(metric_ids),
        description=data.get("description"),
    )
