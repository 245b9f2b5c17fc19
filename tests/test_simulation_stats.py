"""
Unit Tests -- Statistics & Sensitivity
======================================
Quantiles, moments, correlation guards, rankings and result serialisation.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

import math
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from simulation_stats import (
    category_contributions,
    correlation,
    create_stats,
    mean,
    quantile,
    sensitivity_ranking,
    stddev,
    summarize,
)
from workbook import CategoryType


# ---------------------------------------------------------------------------
# Reductions
# ---------------------------------------------------------------------------
class TestReductions:

    def test_quantile_interpolates(self):
        data = [1.0, 2.0, 3.0, 4.0]
        assert quantile(data, 0.5) == pytest.approx(2.5)
        assert quantile(data, 0.25) == pytest.approx(1.75)
        assert quantile(data, 0.0) == 1.0
        assert quantile(data, 1.0) == 4.0

    def test_quantile_matches_numpy_default(self):
        data = np.random.default_rng(1).normal(size=101)
        for q in (0.1, 0.25, 0.5, 0.75, 0.9):
            assert quantile(data, q) == pytest.approx(np.percentile(data, q * 100))

    def test_quantile_ignores_order(self):
        assert quantile([4.0, 1.0, 3.0, 2.0], 0.5) == pytest.approx(2.5)

    def test_empty_input(self):
        assert quantile([], 0.5) == 0.0
        assert mean([]) == 0.0
        assert stddev([]) == 0.0

    def test_singleton(self):
        assert mean([7.0]) == 7.0
        assert stddev([7.0]) == 0.0
        assert quantile([7.0], 0.9) == 7.0

    def test_sample_standard_deviation(self):
        assert stddev([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]) == pytest.approx(2.13809, rel=1e-5)

    def test_nan_is_dropped(self):
        assert mean([1.0, math.nan, 3.0]) == 2.0
        assert quantile([math.nan, math.nan], 0.5) == 0.0

    def test_create_stats_of_constant_series(self):
        s = create_stats([15.0] * 50)
        assert s.p10 == s.p50 == s.p90 == s.mean == 15.0
        assert s.std == 0.0


class TestCorrelation:

    def test_perfect(self):
        x = np.arange(10.0)
        assert correlation(x, 3 * x + 1) == pytest.approx(1.0)
        assert correlation(x, -x) == pytest.approx(-1.0)

    @pytest.mark.parametrize("x, y", [
        ([1.0, 2.0, 3.0], [1.0, 2.0]),
        ([], []),
        ([1.0], [2.0]),
        ([1.0, 1.0, 1.0], [1.0, 2.0, 3.0]),
        ([1.0, 2.0, 3.0], [5.0, 5.0, 5.0]),
    ])
    def test_degenerate_inputs_give_zero(self, x, y):
        assert correlation(x, y) == 0.0

    def test_nan_pairs_dropped(self):
        x = [1.0, 2.0, math.nan, 4.0]
        y = [2.0, 4.0, 6.0, 8.0]
        assert correlation(x, y) == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------
class TestRankings:

    def test_sensitivity_sorted_by_absolute_impact(self):
        rng = np.random.default_rng(0)
        a = rng.normal(size=500)
        b = rng.normal(size=500)
        c = rng.normal(size=500)
        npv = 10 * a - 3 * b
        samples = pd.DataFrame({"c": c, "b": b, "a": a})
        entries = sensitivity_ranking(samples, npv, {"a": "Alpha", "b": "Beta"}, top_k=8)
        assert [e.metric_id for e in entries] == ["a", "b", "c"]
        assert entries[0].metric_name == "Alpha"
        assert entries[1].impact < 0
        assert entries[2].metric_name == "c"

    def test_sensitivity_keeps_top_k(self):
        rng = np.random.default_rng(0)
        samples = pd.DataFrame({f"m{i}": rng.normal(size=50) for i in range(12)})
        npv = samples.sum(axis=1).to_numpy()
        assert len(sensitivity_ranking(samples, npv, {}, top_k=8)) == 8

    def test_category_percentages(self):
        categories = [
            SimpleNamespace(id="rev", name="Revenue"),
            SimpleNamespace(id="ops", name="Operations"),
        ]
        samples = pd.DataFrame({"rev": [100.0, 300.0], "ops": [50.0, 50.0]})
        rows = category_contributions(samples, categories, npv_mean=100.0)
        assert [(r.category_name, r.contribution, r.percentage) for r in rows] == [
            ("Revenue", 200.0, 200.0), ("Operations", 50.0, 50.0)]

    def test_category_percentage_with_zero_npv(self):
        categories = [SimpleNamespace(id="rev", name="Revenue")]
        rows = category_contributions(pd.DataFrame({"rev": [1.0]}), categories, npv_mean=0.0)
        assert rows[0].percentage == 0.0


# ---------------------------------------------------------------------------
# Summary record
# ---------------------------------------------------------------------------
class TestSummarize:

    @pytest.fixture
    def trials(self):
        n = 4
        outcomes = pd.DataFrame({
            "npv": [1.0, 2.0, 3.0, math.nan],
            "payback_months": [10.0, 12.0, 14.0, 36.0],
            "benefits_y1": [5.0] * n, "costs_y1": [1.0] * n, "net_y1": [4.0] * n,
        })
        metrics = pd.DataFrame({"m": [1.0, 2.0, 3.0, 4.0]})
        categories = pd.DataFrame({"rev": [5.0] * n})
        return SimpleNamespace(outcomes=outcomes, metrics=metrics, categories=categories)

    def test_record_shape(self, trials):
        categories = [SimpleNamespace(id="rev", name="Revenue", type=CategoryType.BENEFIT)]
        result = summarize(trials, categories, {"m": "Metric"}, years=1,
                           iterations=4, seed=9, timestamp_ms=123, calculation_time_ms=1.5)
        d = result.to_dict()
        assert set(d) == {"npv", "paybackPeriod", "yearlyResults",
                          "categoryContributions", "sensitivityAnalysis", "metadata"}
        assert d["npv"]["p50"] == pytest.approx(2.0)
        assert d["paybackPeriod"] == {"p50": pytest.approx(13.0)}
        assert d["yearlyResults"][0]["year"] == 1
        assert d["yearlyResults"][0]["net"]["mean"] == 4.0
        assert d["categoryContributions"][0]["categoryName"] == "Revenue"
        assert d["sensitivityAnalysis"][0] == {
            "metricId": "m", "metricName": "Metric", "impact": pytest.approx(1.0)}
        assert d["metadata"] == {"iterations": 4, "timestampMs": 123,
                                 "calculationTimeMs": 1.5, "seed": 9}
