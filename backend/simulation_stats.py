# File: backend/simulation_stats.py
#
# Reduces per-trial sample arrays to the SimulationResult record:
# percentiles, mean/std, correlation-based sensitivity ("tornado") ranking,
# and category contribution shares.
#
# NaN trial values (a formula that divided by zero, a missing reference) are
# dropped before any reduction so one bad trial cannot poison a whole column.

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import scipy.stats as stats

from simulation_logging import get_logger

logger = get_logger(__name__)


# --- Result record ---

@dataclass(frozen=True)
class Stats:
    p10: float
    p25: float
    p50: float
    p75: float
    p90: float
    mean: float
    std: float

    def to_dict(self):
        return {
            "p10": self.p10, "p25": self.p25, "p50": self.p50,
            "p75": self.p75, "p90": self.p90, "mean": self.mean, "std": self.std,
        }


@dataclass(frozen=True)
class PaybackStats:
    p50: float

    def to_dict(self):
        return {"p50": self.p50}


@dataclass(frozen=True)
class YearlyResult:
    year: int
    benefits: Stats
    costs: Stats
    net: Stats

    def to_dict(self):
        return {
            "year": self.year,
            "benefits": self.benefits.to_dict(),
            "costs": self.costs.to_dict(),
            "net": self.net.to_dict(),
        }


@dataclass(frozen=True)
class CategoryContribution:
    category_id: str
    category_name: str
    contribution: float
    percentage: float

    def to_dict(self):
        return {
            "categoryId": self.category_id,
            "categoryName": self.category_name,
            "contribution": self.contribution,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class SensitivityEntry:
    metric_id: str
    metric_name: str
    impact: float

    def to_dict(self):
        return {"metricId": self.metric_id, "metricName": self.metric_name, "impact": self.impact}


@dataclass(frozen=True)
class SimulationMetadata:
    iterations: int
    timestamp_ms: int
    calculation_time_ms: float
    seed: Optional[int] = None

    def to_dict(self):
        return {
            "iterations": self.iterations,
            "timestampMs": self.timestamp_ms,
            "calculationTimeMs": self.calculation_time_ms,
            "seed": self.seed,
        }


@dataclass(frozen=True)
class SimulationResult:
    npv: Stats
    payback_period: PaybackStats
    yearly_results: Tuple[YearlyResult, ...]
    category_contributions: Tuple[CategoryContribution, ...]
    sensitivity_analysis: Tuple[SensitivityEntry, ...]
    metadata: SimulationMetadata

    def to_dict(self):
        return {
            "npv": self.npv.to_dict(),
            "paybackPeriod": self.payback_period.to_dict(),
            "yearlyResults": [y.to_dict() for y in self.yearly_results],
            "categoryContributions": [c.to_dict() for c in self.category_contributions],
            "sensitivityAnalysis": [s.to_dict() for s in self.sensitivity_analysis],
            "metadata": self.metadata.to_dict(),
        }


# --- Reductions ---

def _clean(samples):
    arr = np.asarray(samples, dtype=float)
    return arr[~np.isnan(arr)]


def quantile(samples, q):
    """Linear interpolation between order statistics (R-7). Empty input -> 0."""
    arr = _clean(samples)
    if arr.size == 0:
        return 0.0
    return float(np.quantile(arr, q, method="linear"))


def mean(samples):
    arr = _clean(samples)
    return float(arr.mean()) if arr.size else 0.0


def stddev(samples):
    """Sample standard deviation (n - 1). Fewer than two values -> 0."""
    arr = _clean(samples)
    if arr.size <= 1:
        return 0.0
    return float(arr.std(ddof=1))


def correlation(x, y):
    """
    Pearson correlation of two equally long series.

    0 when lengths differ, when fewer than two paired values remain after
    dropping NaN pairs, or when either series is constant.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.size == 0 or x.shape != y.shape:
        return 0.0
    paired = ~(np.isnan(x) | np.isnan(y))
    x, y = x[paired], y[paired]
    if x.size < 2 or np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0
    r, _ = stats.pearsonr(x, y)
    return 0.0 if np.isnan(r) else float(r)


def create_stats(samples):
    return Stats(
        p10=quantile(samples, 0.10),
        p25=quantile(samples, 0.25),
        p50=quantile(samples, 0.50),
        p75=quantile(samples, 0.75),
        p90=quantile(samples, 0.90),
        mean=mean(samples),
        std=stddev(samples),
    )


def sensitivity_ranking(metric_samples, npv, metric_names, top_k=8) -> List[SensitivityEntry]:
    """
    Correlate every input metric's sampled values with NPV and keep the
    top_k by absolute correlation. Ties keep workbook order.

    metric_samples : DataFrame, one column per metric id
    """
    entries = [
        SensitivityEntry(
            metric_id=metric_id,
            metric_name=metric_names.get(metric_id, metric_id),
            impact=correlation(metric_samples[metric_id].to_numpy(), npv),
        )
        for metric_id in metric_samples.columns
    ]
    entries.sort(key=lambda e: -abs(e.impact))
    return entries[:top_k]


def category_contributions(category_samples, categories, npv_mean) -> List[CategoryContribution]:
    """Mean trial contribution per category, and its share of mean NPV in percent."""
    out = []
    for category in categories:
        contribution = mean(category_samples[category.id].to_numpy())
        percentage = 0.0 if npv_mean == 0 else contribution / npv_mean * 100.0
        out.append(CategoryContribution(category.id, category.name, contribution, percentage))
    return out


def _log_dropped(label, samples):
    dropped = int(np.isnan(np.asarray(samples, dtype=float)).sum())
    if dropped:
        logger.warning("%s: %d trial(s) produced NaN and were left out", label, dropped)


def summarize(trials, categories, metric_names, years, top_k=8,
              iterations=0, seed=None, timestamp_ms=0, calculation_time_ms=0.0):
    """TrialSamples -> SimulationResult."""
    outcomes = trials.outcomes

    npv = outcomes["npv"].to_numpy()
    _log_dropped("NPV", npv)
    npv_stats = create_stats(npv)

    yearly = []
    for year in range(1, years + 1):
        net = outcomes[f"net_y{year}"].to_numpy()
        _log_dropped(f"Net cash flow, year {year}", net)
        yearly.append(YearlyResult(
            year=year,
            benefits=create_stats(outcomes[f"benefits_y{year}"].to_numpy()),
            costs=create_stats(outcomes[f"costs_y{year}"].to_numpy()),
            net=create_stats(net),
        ))

    return SimulationResult(
        npv=npv_stats,
        payback_period=PaybackStats(p50=quantile(outcomes["payback_months"].to_numpy(), 0.5)),
        yearly_results=tuple(yearly),
        category_contributions=tuple(
            category_contributions(trials.categories, categories, npv_stats.mean)),
        sensitivity_analysis=tuple(
            sensitivity_ranking(trials.metrics, npv, metric_names, top_k)),
        metadata=SimulationMetadata(
            iterations=iterations,
            timestamp_ms=timestamp_ms,
            calculation_time_ms=calculation_time_ms,
            seed=seed,
        ),
    )
