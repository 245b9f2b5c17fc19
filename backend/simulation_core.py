# File: backend/simulation_core.py
#
# The "engine" of the simulation. No web or UI dependencies: it takes a
# Workbook, crunches numbers and returns data.
#
# One trial = sample every uncertain metric, evaluate every formula in
# dependency order, roll monetary metrics up into categories, spread them over
# the horizon, discount to NPV and estimate payback. Trials never share state;
# only their final numbers are collected.
#
# Trials run in fixed-size batches, each with its own numpy Generator spawned
# from one SeedSequence, so a given seed reproduces the same result whether
# batches run inline, on threads or on processes.

import math
import threading
import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np
import pandas as pd

from formula_dependencies import build_dependency_map, topological_sort
from formula_errors import (
    CircularDependencyError,
    SimulationCancelled,
    SimulationTimeout,
    WorkbookValidationError,
)
from formula_evaluator import NAN, evaluate, resolve_with_constants
from formula_parser import parse_formula
from formula_validation import WARNING, blocking, validate_workbook
from pert_sampler import PertSampler
from simulation_config import HorizonConfig, SimulationConfig
from simulation_logging import get_logger
from simulation_stats import summarize
from workbook import CategoryType, Metric

logger = get_logger(__name__)


# --- Cancellation ---

class CancellationToken:
    """
    Cooperative stop signal checked between trials.

    A token with a deadline (see with_timeout) cancels itself once the
    deadline passes; that case raises SimulationTimeout instead of
    SimulationCancelled.
    """

    def __init__(self, deadline=None):
        self._event = threading.Event()
        self.deadline = deadline      # time.monotonic() value, or None

    @classmethod
    def with_timeout(cls, seconds):
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self):
        self._event.set()

    @property
    def expired(self):
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def cancelled(self):
        return self._event.is_set() or self.expired

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise SimulationCancelled()
        if self.expired:
            raise SimulationTimeout()


# --- Compiled, read-only simulation plan ---

@dataclass(frozen=True)
class CompiledCategory:
    id: str
    name: str
    type: CategoryType
    monetary_member_ids: Tuple[str, ...]


@dataclass(frozen=True)
class SimulationPlan:
    """Everything a trial needs. Immutable, so it is shared freely across workers."""
    metrics: Tuple[Metric, ...]
    formulas: Dict[str, object]         # id -> AST
    order: Tuple[str, ...]              # formula ids, dependencies first
    categories: Tuple[CompiledCategory, ...]
    horizon: HorizonConfig

    @property
    def metric_names(self):
        return {m.id: m.name for m in self.metrics}


def compile_workbook(workbook, config=None):
    """
    Validate and compile a workbook once, before any trial runs.

    Raises CircularDependencyError when formulas reference each other in a
    loop (there is no evaluation order at all), WorkbookValidationError for
    every other blocking problem.
    """
    config = config or SimulationConfig()

    issues = validate_workbook(workbook, config.limits)
    for issue in issues:
        if issue.severity == WARNING:
            logger.warning("%s: %s", issue.target_id, issue.message)
    errors = blocking(issues)
    cycles = [issue for issue in errors if issue.kind == "circular_dependency"]
    if cycles:
        raise CircularDependencyError(cycles[0].ids)
    if errors:
        raise WorkbookValidationError(errors)

    formulas = {}
    for metric in workbook.metrics:
        if metric.has_formula:
            formulas[metric.id] = parse_formula(metric.formula, config.limits)
    for formula in workbook.formulas:
        formulas[formula.id] = parse_formula(formula.expression, config.limits)

    dependency_map = build_dependency_map(formulas, leaf_ids=[m.id for m in workbook.metrics])
    order = tuple(node_id for node_id in topological_sort(dependency_map) if node_id in formulas)

    categories = tuple(
        CompiledCategory(
            id=category.id,
            name=category.name,
            type=category.type,
            monetary_member_ids=tuple(
                m.id for m in workbook.category_members(category) if m.is_monetary),
        )
        for category in workbook.categories
    )

    logger.info("Compiled workbook: %d metrics, %d formulas, %d categories",
                len(workbook.metrics), len(formulas), len(categories))
    return SimulationPlan(
        metrics=tuple(workbook.metrics),
        formulas=formulas,
        order=order,
        categories=categories,
        horizon=config.horizon,
    )


def evaluate_plan(plan, base_values):
    """
    Evaluate every formula in dependency order on top of base_values.
    Later formulas see earlier results. Returns a new id -> value table.
    """
    values = dict(base_values)
    resolve = resolve_with_constants(values)
    for node_id in plan.order:
        values[node_id] = evaluate(plan.formulas[node_id], resolve)
    return values


# --- Cash-flow helpers ---

def discount_cash_flows(cash_flows, rate):
    """Sum of cf_t / (1 + rate)^t for t = 1..n. NaN when rate is NaN or -100%."""
    if math.isnan(rate) or 1.0 + rate == 0.0:
        return NAN
    return sum(cf / (1.0 + rate) ** (t + 1) for t, cf in enumerate(cash_flows))


def estimate_payback_months(benefits, costs):
    """
    First month at which cumulative cash turns non-negative, starting from
    -costs[year 1] and spreading each year's flows evenly over 12 months.
    Returns 12 * years when payback never happens.
    """
    if any(math.isnan(v) for v in benefits) or any(math.isnan(v) for v in costs):
        return NAN
    cumulative = -costs[0]
    month = 0
    for benefit, cost in zip(benefits, costs):
        monthly_net = (benefit - cost) / 12.0
        for _ in range(12):
            month += 1
            cumulative += monthly_net
            if cumulative >= 0:
                return month
    return 12 * len(benefits)


# --- One trial ---

def _run_trial(plan, sampler):
    # --- 1. Sample inputs ---
    sampled = {}
    for metric in plan.metrics:
        if metric.distribution is not None:
            sampled[metric.id] = sampler.sample(metric.distribution)
        else:
            sampled[metric.id] = metric.value if metric.value is not None else 0.0

    # --- 2. Evaluate formulas in dependency order ---
    values = evaluate_plan(plan, sampled)

    # --- 3. Roll monetary metrics up into categories ---
    contributions = {}
    total_benefits = 0.0
    total_costs = 0.0
    for category in plan.categories:
        contribution = sum(values[m] for m in category.monetary_member_ids)
        contributions[category.id] = contribution
        if category.type is CategoryType.BENEFIT:
            total_benefits += contribution
        elif category.type is CategoryType.COST:
            total_costs += contribution

    # --- 4. Spread over the horizon ---
    horizon = plan.horizon
    benefits = [total_benefits * g for g in horizon.growth]
    costs = [total_costs * e for e in horizon.efficiency]
    net = [b - c for b, c in zip(benefits, costs)]

    # --- 5. Discount to NPV ---
    rate = values.get(horizon.discount_rate_id)
    if rate is None:
        rate = horizon.default_discount_rate
    npv = discount_cash_flows(net, rate)

    # --- 6. Payback ---
    payback = estimate_payback_months(benefits, costs)

    return sampled, values, contributions, benefits, costs, net, npv, payback


# --- Batches ---

@dataclass
class TrialSamples:
    """Per-trial outputs of a run, one row per trial."""
    outcomes: pd.DataFrame      # npv, payback_months, benefits_yN, costs_yN, net_yN
    metrics: pd.DataFrame       # sampled input per metric id
    categories: pd.DataFrame    # contribution per category id
    formulas: pd.DataFrame      # evaluated result per formula id

    def __len__(self):
        return len(self.outcomes)

    @classmethod
    def concat(cls, batches):
        return cls(
            outcomes=pd.concat([b.outcomes for b in batches], ignore_index=True),
            metrics=pd.concat([b.metrics for b in batches], ignore_index=True),
            categories=pd.concat([b.categories for b in batches], ignore_index=True),
            formulas=pd.concat([b.formulas for b in batches], ignore_index=True),
        )


def _run_batch(plan, seed_sequence, count, cancel_token=None, check_interval=250):
    """Run `count` trials on a private Generator. Module-level so process pools can pickle it."""
    sampler = PertSampler(np.random.default_rng(seed_sequence))
    years = plan.horizon.years

    metric_cols = {m.id: [] for m in plan.metrics}
    formula_cols = {f: [] for f in plan.order}
    category_cols = {c.id: [] for c in plan.categories}
    outcome_cols = {"npv": [], "payback_months": []}
    for year in range(1, years + 1):
        outcome_cols[f"benefits_y{year}"] = []
        outcome_cols[f"costs_y{year}"] = []
        outcome_cols[f"net_y{year}"] = []

    for i in range(count):
        if cancel_token is not None and i % check_interval == 0:
            cancel_token.raise_if_cancelled()

        sampled, values, contributions, benefits, costs, net, npv, payback = _run_trial(plan, sampler)

        for metric_id, col in metric_cols.items():
            col.append(sampled[metric_id])
        for formula_id, col in formula_cols.items():
            col.append(values[formula_id])
        for category_id, col in category_cols.items():
            col.append(contributions[category_id])
        outcome_cols["npv"].append(npv)
        outcome_cols["payback_months"].append(payback)
        for year in range(years):
            outcome_cols[f"benefits_y{year + 1}"].append(benefits[year])
            outcome_cols[f"costs_y{year + 1}"].append(costs[year])
            outcome_cols[f"net_y{year + 1}"].append(net[year])

    index = pd.RangeIndex(count)
    return TrialSamples(
        outcomes=pd.DataFrame(outcome_cols, index=index, dtype=float),
        metrics=pd.DataFrame(metric_cols, index=index, dtype=float),
        categories=pd.DataFrame(category_cols, index=index, dtype=float),
        formulas=pd.DataFrame(formula_cols, index=index, dtype=float),
    )


def _batch_sizes(iterations, batch_size):
    full, rest = divmod(iterations, batch_size)
    return [batch_size] * full + ([rest] if rest else [])


def _run_pooled(plan, seeds, sizes, cancel_token, config):
    executor_cls = ProcessPoolExecutor if config.executor == "process" else ThreadPoolExecutor
    # threads can watch the token themselves; processes only see it between batches
    worker_token = cancel_token if config.executor == "thread" else None
    wait = None if cancel_token is None else config.poll_seconds

    with executor_cls(max_workers=min(config.workers, len(sizes))) as pool:
        futures = [
            pool.submit(_run_batch, plan, seq, count, worker_token, config.check_interval)
            for seq, count in zip(seeds, sizes)
        ]
        try:
            batches = []
            for future in futures:
                while True:
                    try:
                        batches.append(future.result(timeout=wait))
                        break
                    except FuturesTimeout:
                        cancel_token.raise_if_cancelled()
            return batches
        except BaseException:
            for future in futures:
                future.cancel()
            raise


def run_trials(plan, iterations, seed=None, cancel_token=None, config=None):
    """
    Run `iterations` independent trials and return their per-trial samples.

    seed may be an int, None (fresh OS entropy) or a numpy SeedSequence.
    Raises SimulationCancelled / SimulationTimeout and returns nothing when
    the token fires; a partial run is never returned.
    """
    config = config or SimulationConfig()
    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    sizes = _batch_sizes(iterations, config.batch_size)
    seeds = root.spawn(len(sizes))

    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    if config.workers == 1 or len(sizes) == 1:
        batches = []
        for seq, count in zip(seeds, sizes):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            batches.append(_run_batch(plan, seq, count, cancel_token, config.check_interval))
    else:
        batches = _run_pooled(plan, seeds, sizes, cancel_token, config)

    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
    return TrialSamples.concat(batches)


# --- Entry point ---

def run_simulation(workbook, iterations=None, cancel_token=None, seed=None, config=None):
    """
    Compile the workbook, run the trials and reduce them to a SimulationResult.

    Raises CircularDependencyError / WorkbookValidationError before any trial
    runs, SimulationCancelled / SimulationTimeout if the token fires, and
    ValueError for an iteration count outside 1..config.max_iterations.
    """
    config = config or SimulationConfig()
    iterations = config.iterations if iterations is None else int(iterations)
    if not 1 <= iterations <= config.max_iterations:
        raise ValueError(f"iterations must be between 1 and {config.max_iterations}, got {iterations}")

    started = time.perf_counter()
    timestamp_ms = int(time.time() * 1000)
    plan = compile_workbook(workbook, config)

    root = np.random.SeedSequence(config.seed if seed is None else seed)
    logger.info("Running %d trials (batch=%d, workers=%d, executor=%s, entropy=%s)",
                iterations, config.batch_size, config.workers, config.executor, root.entropy)
    trials = run_trials(plan, iterations, root, cancel_token, config)

    result = summarize(
        trials,
        categories=plan.categories,
        metric_names=plan.metric_names,
        years=plan.horizon.years,
        top_k=config.top_k,
        iterations=iterations,
        seed=root.entropy,
        timestamp_ms=timestamp_ms,
        calculation_time_ms=(time.perf_counter() - started) * 1000.0,
    )
    logger.info("Simulation finished in %.1f ms: NPV p50=%.2f, payback p50=%.1f months",
                result.metadata.calculation_time_ms, result.npv.p50, result.payback_period.p50)
    return result
