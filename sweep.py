"""Ensembles of scenarios per candidate age, aggregated into percentile statistics."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from core import AnalysisMode, Inputs, inputs_to_params, validate_coast_retirement_age
from simulation import SCENARIO_METRICS, TRACE_FIELDS, simulate_ensemble


logger = logging.getLogger(__name__)


def percentile(values: Sequence[float], p: float):
    """Linear-interpolated order statistic, ``p`` in percent.

    Interpolates between ranks ``floor`` and ``ceil`` of ``p / 100 * (n - 1)``.
    Works along the first axis of a 2-D array as well; an empty sample gives 0.
    """
    arr = np.sort(np.asarray(values, dtype=np.float64), axis=0)
    n = arr.shape[0]
    if n == 0:
        return 0.0 if arr.ndim == 1 else np.zeros(arr.shape[1:])
    if n == 1:
        return arr[0]

    rank = (p / 100.0) * (n - 1)
    lower = int(math.floor(rank))
    upper = int(math.ceil(rank))
    if lower == upper:
        return arr[lower]
    w = rank - lower
    return arr[lower] * (1.0 - w) + arr[upper] * w


@dataclass
class AgeResult:
    retirement_age: int
    success_rate: float
    median_retirement_pot: float
    p10_retirement_pot: float
    median_retirement_isa: float
    p10_retirement_isa: float
    median_retirement_taxable: float
    p10_retirement_taxable: float
    median_retirement_pension: float
    p10_retirement_pension: float
    median_retirement_cash: float
    p10_retirement_cash: float
    median_retirement_bond_ladder: float
    p10_retirement_bond_ladder: float
    median_terminal_pot: float
    p10_terminal_pot: float
    median_terminal_isa: float
    p10_terminal_isa: float
    median_terminal_taxable: float
    p10_terminal_taxable: float
    median_terminal_pension: float
    p10_terminal_pension: float
    median_terminal_cash: float
    p10_terminal_cash: float
    median_terminal_bond_ladder: float
    p10_terminal_bond_ladder: float
    p10_min_income_ratio: float
    median_avg_income_ratio: float


@dataclass
class ModelResult:
    age_results: List[AgeResult]
    selected_index: Optional[int]
    best_index: int

    @property
    def selected_age(self) -> Optional[int]:
        if self.selected_index is None:
            return None
        return self.age_results[self.selected_index].retirement_age

    @property
    def best_age(self) -> int:
        return self.age_results[self.best_index].retirement_age


@dataclass
class CashflowYearResult:
    age: int
    median_contribution_isa: float
    median_contribution_taxable: float
    median_contribution_pension: float
    median_contribution_total: float
    median_withdrawal_portfolio: float
    median_withdrawal_non_pension_income: float
    median_spending_total: float
    median_tax_cgt: float
    median_tax_income: float
    median_tax_total: float
    median_end_isa: float
    median_end_taxable: float
    median_end_pension: float
    median_end_cash: float
    median_end_bond_ladder: float
    median_end_total: float


# scenario metric -> AgeResult suffix
_METRIC_NAMES = {
    "retirement_total": "retirement_pot",
    "terminal_total": "terminal_pot",
}


def _age_result(reported_age: int, successes: int, samples: np.ndarray) -> AgeResult:
    n = samples.shape[0]
    medians = percentile(samples, 50.0)
    p10s = percentile(samples, 10.0)
    stats = {}
    for idx, metric in enumerate(SCENARIO_METRICS):
        if metric == "min_income_ratio":
            stats["p10_min_income_ratio"] = float(p10s[idx])
        elif metric == "avg_income_ratio":
            stats["median_avg_income_ratio"] = float(medians[idx])
        else:
            name = _METRIC_NAMES.get(metric, metric)
            stats[f"median_{name}"] = float(medians[idx])
            stats[f"p10_{name}"] = float(p10s[idx])
    return AgeResult(
        retirement_age=reported_age,
        success_rate=successes / n if n else 0.0,
        **stats,
    )


def _evaluate_age_candidate(
    inputs: Inputs,
    params: np.ndarray,
    retirement_age: int,
    contribution_stop_age: int,
    reported_age: int,
) -> AgeResult:
    successes, samples, _ = simulate_ensemble(
        params, inputs.simulations, inputs.seed, reported_age, retirement_age, contribution_stop_age
    )
    result = _age_result(reported_age, int(successes.sum()), samples)
    logger.debug(
        "age %d (retire %d, contributions stop %d): success %.4f",
        reported_age,
        retirement_age,
        contribution_stop_age,
        result.success_rate,
    )
    return result


def _build_model_result(age_results: List[AgeResult], success_threshold: float) -> ModelResult:
    selected_index = next(
        (i for i, r in enumerate(age_results) if r.success_rate >= success_threshold),
        None,
    )
    # ties keep the last maximal age
    best_index = max(
        range(len(age_results)),
        key=lambda i: (age_results[i].success_rate, i),
        default=0,
    )
    model = ModelResult(age_results, selected_index, best_index)
    if age_results:
        logger.info(
            "selected age %s, best age %d (success %.4f)",
            model.selected_age,
            model.best_age,
            age_results[best_index].success_rate,
        )
    return model


def evaluate_full_sweep(inputs: Inputs) -> ModelResult:
    """Retire (and stop contributing) at each age ``current_age..=max_retirement_age``."""
    params = inputs_to_params(inputs)
    age_results = [
        _evaluate_age_candidate(inputs, params, age, age, age)
        for age in range(inputs.current_age, inputs.max_retirement_age + 1)
    ]
    return _build_model_result(age_results, inputs.success_threshold)


def evaluate_coast_sweep(inputs: Inputs, fixed_retirement_age: int) -> ModelResult:
    """Stop contributing at each coast age but always retire at ``fixed_retirement_age``."""
    params = inputs_to_params(inputs)
    age_results = [
        _evaluate_age_candidate(inputs, params, fixed_retirement_age, coast_age, coast_age)
        for coast_age in range(inputs.current_age, fixed_retirement_age + 1)
    ]
    return _build_model_result(age_results, inputs.success_threshold)


def evaluate_single_age(inputs: Inputs, age: int) -> AgeResult:
    return _evaluate_age_candidate(inputs, inputs_to_params(inputs), age, age, age)


def trace_yearly_cashflow(
    inputs: Inputs, retirement_age: int, contribution_stop_age: int, reported_age: int
) -> List[CashflowYearResult]:
    """Per-age medians of every traced quantity for ages ``current_age..horizon_age``."""
    ages = list(range(inputs.current_age, inputs.horizon_age))
    if not ages:
        return []

    _, _, traces = simulate_ensemble(
        inputs_to_params(inputs),
        inputs.simulations,
        inputs.seed,
        reported_age,
        retirement_age,
        contribution_stop_age,
        trace_years=len(ages),
    )
    medians = percentile(traces, 50.0)
    return [
        CashflowYearResult(
            age,
            **{f"median_{name}": float(medians[idx][col]) for col, name in enumerate(TRACE_FIELDS)},
        )
        for idx, age in enumerate(ages)
    ]


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _camelize(value):
    if isinstance(value, dict):
        return {_camel(k): _camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_camelize(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


def camel_case_dict(record) -> dict:
    """``asdict(record)`` with camelCase keys at every level and enums as their values."""
    return _camelize(asdict(record))


@dataclass
class AnalysisReport:
    mode: AnalysisMode
    withdrawal_strategy: str
    coast_retirement_age: Optional[int]
    success_threshold: float
    selected_retirement_age: Optional[int]
    best_retirement_age: int
    cashflow_candidate_age: int
    cashflow_retirement_age: int
    cashflow_contribution_stop_age: int
    age_results: List[AgeResult] = field(default_factory=list)
    cashflow_years: List[CashflowYearResult] = field(default_factory=list)

    def model_result(self) -> ModelResult:
        ages = [r.retirement_age for r in self.age_results]
        selected_index = (
            ages.index(self.selected_retirement_age)
            if self.selected_retirement_age is not None
            else None
        )
        return ModelResult(self.age_results, selected_index, ages.index(self.best_retirement_age))

    def to_dict(self) -> dict:
        return {
            "mode": "coast" if self.mode == AnalysisMode.COAST_FIRE else "retirement",
            "withdrawalPolicy": self.withdrawal_strategy,
            "coastRetirementAge": self.coast_retirement_age,
            "successThreshold": self.success_threshold,
            "selectedRetirementAge": self.selected_retirement_age,
            "bestRetirementAge": self.best_retirement_age,
            "cashflowCandidateAge": self.cashflow_candidate_age,
            "cashflowRetirementAge": self.cashflow_retirement_age,
            "cashflowContributionStopAge": self.cashflow_contribution_stop_age,
            "ageResults": [camel_case_dict(r) for r in self.age_results],
            "cashflowYears": [camel_case_dict(y) for y in self.cashflow_years],
        }


def run_analysis(
    inputs: Inputs,
    mode: AnalysisMode = AnalysisMode.RETIREMENT_SWEEP,
    coast_retirement_age: Optional[int] = None,
) -> AnalysisReport:
    """Sweep, pick the age to trace and trace its yearly cash flow.

    In coast mode without an explicit retirement age, the selected (or else
    best) age of a plain sweep is used as the fixed retirement age.
    """
    mode = AnalysisMode(mode)
    if mode == AnalysisMode.COAST_FIRE:
        if coast_retirement_age is None:
            baseline = evaluate_full_sweep(inputs)
            coast_retirement_age = (
                baseline.selected_age if baseline.selected_age is not None else baseline.best_age
            )
            logger.info("coast retirement age resolved to %d", coast_retirement_age)
        else:
            validate_coast_retirement_age(inputs, coast_retirement_age)
        model = evaluate_coast_sweep(inputs, coast_retirement_age)
    else:
        coast_retirement_age = None
        model = evaluate_full_sweep(inputs)

    trace_index = model.selected_index if model.selected_index is not None else model.best_index
    candidate_age = model.age_results[trace_index].retirement_age
    if mode == AnalysisMode.COAST_FIRE:
        trace_retirement_age = coast_retirement_age
    else:
        trace_retirement_age = candidate_age

    cashflow_years = trace_yearly_cashflow(
        inputs, trace_retirement_age, candidate_age, candidate_age
    )
    return AnalysisReport(
        mode=mode,
        withdrawal_strategy=inputs.withdrawal_strategy.value,
        coast_retirement_age=coast_retirement_age,
        success_threshold=inputs.success_threshold,
        selected_retirement_age=model.selected_age,
        best_retirement_age=model.best_age,
        cashflow_candidate_age=candidate_age,
        cashflow_retirement_age=trace_retirement_age,
        cashflow_contribution_stop_age=candidate_age,
        age_results=model.age_results,
        cashflow_years=cashflow_years,
    )
