"""Bisection on a scalar goal (contribution or income) against a success-rate target."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

from core import Inputs
from sweep import camel_case_dict, evaluate_single_age


logger = logging.getLogger(__name__)

# Slack on success-rate comparisons so a rate equal to the target counts as met.
RATE_SLACK = 1e-12


class GoalType(str, Enum):
    REQUIRED_CONTRIBUTION = "required_contribution"
    MAX_INCOME = "max_income"


@dataclass
class GoalSolveConfig:
    goal_type: GoalType
    target_retirement_age: int
    target_success_threshold: float = 0.90
    search_min: float = 0.0
    search_max: float = 100_000.0
    tolerance: float = 10.0
    max_iterations: int = 24
    simulations_per_iteration: int = 1_000
    final_simulations: int = 10_000

    def __post_init__(self) -> None:
        self.goal_type = GoalType(self.goal_type)


@dataclass
class GoalSolveIteration:
    iteration: int
    lower_bound: float
    upper_bound: float
    candidate_value: float
    success_rate: float
    success_ci_half_width: float


@dataclass
class ContributionAllocation:
    isa: float
    taxable: float
    pension: float


@dataclass
class GoalSolveResult:
    config: GoalSolveConfig
    solved_value: Optional[float]
    solved_contributions: Optional[ContributionAllocation]
    achieved_success_rate: Optional[float]
    achieved_success_ci_half_width: Optional[float]
    converged: bool
    feasible: bool
    message: str
    iterations: List[GoalSolveIteration] = field(default_factory=list)

    def to_dict(self) -> dict:
        return camel_case_dict(self)


@dataclass(frozen=True)
class _ContributionMix:
    """Current contribution split; candidate totals are scaled to keep its proportions."""

    isa: float
    taxable: float
    pension: float

    @classmethod
    def from_inputs(cls, inputs: Inputs) -> "_ContributionMix":
        return cls(
            max(inputs.isa_annual_contribution, 0.0),
            max(inputs.taxable_annual_contribution, 0.0),
            max(inputs.pension_annual_contribution, 0.0),
        )

    @property
    def total(self) -> float:
        return self.isa + self.taxable + self.pension

    def allocation_for_total(self, total: float) -> ContributionAllocation:
        total = max(total, 0.0)
        if self.total <= 1e-12:
            return ContributionAllocation(isa=total, taxable=0.0, pension=0.0)
        scale = total / self.total
        return ContributionAllocation(
            isa=self.isa * scale,
            taxable=self.taxable * scale,
            pension=self.pension * scale,
        )


def binomial_ci_half_width(p: float, n: int) -> float:
    """95% Wald half-width ``1.96 * sqrt(p (1 - p) / n)``; zero when ``n`` is 0."""
    if n <= 0:
        return 0.0
    p = min(max(p, 0.0), 1.0)
    return 1.96 * math.sqrt(p * (1.0 - p) / n)


def validate_goal_config(inputs: Inputs, config: GoalSolveConfig) -> None:
    if config.target_retirement_age < inputs.current_age:
        raise ValueError("target_retirement_age must be >= current_age")
    if config.target_retirement_age >= inputs.horizon_age:
        raise ValueError("target_retirement_age must be < horizon_age")
    if not 0.0 <= config.target_success_threshold <= 1.0:
        raise ValueError("target_success_threshold must be between 0 and 1")
    if not (math.isfinite(config.search_min) and math.isfinite(config.search_max)):
        raise ValueError("search bounds must be finite")
    if config.search_max <= config.search_min:
        raise ValueError("search_max must be greater than search_min")
    if not math.isfinite(config.tolerance) or config.tolerance <= 0.0:
        raise ValueError("tolerance must be > 0")
    if config.max_iterations <= 0:
        raise ValueError("max_iterations must be > 0")
    if config.simulations_per_iteration <= 0:
        raise ValueError("simulations_per_iteration must be > 0")
    if config.final_simulations <= 0:
        raise ValueError("final_simulations must be > 0")


def _evaluate_candidate(
    inputs: Inputs,
    config: GoalSolveConfig,
    candidate_value: float,
    mix: _ContributionMix,
    simulations: int,
) -> tuple:
    """Return ``(success_rate, ci_half_width)`` at the target age for one candidate."""
    if config.goal_type == GoalType.REQUIRED_CONTRIBUTION:
        allocation = mix.allocation_for_total(candidate_value)
        trial = replace(
            inputs,
            simulations=max(simulations, 1),
            isa_annual_contribution=allocation.isa,
            taxable_annual_contribution=allocation.taxable,
            pension_annual_contribution=allocation.pension,
        )
    else:
        trial = replace(
            inputs,
            simulations=max(simulations, 1),
            target_annual_income=max(candidate_value, 0.0),
        )
    rate = evaluate_single_age(trial, config.target_retirement_age).success_rate
    return rate, binomial_ci_half_width(rate, trial.simulations)


def _meets(rate: float, threshold: float) -> bool:
    return rate + RATE_SLACK >= threshold


def _bisect(inputs, config, mix, iterations, feasible_moves_hi: bool):
    """Shrink ``[search_min, search_max]`` until its width is within tolerance.

    With ``feasible_moves_hi`` a feasible midpoint becomes the new upper bound
    (minimal contribution); otherwise it becomes the new lower bound (maximal
    income). Returns ``(value, converged)``.
    """
    lo, hi = config.search_min, config.search_max
    for step in range(1, config.max_iterations + 1):
        mid = (lo + hi) * 0.5
        rate, half_width = _evaluate_candidate(
            inputs, config, mid, mix, config.simulations_per_iteration
        )
        iterations.append(GoalSolveIteration(step, lo, hi, mid, rate, half_width))
        logger.debug(
            "step %d: [%.4f, %.4f] candidate %.4f success %.4f", step, lo, hi, mid, rate
        )

        if _meets(rate, config.target_success_threshold) == feasible_moves_hi:
            hi = mid
        else:
            lo = mid

        if abs(hi - lo) <= config.tolerance:
            return (hi if feasible_moves_hi else lo), True
    return (hi if feasible_moves_hi else lo), False


def solve_goal(inputs: Inputs, config: GoalSolveConfig) -> GoalSolveResult:
    """Find the smallest total contribution, or the largest target income,
    that still reaches ``target_success_threshold`` at the target age.

    Success is assumed monotone in the searched value. Both bounds are evaluated
    first: a target already met at the lower contribution bound, or still met
    at the upper income bound, returns that bound; one never met returns an
    infeasible result. The answer is re-evaluated with ``final_simulations``.

    Raises:
        ValueError: if ``config`` is inconsistent with ``inputs``.
    """
    validate_goal_config(inputs, config)

    mix = _ContributionMix.from_inputs(inputs)
    threshold = config.target_success_threshold
    per_iteration = config.simulations_per_iteration
    low_rate, _ = _evaluate_candidate(inputs, config, config.search_min, mix, per_iteration)
    high_rate, _ = _evaluate_candidate(inputs, config, config.search_max, mix, per_iteration)

    iterations: List[GoalSolveIteration] = []
    solved_value = None
    converged = False

    if config.goal_type == GoalType.REQUIRED_CONTRIBUTION:
        if _meets(low_rate, threshold):
            solved_value, converged, feasible = config.search_min, True, True
            message = "Already meets target at lower contribution bound."
        elif not _meets(high_rate, threshold):
            feasible = False
            message = "No feasible contribution found within the search bounds."
        else:
            solved_value, converged = _bisect(inputs, config, mix, iterations, True)
            feasible = True
            message = (
                "Solved required contribution."
                if converged
                else "Reached max iterations before tolerance was met; returning best estimate."
            )
    else:
        if not _meets(low_rate, threshold):
            feasible = False
            message = "No feasible income found within the search bounds."
        elif _meets(high_rate, threshold):
            solved_value, converged, feasible = config.search_max, True, True
            message = (
                "Upper income bound is still feasible; increase search max for higher target."
            )
        else:
            solved_value, converged = _bisect(inputs, config, mix, iterations, False)
            feasible = True
            message = (
                "Solved maximum sustainable income."
                if converged
                else "Reached max iterations before tolerance was met; returning best estimate."
            )

    achieved_rate = achieved_half_width = None
    solved_contributions = None
    if solved_value is not None:
        achieved_rate, achieved_half_width = _evaluate_candidate(
            inputs, config, solved_value, mix, config.final_simulations
        )
        if config.goal_type == GoalType.REQUIRED_CONTRIBUTION:
            solved_contributions = mix.allocation_for_total(solved_value)

    logger.info(
        "%s at age %d: %s (value %s, success %s)",
        config.goal_type.value,
        config.target_retirement_age,
        message,
        solved_value,
        achieved_rate,
    )
    return GoalSolveResult(
        config=config,
        solved_value=solved_value,
        solved_contributions=solved_contributions,
        achieved_success_rate=achieved_rate,
        achieved_success_ci_half_width=achieved_half_width,
        converged=converged,
        feasible=feasible,
        message=message,
        iterations=iterations,
    )
