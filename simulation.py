"""One Monte Carlo path: accumulate until retirement, then fund spending to the horizon.

The path itself is a jitted kernel over the parameter vector from
``core.inputs_to_params``; ``simulate_ensemble`` maps it over scenario ids
with ``prange``, each scenario drawing its normals from its own derived seed.
"""

from __future__ import annotations

import math
from dataclasses import astuple, dataclass
from typing import List, Optional

import numpy as np
from numba import njit, prange

from core import (
    P_CAPITAL_GAINS_ALLOWANCE,
    P_CURRENT_AGE,
    P_HORIZON_AGE,
    P_STATE_PENSION_ANNUAL_INCOME,
    P_STATE_PENSION_START_AGE,
    P_TARGET_ANNUAL_INCOME,
    inputs_to_params,
)
from market import NORMALS_PER_YEAR, _sample_market_jit
from planner import (
    INITIAL_RATE_SLOT,
    SPENDING_SLOT,
    _available_spendable_real_jit,
    _mortgage_payment_real_jit,
    _plan_real_spending_jit,
    _required_real_spending_jit,
)
from portfolio import (
    N_SLOTS,
    _contributions_jit,
    _deflated_jit,
    _initial_pots_jit,
    _invested_jit,
    _post_retirement_growth_jit,
    _pre_retirement_growth_jit,
    _realized_real_return_jit,
)
from rng import RandomStream, _fill_scenario_normals_jit, as_seed
from taxes import (
    ALLOWANCE_SLOT,
    CGT_PAID_SLOT,
    NON_PENSION_INCOME_SLOT,
    PENSION_GROSS_SLOT,
    PRICE_INDEX_SLOT,
    _net_income_after_tax_jit,
)
from withdrawals import _run_withdrawal_year_jit


SHORTFALL_EPSILON = 1e-9


@dataclass(frozen=True)
class YearTracePoint:
    """One simulated year, deflated to today's money."""

    contribution_isa: float = 0.0
    contribution_taxable: float = 0.0
    contribution_pension: float = 0.0
    contribution_total: float = 0.0
    withdrawal_portfolio: float = 0.0
    withdrawal_non_pension_income: float = 0.0
    spending_total: float = 0.0
    tax_cgt: float = 0.0
    tax_income: float = 0.0
    tax_total: float = 0.0
    end_isa: float = 0.0
    end_taxable: float = 0.0
    end_pension: float = 0.0
    end_cash: float = 0.0
    end_bond_ladder: float = 0.0
    end_total: float = 0.0

    def as_tuple(self) -> tuple:
        return astuple(self)


TRACE_FIELDS = tuple(YearTracePoint.__dataclass_fields__)
ZERO_TRACE_POINT = YearTracePoint()


@dataclass(frozen=True)
class ScenarioResult:
    success: bool
    retirement_total: float
    retirement_isa: float
    retirement_taxable: float
    retirement_pension: float
    retirement_cash: float
    retirement_bond_ladder: float
    terminal_total: float
    terminal_isa: float
    terminal_taxable: float
    terminal_pension: float
    terminal_cash: float
    terminal_bond_ladder: float
    min_income_ratio: float
    avg_income_ratio: float

    def metrics(self) -> tuple:
        """Every numeric field after ``success``, in declaration order."""
        return astuple(self)[1:]


SCENARIO_METRICS = tuple(ScenarioResult.__dataclass_fields__)[1:]

# column offsets into a metrics row and a trace row
_RETIREMENT = SCENARIO_METRICS.index("retirement_total")
_TERMINAL = SCENARIO_METRICS.index("terminal_total")
_MIN_RATIO = SCENARIO_METRICS.index("min_income_ratio")
_AVG_RATIO = SCENARIO_METRICS.index("avg_income_ratio")
_CONTRIBUTIONS = TRACE_FIELDS.index("contribution_isa")
_WITHDRAWALS = TRACE_FIELDS.index("withdrawal_portfolio")
_BALANCES = TRACE_FIELDS.index("end_isa")


@njit(cache=True)
def _write_deflated_jit(out, start, pots, price_index):
    """(total, isa, taxable, pension, cash, ladder) into ``out[start:start + 6]``."""
    total, isa, taxable, pension, cash, ladder = _deflated_jit(pots, price_index)
    out[start] = total
    out[start + 1] = isa
    out[start + 2] = taxable
    out[start + 3] = pension
    out[start + 4] = cash
    out[start + 5] = ladder


@njit(cache=True)
def _write_balances_jit(row, pots, price_index):
    # trace rows order balances as isa, taxable, pension, cash, ladder, total
    total, isa, taxable, pension, cash, ladder = _deflated_jit(pots, price_index)
    row[_BALANCES] = isa
    row[_BALANCES + 1] = taxable
    row[_BALANCES + 2] = pension
    row[_BALANCES + 3] = cash
    row[_BALANCES + 4] = ladder
    row[_BALANCES + 5] = total


@njit(cache=True)
def _state_pension_gross_income_jit(params, age, price_index):
    if age < params[P_STATE_PENSION_START_AGE]:
        return 0.0
    return max(params[P_STATE_PENSION_ANNUAL_INCOME] * price_index, 0.0)


@njit(cache=True)
def _normals_needed_jit(params, retirement_age):
    current_age = int(params[P_CURRENT_AGE])
    horizon_age = int(params[P_HORIZON_AGE])
    years = max(retirement_age - current_age, 0) + max(horizon_age - retirement_age, 0)
    return NORMALS_PER_YEAR * years


@njit(cache=True)
def _simulate_path_jit(params, retirement_age, contribution_stop_age, normals, metrics, trace):
    """Run one path, filling ``metrics`` (a SCENARIO_METRICS row).

    ``normals`` holds three draws per simulated year. When ``trace`` has rows
    (zero-filled, one per age from ``current_age``) each simulated year is
    written into it. Returns True when every planned year was funded.
    """
    current_age = int(params[P_CURRENT_AGE])
    horizon_age = int(params[P_HORIZON_AGE])
    record = trace.shape[0] > 0

    pots = np.empty(N_SLOTS)
    _initial_pots_jit(params, pots)
    price_index = 1.0
    k = 0
    row = 0

    # accumulation
    for age in range(current_age, retirement_age):
        isa_r, taxable_r, pension_r, inflation = _sample_market_jit(
            params, normals[k], normals[k + 1], normals[k + 2]
        )
        k += NORMALS_PER_YEAR
        _pre_retirement_growth_jit(params, pots, isa_r, taxable_r, pension_r)
        c_isa = 0.0
        c_taxable = 0.0
        c_pension = 0.0
        if age < contribution_stop_age:
            c_isa, c_taxable, c_pension = _contributions_jit(params, pots, age - current_age)
        price_index *= 1.0 + inflation
        if record:
            deflator = max(price_index, 1e-9)
            trace[row, _CONTRIBUTIONS] = c_isa / deflator
            trace[row, _CONTRIBUTIONS + 1] = c_taxable / deflator
            trace[row, _CONTRIBUTIONS + 2] = c_pension / deflator
            trace[row, _CONTRIBUTIONS + 3] = (c_isa + c_taxable + c_pension) / deflator
            _write_balances_jit(trace[row], pots, price_index)
        row += 1

    _write_deflated_jit(metrics, _RETIREMENT, pots, price_index)
    target = params[P_TARGET_ANNUAL_INCOME]
    spending_state = np.empty(2)
    spending_state[SPENDING_SLOT] = target
    spending_state[INITIAL_RATE_SLOT] = target / max(metrics[_RETIREMENT], 1e-9)

    cgt = np.empty(2)
    tax_state = np.empty(3)
    prev_real_return = 0.0
    min_income_ratio = math.inf
    income_ratio_sum = 0.0
    years = 0

    # decumulation
    for age in range(retirement_age, horizon_age):
        mortgage_real = _mortgage_payment_real_jit(params, age)
        available_real = _available_spendable_real_jit(params, age, pots, price_index)
        available_core_real = max(available_real - mortgage_real, 0.0)
        planned_real = (
            _plan_real_spending_jit(params, age, prev_real_return, available_core_real, spending_state)
            + mortgage_real
        )

        isa_r, taxable_r, pension_r, inflation = _sample_market_jit(
            params, normals[k], normals[k + 1], normals[k + 2]
        )
        k += NORMALS_PER_YEAR
        price_index *= 1.0 + inflation
        planned_nominal = planned_real * price_index

        cgt[ALLOWANCE_SLOT] = params[P_CAPITAL_GAINS_ALLOWANCE]
        cgt[CGT_PAID_SLOT] = 0.0
        state_pension_gross = _state_pension_gross_income_jit(params, age, price_index)
        state_pension_net = _net_income_after_tax_jit(state_pension_gross, price_index, params)
        tax_state[NON_PENSION_INCOME_SLOT] = state_pension_gross
        tax_state[PENSION_GROSS_SLOT] = 0.0
        tax_state[PRICE_INDEX_SLOT] = price_index

        realized, withdrawn, non_pension_used, cgt_paid, income_tax_paid = _run_withdrawal_year_jit(
            params,
            age,
            max(age - retirement_age, 0),
            planned_nominal,
            prev_real_return,
            planned_real,
            pots,
            cgt,
            tax_state,
            state_pension_net,
        )

        required_real = max(_required_real_spending_jit(params, age), 1e-9)
        income_ratio = (realized / price_index) / required_real
        min_income_ratio = min(min_income_ratio, income_ratio)
        income_ratio_sum += income_ratio
        years += 1

        if record:
            deflator = max(price_index, 1e-9)
            trace[row, _WITHDRAWALS] = withdrawn / deflator
            trace[row, _WITHDRAWALS + 1] = non_pension_used / deflator
            trace[row, _WITHDRAWALS + 2] = realized / deflator
            trace[row, _WITHDRAWALS + 3] = cgt_paid / deflator
            trace[row, _WITHDRAWALS + 4] = income_tax_paid / deflator
            trace[row, _WITHDRAWALS + 5] = (cgt_paid + income_tax_paid) / deflator

        if realized + SHORTFALL_EPSILON < planned_nominal:
            # a failed path reports empty terminal pots; later trace rows stay zero
            metrics[_TERMINAL:_TERMINAL + 6] = 0.0
            metrics[_MIN_RATIO] = min_income_ratio
            metrics[_AVG_RATIO] = income_ratio_sum / years
            return False

        start_invested = _invested_jit(pots)
        _post_retirement_growth_jit(params, pots, isa_r, taxable_r, pension_r)
        prev_real_return = _realized_real_return_jit(start_invested, _invested_jit(pots), inflation)
        if record:
            _write_balances_jit(trace[row], pots, price_index)
        row += 1

    _write_deflated_jit(metrics, _TERMINAL, pots, price_index)
    metrics[_MIN_RATIO] = min_income_ratio
    metrics[_AVG_RATIO] = income_ratio_sum / years if years > 0 else 0.0
    return True


@njit(cache=True, parallel=True)
def _simulate_ensemble_jit(
    params, base_seed, seed_age, retirement_age, contribution_stop_age, successes, metrics, traces
):
    n_normals = _normals_needed_jit(params, retirement_age)
    for scenario_id in prange(metrics.shape[0]):
        normals = np.empty(n_normals)
        _fill_scenario_normals_jit(base_seed, seed_age, scenario_id, normals)
        successes[scenario_id] = _simulate_path_jit(
            params,
            retirement_age,
            contribution_stop_age,
            normals,
            metrics[scenario_id],
            traces[scenario_id],
        )


def simulate_ensemble(
    params: np.ndarray,
    simulations: int,
    seed: int,
    seed_age: int,
    retirement_age: int,
    contribution_stop_age: int,
    trace_years: int = 0,
):
    """Run ``simulations`` scenarios in parallel.

    Scenario ``i`` is seeded with ``derive_seed(seed, seed_age, i)``, so the
    results match running :func:`simulate_scenario` on each id in turn.
    Returns ``(successes, metrics, traces)``: a bool per scenario, one
    SCENARIO_METRICS row per scenario and, when ``trace_years`` is set, an
    array of shape ``(simulations, trace_years, len(TRACE_FIELDS))``.
    """
    n = max(int(simulations), 0)
    successes = np.zeros(n, dtype=np.bool_)
    metrics = np.zeros((n, len(SCENARIO_METRICS)), dtype=np.float64)
    traces = np.zeros((n, trace_years, len(TRACE_FIELDS)), dtype=np.float64)
    _simulate_ensemble_jit(
        params,
        as_seed(seed),
        int(seed_age),
        int(retirement_age),
        int(contribution_stop_age),
        successes,
        metrics,
        traces,
    )
    return successes, metrics, traces


def state_pension_gross_income(inputs, age: int, price_index: float) -> float:
    return float(_state_pension_gross_income_jit(inputs_to_params(inputs), age, float(price_index)))


def simulate_scenario(
    inputs,
    retirement_age: int,
    contribution_stop_age: int,
    rng: RandomStream,
    trace: Optional[List[YearTracePoint]] = None,
) -> ScenarioResult:
    """Run one path and report deflated balances and income adequacy.

    Contributions stop at ``contribution_stop_age`` (equal to
    ``retirement_age`` for a plain sweep, earlier for coast FIRE). When
    ``trace`` is a list, one row per simulated year is appended to it and a
    failed path is padded with zero rows up to the horizon.
    """
    params = inputs_to_params(inputs)
    normals = rng.standard_normals(_normals_needed_jit(params, retirement_age))
    metrics = np.zeros(len(SCENARIO_METRICS), dtype=np.float64)
    trace_years = max(inputs.horizon_age - inputs.current_age, 0) if trace is not None else 0
    rows = np.zeros((trace_years, len(TRACE_FIELDS)), dtype=np.float64)

    success = _simulate_path_jit(params, retirement_age, contribution_stop_age, normals, metrics, rows)

    if trace is not None:
        trace.extend(YearTracePoint(*(float(v) for v in row)) for row in rows)
    return ScenarioResult(bool(success), *(float(v) for v in metrics))
