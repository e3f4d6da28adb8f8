"""Yearly real spending decisions for the five withdrawal strategies."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numba import njit

from core import (
    P_BAD_YEAR_CUT,
    P_BAD_YEAR_THRESHOLD,
    P_FLOOR_UPSIDE_CAPTURE,
    P_GK_LOWER_GUARDRAIL,
    P_GK_UPPER_GUARDRAIL,
    P_GOOD_YEAR_RAISE,
    P_GOOD_YEAR_THRESHOLD,
    P_HORIZON_AGE,
    P_MAX_INCOME_CEILING,
    P_MIN_INCOME_FLOOR,
    P_MORTGAGE_ANNUAL_PAYMENT,
    P_MORTGAGE_END_AGE,
    P_PENSION_ACCESS_AGE,
    P_TARGET_ANNUAL_INCOME,
    P_VPW_EXPECTED_REAL_RETURN,
    P_WITHDRAWAL_STRATEGY,
    WithdrawalStrategy,
    inputs_to_params,
)
from portfolio import CASH_SLOT, ISA_SLOT, LADDER_SLOT, PENSION_SLOT, TAXABLE_SLOT


# spending state slots
SPENDING_SLOT, INITIAL_RATE_SLOT = range(2)

_GUARDRAILS = WithdrawalStrategy.GUARDRAILS.code
_GUYTON_KLINGER = WithdrawalStrategy.GUYTON_KLINGER.code
_VPW = WithdrawalStrategy.VPW.code
_FLOOR_UPSIDE = WithdrawalStrategy.FLOOR_UPSIDE.code
_BUCKET = WithdrawalStrategy.BUCKET.code


@dataclass
class SpendingState:
    current_real_spending: float
    initial_withdrawal_rate: float

    def to_array(self) -> np.ndarray:
        return np.array([self.current_real_spending, self.initial_withdrawal_rate], dtype=np.float64)


@njit(cache=True)
def _spending_bounds_jit(params):
    min_real_spending = params[P_TARGET_ANNUAL_INCOME] * params[P_MIN_INCOME_FLOOR]
    max_real_spending = params[P_TARGET_ANNUAL_INCOME] * params[P_MAX_INCOME_CEILING]
    return min_real_spending, max(max_real_spending, min_real_spending)


@njit(cache=True)
def _mortgage_payment_real_jit(params, age):
    payment = params[P_MORTGAGE_ANNUAL_PAYMENT]
    end_age = params[P_MORTGAGE_END_AGE]
    if payment <= 0.0 or math.isnan(end_age):
        return 0.0
    if age < end_age:
        return payment
    return 0.0


@njit(cache=True)
def _required_real_spending_jit(params, age):
    return params[P_TARGET_ANNUAL_INCOME] + _mortgage_payment_real_jit(params, age)


@njit(cache=True)
def _available_spendable_real_jit(params, age, pots, price_index):
    total = pots[CASH_SLOT] + pots[ISA_SLOT] + pots[TAXABLE_SLOT] + pots[LADDER_SLOT]
    if age >= params[P_PENSION_ACCESS_AGE]:
        total += pots[PENSION_SLOT]
    return total / max(price_index, 1e-9)


@njit(cache=True)
def _annuity_withdrawal_rate_jit(real_return: float, years_remaining: int) -> float:
    years = float(max(years_remaining, 1))
    if abs(real_return) < 1e-9:
        return min(max(1.0 / years, 0.0), 1.0)
    if real_return <= -0.99:
        return 1.0
    denom = 1.0 - (1.0 + real_return) ** (-years)
    if denom <= 1e-9:
        return 1.0
    return min(max(real_return / denom, 0.0), 1.0)


@njit(cache=True)
def _plan_real_spending_jit(params, age, prev_real_return, available_real, spending_state):
    min_real, max_real = _spending_bounds_jit(params)
    strategy = int(params[P_WITHDRAWAL_STRATEGY])
    bad_year = prev_real_return < params[P_BAD_YEAR_THRESHOLD]
    good_year = prev_real_return > params[P_GOOD_YEAR_THRESHOLD]
    cut = 1.0 - params[P_BAD_YEAR_CUT]
    raise_ = 1.0 + params[P_GOOD_YEAR_RAISE]

    spending = spending_state[SPENDING_SLOT]
    if strategy == _GUARDRAILS:
        if bad_year:
            spending *= cut
        elif good_year:
            spending *= raise_
    elif strategy == _GUYTON_KLINGER:
        current_wr = spending / max(available_real, 1e-9)
        lower_guardrail = spending_state[INITIAL_RATE_SLOT] * params[P_GK_LOWER_GUARDRAIL]
        upper_guardrail = spending_state[INITIAL_RATE_SLOT] * params[P_GK_UPPER_GUARDRAIL]
        if bad_year and current_wr > upper_guardrail:
            spending *= cut
        elif good_year and current_wr < lower_guardrail:
            spending *= raise_
    elif strategy == _VPW:
        years_remaining = max(int(params[P_HORIZON_AGE]) - age, 1)
        rate = _annuity_withdrawal_rate_jit(params[P_VPW_EXPECTED_REAL_RETURN], years_remaining)
        spending = max(available_real, 0.0) * rate
    elif strategy == _FLOOR_UPSIDE:
        spending = max(spending, min_real)
        if bad_year:
            spending *= cut
        if prev_real_return > 0.0:
            spending *= 1.0 + prev_real_return * max(params[P_FLOOR_UPSIDE_CAPTURE], 0.0)
    elif strategy == _BUCKET:
        if bad_year:
            spending *= cut
        elif good_year:
            # muted raise; the executor parks the excess in cash
            spending *= 1.0 + params[P_GOOD_YEAR_RAISE] * 0.5
    else:
        raise ValueError("Unknown withdrawal strategy")

    spending = min(max(spending, min_real), max_real)
    spending_state[SPENDING_SLOT] = spending
    return spending


def spending_bounds(inputs) -> tuple:
    low, high = _spending_bounds_jit(inputs_to_params(inputs))
    return float(low), float(high)


def mortgage_payment_real(inputs, age: int) -> float:
    return float(_mortgage_payment_real_jit(inputs_to_params(inputs), age))


def required_real_spending(inputs, age: int) -> float:
    """Target income plus any mortgage still running at ``age``."""
    return float(_required_real_spending_jit(inputs_to_params(inputs), age))


def available_spendable_real(inputs, age: int, portfolio, price_index: float) -> float:
    return float(
        _available_spendable_real_jit(inputs_to_params(inputs), age, portfolio.to_array(), float(price_index))
    )


def annuity_withdrawal_rate(real_return: float, years_remaining: int) -> float:
    """Level-annuity payment factor ``r / (1 - (1 + r) ** -n)`` clamped to [0, 1]."""
    return float(_annuity_withdrawal_rate_jit(float(real_return), int(years_remaining)))


def plan_real_spending(
    inputs,
    age: int,
    prev_real_return: float,
    available_real: float,
    spending_state: SpendingState,
) -> float:
    """Choose this year's real (today's money) spending and remember it.

    ``prev_real_return`` is last year's realised real return on invested
    pots; ``available_real`` is everything spendable at ``age`` excluding any
    mortgage payment.
    """
    state = spending_state.to_array()
    spending = _plan_real_spending_jit(
        inputs_to_params(inputs), age, float(prev_real_return), float(available_real), state
    )
    spending_state.current_real_spending = float(state[SPENDING_SLOT])
    return float(spending)
