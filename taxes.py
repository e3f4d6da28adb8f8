"""Income tax, capital gains tax and gross-for-net inversion."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numba import njit

from core import (
    P_PENSION_FLAT_TAX_RATE,
    P_PENSION_TAX_MODE,
    P_UK_ADDITIONAL_RATE,
    P_UK_ALLOWANCE_TAPER_END,
    P_UK_ALLOWANCE_TAPER_START,
    P_UK_BASIC_RATE,
    P_UK_BASIC_RATE_LIMIT,
    P_UK_HIGHER_RATE,
    P_UK_HIGHER_RATE_LIMIT,
    P_UK_PERSONAL_ALLOWANCE,
    PensionTaxMode,
    inputs_to_params,
)
from portfolio import BASIS_SLOT, TAXABLE_SLOT


BISECTION_STEPS = 40

# capital gains state slots
ALLOWANCE_SLOT, CGT_PAID_SLOT = range(2)
# tax-year state slots
NON_PENSION_INCOME_SLOT, PENSION_GROSS_SLOT, PRICE_INDEX_SLOT = range(3)

_FLAT_RATE = PensionTaxMode.FLAT_RATE.code


@dataclass
class CgtState:
    """Capital gains bookkeeping for one tax year."""

    allowance_remaining: float
    tax_paid: float = 0.0

    def to_array(self) -> np.ndarray:
        return np.array([self.allowance_remaining, self.tax_paid], dtype=np.float64)

    def load_array(self, cgt: np.ndarray) -> None:
        self.allowance_remaining = float(cgt[ALLOWANCE_SLOT])
        self.tax_paid = float(cgt[CGT_PAID_SLOT])


@dataclass
class TaxYearState:
    """Income already recognised this tax year, used for marginal pension tax."""

    non_pension_taxable_income: float
    pension_gross_withdrawn: float = 0.0
    price_index: float = 1.0

    @property
    def total_income(self) -> float:
        return self.non_pension_taxable_income + self.pension_gross_withdrawn

    def to_array(self) -> np.ndarray:
        return np.array(
            [self.non_pension_taxable_income, self.pension_gross_withdrawn, self.price_index],
            dtype=np.float64,
        )

    def load_array(self, tax_state: np.ndarray) -> None:
        self.non_pension_taxable_income = float(tax_state[NON_PENSION_INCOME_SLOT])
        self.pension_gross_withdrawn = float(tax_state[PENSION_GROSS_SLOT])
        self.price_index = float(tax_state[PRICE_INDEX_SLOT])


@njit(cache=True)
def _clamp01(rate):
    return min(max(rate, 0.0), 1.0)


@njit(cache=True)
def _uk_income_tax_jit(gross_income, price_index, params):
    """JIT-compiled UK band calculation.

    Thresholds in ``params`` are in today's money and are indexed here by
    ``price_index``.
    """
    gross = max(gross_income, 0.0)

    taper_start = max(params[P_UK_ALLOWANCE_TAPER_START] * price_index, 0.0)
    taper_end = max(params[P_UK_ALLOWANCE_TAPER_END] * price_index, taper_start)

    allowance = max(params[P_UK_PERSONAL_ALLOWANCE] * price_index, 0.0)
    if gross > taper_start:
        allowance = max(allowance - (gross - taper_start) / 2.0, 0.0)
    if gross >= taper_end:
        allowance = 0.0

    taxable_income = max(gross - allowance, 0.0)

    basic_limit = max(params[P_UK_BASIC_RATE_LIMIT] * price_index, 0.0)
    higher_limit = max(params[P_UK_HIGHER_RATE_LIMIT] * price_index, basic_limit)

    basic_band_width = max(basic_limit - allowance, 0.0)
    higher_band_width = max(higher_limit - basic_limit, 0.0)

    basic_taxable = min(taxable_income, basic_band_width)
    higher_taxable = max(min(taxable_income - basic_taxable, higher_band_width), 0.0)
    additional_taxable = max(taxable_income - basic_taxable - higher_taxable, 0.0)

    return (
        basic_taxable * _clamp01(params[P_UK_BASIC_RATE])
        + higher_taxable * _clamp01(params[P_UK_HIGHER_RATE])
        + additional_taxable * _clamp01(params[P_UK_ADDITIONAL_RATE])
    )


@njit(cache=True)
def _income_tax_jit(total_income, price_index, params):
    gross = max(total_income, 0.0)
    if int(params[P_PENSION_TAX_MODE]) == _FLAT_RATE:
        return gross * _clamp01(params[P_PENSION_FLAT_TAX_RATE])
    return _uk_income_tax_jit(gross, price_index, params)


@njit(cache=True)
def _net_income_after_tax_jit(gross_income, price_index, params):
    gross = max(gross_income, 0.0)
    return max(gross - _income_tax_jit(gross, price_index, params), 0.0)


@njit(cache=True)
def _net_from_additional_pension_gross_jit(additional_gross, tax_state, params):
    if additional_gross <= 0.0:
        return 0.0

    before_income = tax_state[NON_PENSION_INCOME_SLOT] + tax_state[PENSION_GROSS_SLOT]
    after_income = before_income + additional_gross
    price_index = tax_state[PRICE_INDEX_SLOT]
    before_tax = _income_tax_jit(before_income, price_index, params)
    after_tax = _income_tax_jit(after_income, price_index, params)
    incremental_tax = max(after_tax - before_tax, 0.0)
    return max(additional_gross - incremental_tax, 0.0)


@njit(cache=True)
def _net_from_taxable_gross_jit(gross_sale, value_before, basis_before, allowance_remaining, cgt_rate):
    """JIT-compiled CGT-aware sale proceeds."""
    if gross_sale <= 0.0 or value_before <= 0.0:
        return 0.0

    gross = min(gross_sale, value_before)
    basis_portion = min(basis_before * (gross / value_before), basis_before)
    realized_gain = gross - basis_portion
    if realized_gain <= 0.0:
        return gross

    allowance_used = min(max(allowance_remaining, 0.0), realized_gain)
    taxable_gain = max(realized_gain - allowance_used, 0.0)
    tax = taxable_gain * max(cgt_rate, 0.0)
    return max(gross - tax, 0.0)


@njit(cache=True)
def _execute_taxable_sale_jit(gross_sale, pots, cgt, cgt_rate):
    value_before = pots[TAXABLE_SLOT]
    if gross_sale <= 0.0 or value_before <= 0.0:
        return 0.0

    gross = min(gross_sale, value_before)
    basis_before = pots[BASIS_SLOT]
    basis_portion = min(basis_before * (gross / value_before), basis_before)
    realized_gain = gross - basis_portion

    pots[TAXABLE_SLOT] -= gross
    pots[BASIS_SLOT] = min(max(basis_before - basis_portion, 0.0), pots[TAXABLE_SLOT])

    if realized_gain <= 0.0:
        return gross

    allowance_used = max(min(cgt[ALLOWANCE_SLOT], realized_gain), 0.0)
    cgt[ALLOWANCE_SLOT] = max(cgt[ALLOWANCE_SLOT] - allowance_used, 0.0)

    taxable_gain = max(realized_gain - allowance_used, 0.0)
    tax = taxable_gain * max(cgt_rate, 0.0)
    cgt[CGT_PAID_SLOT] += tax
    return max(gross - tax, 0.0)


# Bisection for the smallest gross in [0, upper] whose net reaches the
# desired amount. A fixed number of halvings keeps flat net functions from
# looping forever; the upper end of the final bracket is returned.


@njit(cache=True)
def _taxable_gross_for_net_jit(desired_net, value, basis, allowance_remaining, cgt_rate):
    lo = 0.0
    hi = value
    for _ in range(BISECTION_STEPS):
        mid = (lo + hi) * 0.5
        if _net_from_taxable_gross_jit(mid, value, basis, allowance_remaining, cgt_rate) < desired_net:
            lo = mid
        else:
            hi = mid
    return hi


@njit(cache=True)
def _pension_gross_for_net_jit(desired_net, upper, tax_state, params):
    lo = 0.0
    hi = upper
    for _ in range(BISECTION_STEPS):
        mid = (lo + hi) * 0.5
        if _net_from_additional_pension_gross_jit(mid, tax_state, params) < desired_net:
            lo = mid
        else:
            hi = mid
    return hi


def uk_income_tax(gross_income: float, inputs, price_index: float) -> float:
    """UK income tax with inflation-indexed bands and allowance taper."""
    return float(_uk_income_tax_jit(float(gross_income), float(price_index), inputs_to_params(inputs)))


def income_tax(total_income: float, inputs, price_index: float) -> float:
    """Tax owed on a year's total taxable income under the configured mode."""
    return float(_income_tax_jit(float(total_income), float(price_index), inputs_to_params(inputs)))


def net_income_after_tax(gross_income: float, inputs, price_index: float) -> float:
    return float(_net_income_after_tax_jit(float(gross_income), float(price_index), inputs_to_params(inputs)))


def net_from_additional_pension_gross(
    additional_gross: float, tax_state: TaxYearState, inputs
) -> float:
    """Net cash from taking ``additional_gross`` more out of the pension this year."""
    return float(
        _net_from_additional_pension_gross_jit(
            float(additional_gross), tax_state.to_array(), inputs_to_params(inputs)
        )
    )


def net_from_taxable_gross(
    gross_sale: float,
    value_before: float,
    basis_before: float,
    allowance_remaining: float,
    cgt_rate: float,
) -> float:
    """Net proceeds of selling ``gross_sale`` from a taxable holding.

    The sold basis is proportional (``basis * sale / value``); the remaining
    CGT allowance offsets the gain before ``cgt_rate`` applies.
    """
    return float(
        _net_from_taxable_gross_jit(
            float(gross_sale),
            float(value_before),
            float(basis_before),
            float(allowance_remaining),
            float(cgt_rate),
        )
    )


def execute_taxable_sale(
    gross_sale: float, portfolio, cgt_state: CgtState, cgt_rate: float
) -> float:
    """Sell from ``portfolio.taxable``, updating value, basis and the CGT year."""
    pots = portfolio.to_array()
    cgt = cgt_state.to_array()
    net = _execute_taxable_sale_jit(float(gross_sale), pots, cgt, float(cgt_rate))
    portfolio.load_array(pots)
    cgt_state.load_array(cgt)
    return float(net)


def taxable_gross_for_net(
    desired_net: float, value: float, basis: float, allowance_remaining: float, cgt_rate: float
) -> float:
    """Gross sale needed to net ``desired_net`` from a taxable holding worth ``value``."""
    return float(
        _taxable_gross_for_net_jit(
            float(desired_net), float(value), float(basis), float(allowance_remaining), float(cgt_rate)
        )
    )


def pension_gross_for_net(
    desired_net: float, pension: float, tax_state: TaxYearState, inputs
) -> float:
    """Gross pension draw (at most ``pension``) needed to net ``desired_net``."""
    return float(
        _pension_gross_for_net_jit(
            float(desired_net), float(pension), tax_state.to_array(), inputs_to_params(inputs)
        )
    )
