"""Account balances and their year-on-year evolution."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numba import njit

from core import (
    P_BOND_LADDER_START,
    P_BOND_LADDER_YIELD,
    P_CASH_GROWTH_RATE,
    P_CASH_START,
    P_CONTRIBUTION_GROWTH_RATE,
    P_ISA_ANNUAL_CONTRIBUTION,
    P_ISA_ANNUAL_CONTRIBUTION_LIMIT,
    P_ISA_START,
    P_PENSION_ANNUAL_CONTRIBUTION,
    P_PENSION_START,
    P_TAXABLE_ANNUAL_CONTRIBUTION,
    P_TAXABLE_COST_BASIS_START,
    P_TAXABLE_RETURN_TAX_DRAG,
    P_TAXABLE_START,
    inputs_to_params,
)
from market import MarketSample


# slots of the pots array the kernels work on
ISA_SLOT, TAXABLE_SLOT, BASIS_SLOT, PENSION_SLOT, CASH_SLOT, LADDER_SLOT = range(6)
N_SLOTS = 6


@njit(cache=True)
def _initial_pots_jit(params, pots):
    pots[ISA_SLOT] = params[P_ISA_START]
    pots[TAXABLE_SLOT] = params[P_TAXABLE_START]
    pots[BASIS_SLOT] = min(params[P_TAXABLE_COST_BASIS_START], params[P_TAXABLE_START])
    pots[PENSION_SLOT] = params[P_PENSION_START]
    pots[CASH_SLOT] = params[P_CASH_START]
    pots[LADDER_SLOT] = params[P_BOND_LADDER_START]


@njit(cache=True)
def _invested_jit(pots):
    return pots[ISA_SLOT] + pots[TAXABLE_SLOT] + pots[PENSION_SLOT] + pots[LADDER_SLOT]


@njit(cache=True)
def _deflated_jit(pots, price_index):
    deflator = max(price_index, 1e-9)
    total = (
        pots[ISA_SLOT] + pots[TAXABLE_SLOT] + pots[PENSION_SLOT] + pots[CASH_SLOT] + pots[LADDER_SLOT]
    )
    return (
        total / deflator,
        pots[ISA_SLOT] / deflator,
        pots[TAXABLE_SLOT] / deflator,
        pots[PENSION_SLOT] / deflator,
        pots[CASH_SLOT] / deflator,
        pots[LADDER_SLOT] / deflator,
    )


@dataclass
class Portfolio:
    """Five pots plus the taxable account's cost basis (0 <= basis <= taxable)."""

    isa: float = 0.0
    taxable: float = 0.0
    taxable_basis: float = 0.0
    pension: float = 0.0
    cash_buffer: float = 0.0
    bond_ladder: float = 0.0

    @classmethod
    def from_inputs(cls, inputs) -> "Portfolio":
        pots = np.empty(N_SLOTS)
        _initial_pots_jit(inputs_to_params(inputs), pots)
        portfolio = cls()
        portfolio.load_array(pots)
        return portfolio

    def to_array(self) -> np.ndarray:
        return np.array(
            [self.isa, self.taxable, self.taxable_basis, self.pension, self.cash_buffer, self.bond_ladder],
            dtype=np.float64,
        )

    def load_array(self, pots: np.ndarray) -> None:
        (
            self.isa,
            self.taxable,
            self.taxable_basis,
            self.pension,
            self.cash_buffer,
            self.bond_ladder,
        ) = (float(v) for v in pots)

    @property
    def total(self) -> float:
        return self.isa + self.taxable + self.pension + self.cash_buffer + self.bond_ladder

    @property
    def invested(self) -> float:
        """Market-exposed pots; the cash buffer is excluded."""
        return self.isa + self.taxable + self.pension + self.bond_ladder

    def deflated(self, price_index: float) -> tuple:
        """(total, isa, taxable, pension, cash, bond ladder) in today's money."""
        return tuple(float(v) for v in _deflated_jit(self.to_array(), float(price_index)))


@dataclass(frozen=True)
class ContributionFlow:
    isa: float = 0.0
    taxable: float = 0.0
    pension: float = 0.0

    @property
    def total(self) -> float:
        return self.isa + self.taxable + self.pension


@njit(cache=True)
def _grow_market_pots_jit(params, pots, isa_return, taxable_return, pension_return):
    pots[ISA_SLOT] = max(pots[ISA_SLOT] * (1.0 + isa_return), 0.0)
    pots[TAXABLE_SLOT] = max(pots[TAXABLE_SLOT] * (1.0 + taxable_return), 0.0)
    pots[TAXABLE_SLOT] = max(pots[TAXABLE_SLOT] * (1.0 - params[P_TAXABLE_RETURN_TAX_DRAG]), 0.0)
    pots[PENSION_SLOT] = max(pots[PENSION_SLOT] * (1.0 + pension_return), 0.0)


@njit(cache=True)
def _pre_retirement_growth_jit(params, pots, isa_return, taxable_return, pension_return):
    _grow_market_pots_jit(params, pots, isa_return, taxable_return, pension_return)
    pots[LADDER_SLOT] = max(pots[LADDER_SLOT] * (1.0 + params[P_BOND_LADDER_YIELD]), 0.0)
    pots[BASIS_SLOT] = min(pots[BASIS_SLOT], pots[TAXABLE_SLOT])


@njit(cache=True)
def _post_retirement_growth_jit(params, pots, isa_return, taxable_return, pension_return):
    _grow_market_pots_jit(params, pots, isa_return, taxable_return, pension_return)
    pots[CASH_SLOT] = max(pots[CASH_SLOT] * (1.0 + params[P_CASH_GROWTH_RATE]), 0.0)
    pots[LADDER_SLOT] = max(pots[LADDER_SLOT] * (1.0 + params[P_BOND_LADDER_YIELD]), 0.0)
    pots[BASIS_SLOT] = min(pots[BASIS_SLOT], pots[TAXABLE_SLOT])


@njit(cache=True)
def _contributions_jit(params, pots, years_since_start):
    multiplier = (1.0 + params[P_CONTRIBUTION_GROWTH_RATE]) ** float(years_since_start)
    requested_isa = params[P_ISA_ANNUAL_CONTRIBUTION] * multiplier
    requested_taxable = params[P_TAXABLE_ANNUAL_CONTRIBUTION] * multiplier
    requested_pension = params[P_PENSION_ANNUAL_CONTRIBUTION] * multiplier

    isa = min(max(requested_isa, 0.0), params[P_ISA_ANNUAL_CONTRIBUTION_LIMIT])
    overflow_to_taxable = max(requested_isa - isa, 0.0)
    taxable = max(requested_taxable, 0.0) + overflow_to_taxable
    pension = max(requested_pension, 0.0)

    pots[ISA_SLOT] += isa
    pots[TAXABLE_SLOT] += taxable
    pots[BASIS_SLOT] += taxable
    pots[PENSION_SLOT] += pension
    return isa, taxable, pension


@njit(cache=True)
def _realized_real_return_jit(start_invested, end_invested, inflation):
    if start_invested <= 0.0:
        return 0.0
    nominal_return = max(end_invested / start_invested, 0.0) - 1.0
    return ((1.0 + nominal_return) / (1.0 + inflation)) - 1.0


def _grow(kernel, inputs, portfolio: Portfolio, sampled: MarketSample) -> None:
    pots = portfolio.to_array()
    kernel(
        inputs_to_params(inputs),
        pots,
        sampled.isa_return,
        sampled.taxable_return,
        sampled.pension_return,
    )
    portfolio.load_array(pots)


def apply_pre_retirement_growth(inputs, portfolio: Portfolio, sampled: MarketSample) -> None:
    """Grow invested pots for one working year. The cash buffer earns nothing."""
    _grow(_pre_retirement_growth_jit, inputs, portfolio, sampled)


def apply_post_retirement_growth(inputs, portfolio: Portfolio, sampled: MarketSample) -> None:
    _grow(_post_retirement_growth_jit, inputs, portfolio, sampled)


def apply_pre_retirement_contributions(
    inputs, portfolio: Portfolio, years_since_start: int
) -> ContributionFlow:
    """Pay in one year of contributions.

    All streams grow geometrically with ``contribution_growth_rate``. ISA money
    above the annual limit overflows into the taxable account (and its basis);
    negative requests are treated as zero.
    """
    pots = portfolio.to_array()
    isa, taxable, pension = _contributions_jit(inputs_to_params(inputs), pots, int(years_since_start))
    portfolio.load_array(pots)
    return ContributionFlow(isa=float(isa), taxable=float(taxable), pension=float(pension))


def realized_real_return(start_invested: float, end_invested: float, inflation: float) -> float:
    return float(_realized_real_return_jit(float(start_invested), float(end_invested), float(inflation)))
