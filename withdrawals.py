"""Turning a year's net cash need into draws on the individual pots."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

import numpy as np
from numba import njit

from core import (
    P_BOND_LADDER_YEARS,
    P_BUCKET_TARGET_YEARS,
    P_CAPITAL_GAINS_TAX_RATE,
    P_GOOD_YEAR_EXTRA_BUFFER_WITHDRAWAL,
    P_GOOD_YEAR_THRESHOLD,
    P_PENSION_ACCESS_AGE,
    P_POST_ACCESS_WITHDRAWAL_ORDER,
    P_WITHDRAWAL_STRATEGY,
    WithdrawalOrder,
    WithdrawalStrategy,
    inputs_to_params,
)
from portfolio import (
    BASIS_SLOT,
    CASH_SLOT,
    ISA_SLOT,
    LADDER_SLOT,
    PENSION_SLOT,
    TAXABLE_SLOT,
    Portfolio,
)
from taxes import (
    ALLOWANCE_SLOT,
    CGT_PAID_SLOT,
    NON_PENSION_INCOME_SLOT,
    PENSION_GROSS_SLOT,
    PRICE_INDEX_SLOT,
    CgtState,
    TaxYearState,
    _execute_taxable_sale_jit,
    _income_tax_jit,
    _net_from_additional_pension_gross_jit,
    _net_from_taxable_gross_jit,
    _pension_gross_for_net_jit,
    _taxable_gross_for_net_jit,
)


PRO_RATA_ROUNDS = 4
EPSILON = 1e-9


class Pot(IntEnum):
    """Drawable pots, valued by their slot in the pots array."""

    ISA = ISA_SLOT
    TAXABLE = TAXABLE_SLOT
    PENSION = PENSION_SLOT
    BOND_LADDER = LADDER_SLOT


BEFORE_ACCESS_SEQUENCE = (Pot.ISA, Pot.TAXABLE)
BEFORE_ACCESS_LADDER_SEQUENCE = (Pot.BOND_LADDER, Pot.ISA, Pot.TAXABLE)
AFTER_ACCESS_SEQUENCES = {
    WithdrawalOrder.ISA_FIRST: (Pot.ISA, Pot.TAXABLE, Pot.PENSION),
    WithdrawalOrder.TAXABLE_FIRST: (Pot.TAXABLE, Pot.ISA, Pot.PENSION),
    WithdrawalOrder.PENSION_FIRST: (Pot.PENSION, Pot.TAXABLE, Pot.ISA),
    WithdrawalOrder.BOND_LADDER_FIRST: (Pot.BOND_LADDER, Pot.ISA, Pot.TAXABLE, Pot.PENSION),
}
# a pension draw before access yields nothing, so one fallback serves both cases
PRO_RATA_FALLBACK = (Pot.ISA, Pot.PENSION, Pot.TAXABLE, Pot.BOND_LADDER)


def _sequence_table(sequence_for) -> np.ndarray:
    """Pot slots per order code, padded with -1."""
    table = np.full((len(WithdrawalOrder), len(Pot)), -1, dtype=np.int64)
    for order in WithdrawalOrder:
        sequence = sequence_for(order)
        table[order.code, : len(sequence)] = [int(pot) for pot in sequence]
    return table


_BEFORE_ACCESS_TABLE = _sequence_table(
    lambda order: BEFORE_ACCESS_LADDER_SEQUENCE
    if order == WithdrawalOrder.BOND_LADDER_FIRST
    else BEFORE_ACCESS_SEQUENCE
)
_AFTER_ACCESS_TABLE = _sequence_table(lambda order: AFTER_ACCESS_SEQUENCES.get(order, ()))
_FALLBACK = tuple(int(pot) for pot in PRO_RATA_FALLBACK)

_PRO_RATA = WithdrawalOrder.PRO_RATA.code
_BUCKET = WithdrawalStrategy.BUCKET.code


@dataclass(frozen=True)
class WithdrawalYearOutcome:
    realized_spending_net: float
    portfolio_withdrawn_net: float
    non_pension_income_used: float
    cgt_tax_paid: float
    income_tax_paid: float

    @property
    def total_tax_paid(self) -> float:
        return self.cgt_tax_paid + self.income_tax_paid


@njit(cache=True)
def _withdraw_from_pension_for_net_jit(target_net, pots, tax_state, params):
    pension = pots[PENSION_SLOT]
    if target_net <= 0.0 or pension <= 0.0:
        return 0.0

    desired_net = min(target_net, _net_from_additional_pension_gross_jit(pension, tax_state, params))
    if desired_net <= 0.0:
        return 0.0

    gross = min(_pension_gross_for_net_jit(desired_net, pension, tax_state, params), pension)
    net = _net_from_additional_pension_gross_jit(gross, tax_state, params)
    pots[PENSION_SLOT] -= gross
    tax_state[PENSION_GROSS_SLOT] += gross
    return net


@njit(cache=True)
def _withdraw_from_taxable_for_net_jit(target_net, pots, cgt, cgt_rate):
    value = pots[TAXABLE_SLOT]
    if target_net <= 0.0 or value <= 0.0:
        return 0.0

    basis = pots[BASIS_SLOT]
    allowance = cgt[ALLOWANCE_SLOT]
    desired_net = min(target_net, _net_from_taxable_gross_jit(value, value, basis, allowance, cgt_rate))
    if desired_net <= 0.0:
        return 0.0

    gross = min(_taxable_gross_for_net_jit(desired_net, value, basis, allowance, cgt_rate), value)
    return _execute_taxable_sale_jit(gross, pots, cgt, cgt_rate)


@njit(cache=True)
def _withdraw_from_bond_ladder_jit(params, retirement_year_index, target_net, pots, scheduled):
    ladder = pots[LADDER_SLOT]
    if target_net <= 0.0 or ladder <= 0.0:
        return 0.0

    years = int(params[P_BOND_LADDER_YEARS])
    if scheduled and years > 0 and retirement_year_index < years:
        years_left = max(years - retirement_year_index, 1)
        max_available = min(max(ladder / years_left, 0.0), ladder)
    else:
        max_available = ladder

    withdrawn = min(target_net, max_available)
    pots[LADDER_SLOT] -= withdrawn
    return withdrawn


@njit(cache=True)
def _withdraw_from_single_pot_jit(params, pot, target_net, pension_access, pots, cgt, tax_state):
    if pot == LADDER_SLOT or pot == ISA_SLOT:
        x = min(pots[pot], target_net)
        pots[pot] -= x
        return x
    if pot == PENSION_SLOT:
        if not pension_access:
            return 0.0
        return _withdraw_from_pension_for_net_jit(target_net, pots, tax_state, params)
    return _withdraw_from_taxable_for_net_jit(target_net, pots, cgt, params[P_CAPITAL_GAINS_TAX_RATE])


@njit(cache=True)
def _withdraw_pro_rata_jit(params, pension_access, target_net, pots, cgt, tax_state):
    realized = 0.0
    remaining = target_net

    for _ in range(PRO_RATA_ROUNDS):
        if remaining <= EPSILON:
            break

        isa_capacity = max(pots[ISA_SLOT], 0.0)
        ladder_capacity = max(pots[LADDER_SLOT], 0.0)
        taxable_capacity = max(
            _net_from_taxable_gross_jit(
                pots[TAXABLE_SLOT],
                pots[TAXABLE_SLOT],
                pots[BASIS_SLOT],
                cgt[ALLOWANCE_SLOT],
                params[P_CAPITAL_GAINS_TAX_RATE],
            ),
            0.0,
        )
        pension_capacity = 0.0
        if pension_access:
            pension_capacity = max(
                _net_from_additional_pension_gross_jit(pots[PENSION_SLOT], tax_state, params), 0.0
            )
        total_capacity = isa_capacity + taxable_capacity + pension_capacity + ladder_capacity
        if total_capacity <= EPSILON:
            break

        # ladder, ISA, pension, taxable; a zero pension target draws nothing
        round_realized = _withdraw_from_single_pot_jit(
            params, LADDER_SLOT, remaining * (ladder_capacity / total_capacity),
            pension_access, pots, cgt, tax_state,
        )
        round_realized += _withdraw_from_single_pot_jit(
            params, ISA_SLOT, remaining * (isa_capacity / total_capacity),
            pension_access, pots, cgt, tax_state,
        )
        round_realized += _withdraw_from_single_pot_jit(
            params, PENSION_SLOT, remaining * (pension_capacity / total_capacity),
            pension_access, pots, cgt, tax_state,
        )
        round_realized += _withdraw_from_single_pot_jit(
            params, TAXABLE_SLOT, remaining * (taxable_capacity / total_capacity),
            pension_access, pots, cgt, tax_state,
        )

        realized += round_realized
        remaining = target_net - realized
        if round_realized <= EPSILON:
            break

    for pot in _FALLBACK:
        if remaining <= EPSILON:
            break
        withdrawn = _withdraw_from_single_pot_jit(
            params, pot, remaining, pension_access, pots, cgt, tax_state
        )
        realized += withdrawn
        remaining -= withdrawn

    return realized


@njit(cache=True)
def _withdraw_from_portfolio_jit(params, age, target_net, pots, cgt, tax_state, order):
    if target_net <= 0.0:
        return 0.0

    pension_access = age >= params[P_PENSION_ACCESS_AGE]
    if order == _PRO_RATA:
        return _withdraw_pro_rata_jit(params, pension_access, target_net, pots, cgt, tax_state)

    if pension_access:
        sequence = _AFTER_ACCESS_TABLE[order]
    else:
        sequence = _BEFORE_ACCESS_TABLE[order]

    realized = 0.0
    remaining = target_net
    for pot in sequence:
        if pot < 0 or remaining <= 0.0:
            break
        withdrawn = _withdraw_from_single_pot_jit(
            params, pot, remaining, pension_access, pots, cgt, tax_state
        )
        realized += withdrawn
        remaining -= withdrawn
    return realized


@njit(cache=True)
def _good_year_extra_jit(params, pots, planned_nominal, planned_real):
    extra_rate = max(params[P_GOOD_YEAR_EXTRA_BUFFER_WITHDRAWAL], 0.0)
    if int(params[P_WITHDRAWAL_STRATEGY]) != _BUCKET:
        return planned_nominal * extra_rate

    spending_for_bucket = max(planned_nominal, planned_real)
    target_cash = spending_for_bucket * max(params[P_BUCKET_TARGET_YEARS], 0.0)
    shortfall = max(target_cash - pots[CASH_SLOT], 0.0)
    refill_cap = spending_for_bucket * extra_rate
    if refill_cap > 0.0:
        return min(shortfall, refill_cap)
    return shortfall


@njit(cache=True)
def _run_withdrawal_year_jit(
    params,
    age,
    retirement_year_index,
    planned_nominal_spending,
    prev_real_return,
    planned_real_spending,
    pots,
    cgt,
    tax_state,
    net_non_pension_income,
):
    """Returns (realized, portfolio withdrawn, non-pension income used, CGT, income tax)."""
    order = int(params[P_POST_ACCESS_WITHDRAWAL_ORDER])
    realized = 0.0
    starting_cgt_paid = cgt[CGT_PAID_SLOT]
    portfolio_withdrawn = 0.0

    non_pension_used = min(net_non_pension_income, planned_nominal_spending)
    realized += non_pension_used
    pots[CASH_SLOT] += max(net_non_pension_income - non_pension_used, 0.0)

    from_cash = min(pots[CASH_SLOT], max(planned_nominal_spending - realized, 0.0))
    pots[CASH_SLOT] -= from_cash
    realized += from_cash

    ladder_scheduled = _withdraw_from_bond_ladder_jit(
        params, retirement_year_index, max(planned_nominal_spending - realized, 0.0), pots, True
    )
    realized += ladder_scheduled
    portfolio_withdrawn += ladder_scheduled

    main_withdrawn = _withdraw_from_portfolio_jit(
        params, age, max(planned_nominal_spending - realized, 0.0), pots, cgt, tax_state, order
    )
    realized += main_withdrawn
    portfolio_withdrawn += main_withdrawn

    # emergency backstop: the rest of the ladder regardless of schedule
    ladder_backstop = _withdraw_from_bond_ladder_jit(
        params, retirement_year_index, max(planned_nominal_spending - realized, 0.0), pots, False
    )
    realized += ladder_backstop
    portfolio_withdrawn += ladder_backstop

    if prev_real_return > params[P_GOOD_YEAR_THRESHOLD]:
        extra = _good_year_extra_jit(params, pots, planned_nominal_spending, planned_real_spending)
        if extra > 0.0:
            extra_withdrawn = _withdraw_from_portfolio_jit(
                params, age, extra, pots, cgt, tax_state, order
            )
            pots[CASH_SLOT] += extra_withdrawn
            portfolio_withdrawn += extra_withdrawn

    income_tax_paid = _income_tax_jit(
        tax_state[NON_PENSION_INCOME_SLOT] + tax_state[PENSION_GROSS_SLOT],
        tax_state[PRICE_INDEX_SLOT],
        params,
    )
    cgt_tax_paid = max(cgt[CGT_PAID_SLOT] - starting_cgt_paid, 0.0)
    return realized, portfolio_withdrawn, non_pension_used, cgt_tax_paid, income_tax_paid


class _Arrays:
    """Array views of the dataclass state for one kernel call, written back on exit."""

    def __init__(
        self,
        portfolio: Portfolio,
        cgt_state: Optional[CgtState] = None,
        tax_state: Optional[TaxYearState] = None,
    ):
        self.portfolio = portfolio
        self.cgt_state = cgt_state
        self.tax_state = tax_state
        self.pots = portfolio.to_array()
        self.cgt = cgt_state.to_array() if cgt_state is not None else np.zeros(2)
        self.tax = tax_state.to_array() if tax_state is not None else np.array([0.0, 0.0, 1.0])

    def __enter__(self) -> "_Arrays":
        return self

    def __exit__(self, *exc) -> None:
        self.portfolio.load_array(self.pots)
        if self.cgt_state is not None:
            self.cgt_state.load_array(self.cgt)
        if self.tax_state is not None:
            self.tax_state.load_array(self.tax)


def withdraw_from_pension_for_net(
    target_net: float, portfolio: Portfolio, inputs, tax_state: TaxYearState
) -> float:
    """Take enough gross pension to net ``target_net`` after marginal income tax."""
    with _Arrays(portfolio, tax_state=tax_state) as a:
        net = _withdraw_from_pension_for_net_jit(float(target_net), a.pots, a.tax, inputs_to_params(inputs))
    return float(net)


def withdraw_from_taxable_for_net(
    target_net: float, portfolio: Portfolio, cgt_state: CgtState, cgt_rate: float
) -> float:
    """Sell enough of the taxable account to net ``target_net`` after CGT."""
    with _Arrays(portfolio, cgt_state) as a:
        net = _withdraw_from_taxable_for_net_jit(float(target_net), a.pots, a.cgt, float(cgt_rate))
    return float(net)


def withdraw_from_bond_ladder(
    inputs,
    retirement_year_index: int,
    target_net: float,
    portfolio: Portfolio,
    scheduled: bool,
) -> float:
    """Draw from the ladder, limited to the even amortisation slice when ``scheduled``."""
    with _Arrays(portfolio) as a:
        withdrawn = _withdraw_from_bond_ladder_jit(
            inputs_to_params(inputs), int(retirement_year_index), float(target_net), a.pots, bool(scheduled)
        )
    return float(withdrawn)


def withdraw_from_single_pot(
    inputs,
    pot: Pot,
    target_net: float,
    pension_access: bool,
    portfolio: Portfolio,
    cgt_state: CgtState,
    tax_state: TaxYearState,
) -> float:
    with _Arrays(portfolio, cgt_state, tax_state) as a:
        withdrawn = _withdraw_from_single_pot_jit(
            inputs_to_params(inputs), int(pot), float(target_net), bool(pension_access), a.pots, a.cgt, a.tax
        )
    return float(withdrawn)


def withdraw_pro_rata(
    inputs,
    pension_access: bool,
    target_net: float,
    portfolio: Portfolio,
    cgt_state: CgtState,
    tax_state: TaxYearState,
) -> float:
    """Draw proportionally to each pot's net capacity, then drain in a fixed order."""
    with _Arrays(portfolio, cgt_state, tax_state) as a:
        withdrawn = _withdraw_pro_rata_jit(
            inputs_to_params(inputs), bool(pension_access), float(target_net), a.pots, a.cgt, a.tax
        )
    return float(withdrawn)


def withdraw_from_portfolio(
    inputs,
    age: int,
    target_net: float,
    portfolio: Portfolio,
    cgt_state: CgtState,
    tax_state: TaxYearState,
    order: WithdrawalOrder,
) -> float:
    """Raise ``target_net`` of spendable cash from the pots in ``order``.

    The pension is never touched before ``pension_access_age``.
    """
    with _Arrays(portfolio, cgt_state, tax_state) as a:
        withdrawn = _withdraw_from_portfolio_jit(
            inputs_to_params(inputs), int(age), float(target_net), a.pots, a.cgt, a.tax,
            WithdrawalOrder(order).code,
        )
    return float(withdrawn)


def run_withdrawal_year(
    inputs,
    age: int,
    retirement_year_index: int,
    planned_nominal_spending: float,
    prev_real_return: float,
    planned_real_spending: float,
    portfolio: Portfolio,
    cgt_state: CgtState,
    tax_state: TaxYearState,
    net_non_pension_income: float,
) -> WithdrawalYearOutcome:
    """Fund one retirement year.

    Order: non-pension income, cash buffer, scheduled bond ladder slice, the
    configured pot order, then whatever ladder remains. After a good year an
    extra amount is moved from the pots into the cash buffer.
    """
    with _Arrays(portfolio, cgt_state, tax_state) as a:
        outcome = _run_withdrawal_year_jit(
            inputs_to_params(inputs),
            int(age),
            int(retirement_year_index),
            float(planned_nominal_spending),
            float(prev_real_return),
            float(planned_real_spending),
            a.pots,
            a.cgt,
            a.tax,
            float(net_non_pension_income),
        )
    return WithdrawalYearOutcome(*(float(v) for v in outcome))
