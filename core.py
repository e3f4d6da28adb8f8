"""Inputs record, parsing helpers and configuration persistence for the FIRE estimator."""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, fields
from enum import Enum
from typing import Optional

import numpy as np


CONFIG_FILE = "config.json"


class _Coded(str, Enum):
    @property
    def code(self) -> int:
        """Declaration position; the integer the jitted kernels compare against."""
        return list(type(self)).index(self)


class WithdrawalStrategy(_Coded):
    GUARDRAILS = "guardrails"
    GUYTON_KLINGER = "guyton_klinger"
    VPW = "vpw"
    FLOOR_UPSIDE = "floor_upside"
    BUCKET = "bucket"


class WithdrawalOrder(_Coded):
    PRO_RATA = "pro_rata"
    ISA_FIRST = "isa_first"
    TAXABLE_FIRST = "taxable_first"
    PENSION_FIRST = "pension_first"
    BOND_LADDER_FIRST = "bond_ladder_first"


class PensionTaxMode(_Coded):
    UK_BANDS = "uk_bands"
    FLAT_RATE = "flat_rate"


class AnalysisMode(str, Enum):
    RETIREMENT_SWEEP = "retirement_sweep"
    COAST_FIRE = "coast_fire"


# UK income tax defaults (today's money)
UK_PERSONAL_ALLOWANCE = 12_570.0
UK_BASIC_RATE_LIMIT = 50_270.0
UK_HIGHER_RATE_LIMIT = 125_140.0
UK_ALLOWANCE_TAPER_START = 100_000.0
UK_ALLOWANCE_TAPER_END = 125_140.0

ISA_ANNUAL_ALLOWANCE = 20_000.0
CGT_ANNUAL_ALLOWANCE = 3_000.0


def parse_percent(val: str, lower: float = 0.0, upper: float = 1.0) -> float:
    """Convert a percentage string like '10%' (or '10') to a float 0.10."""

    try:
        pct = float(str(val).strip().rstrip("%")) / 100
    except ValueError as exc:  # pragma: no cover - error path simple
        raise ValueError(f"Invalid percentage: {val!r}") from exc
    if not lower <= pct <= upper:
        raise ValueError(
            f"Percentage must be between {lower * 100:g}% and {upper * 100:g}%"
        )
    return pct


def parse_dollars(val: str) -> float:
    """Convert a currency string like '£1,234' or '$1,234' to a float 1234.0."""

    cleaned = str(val).replace("£", "").replace("$", "").replace(",", "").strip()
    try:
        amt = float(cleaned)
    except ValueError as exc:  # pragma: no cover - error path simple
        raise ValueError(f"Invalid amount: {val!r}") from exc
    if amt < 0:
        raise ValueError("Amount cannot be negative")
    return amt


def parse_correlation(val: str) -> float:
    """Convert a correlation string like '-0.40' or '-40%' to a float."""

    val = str(val).strip()
    try:
        if val.endswith("%"):
            corr = float(val.rstrip("%")) / 100
        else:
            corr = float(val)
    except ValueError as exc:
        raise ValueError(f"Invalid correlation: {val!r}") from exc
    if not -1 <= corr <= 1:
        raise ValueError("Correlation must be between -1 and +1")
    return corr


@dataclass
class Inputs:
    """Everything one evaluation needs. Rates are fractions, money is today's money."""

    current_age: int
    pension_access_age: int
    isa_start: float
    pension_start: float
    isa_annual_contribution: float
    pension_annual_contribution: float
    isa_return_mean: float
    pension_return_mean: float
    target_annual_income: float
    taxable_start: float = 0.0
    taxable_cost_basis_start: Optional[float] = None  # defaults to taxable_start
    cash_start: float = 0.0
    bond_ladder_start: float = 0.0
    isa_annual_contribution_limit: float = ISA_ANNUAL_ALLOWANCE
    taxable_annual_contribution: float = 0.0
    contribution_growth_rate: float = 0.0
    isa_return_vol: float = 0.12
    taxable_return_mean: Optional[float] = None  # defaults to isa_return_mean
    taxable_return_vol: Optional[float] = None  # defaults to isa_return_vol
    pension_return_vol: float = 0.12
    return_correlation: float = 0.8
    capital_gains_tax_rate: float = 0.20
    capital_gains_allowance: float = CGT_ANNUAL_ALLOWANCE
    taxable_return_tax_drag: float = 0.01
    pension_tax_mode: PensionTaxMode = PensionTaxMode.UK_BANDS
    pension_flat_tax_rate: float = 0.20
    uk_personal_allowance: float = UK_PERSONAL_ALLOWANCE
    uk_basic_rate_limit: float = UK_BASIC_RATE_LIMIT
    uk_higher_rate_limit: float = UK_HIGHER_RATE_LIMIT
    uk_basic_rate: float = 0.20
    uk_higher_rate: float = 0.40
    uk_additional_rate: float = 0.45
    uk_allowance_taper_start: float = UK_ALLOWANCE_TAPER_START
    uk_allowance_taper_end: float = UK_ALLOWANCE_TAPER_END
    state_pension_start_age: int = 67
    state_pension_annual_income: float = 0.0
    inflation_mean: float = 0.025
    inflation_vol: float = 0.01
    mortgage_annual_payment: float = 0.0
    mortgage_end_age: Optional[int] = None
    max_retirement_age: int = 75
    horizon_age: int = 95
    simulations: int = 10_000
    success_threshold: float = 0.90
    seed: int = 42
    # Spending policy
    bad_year_threshold: float = -0.05
    good_year_threshold: float = 0.10
    bad_year_cut: float = 0.10
    good_year_raise: float = 0.05
    min_income_floor: float = 0.80
    max_income_ceiling: float = 1.30
    withdrawal_strategy: WithdrawalStrategy = WithdrawalStrategy.GUARDRAILS
    gk_lower_guardrail: float = 0.80
    gk_upper_guardrail: float = 1.20
    vpw_expected_real_return: float = 0.035
    floor_upside_capture: float = 0.50
    bucket_target_years: float = 2.0
    good_year_extra_buffer_withdrawal: float = 0.10
    # Cash buffer and bond ladder
    cash_growth_rate: float = 0.01
    bond_ladder_yield: float = 0.0
    bond_ladder_years: int = 0
    post_access_withdrawal_order: WithdrawalOrder = WithdrawalOrder.PRO_RATA

    def __post_init__(self) -> None:
        self.withdrawal_strategy = WithdrawalStrategy(self.withdrawal_strategy)
        self.post_access_withdrawal_order = WithdrawalOrder(self.post_access_withdrawal_order)
        self.pension_tax_mode = PensionTaxMode(self.pension_tax_mode)
        if self.taxable_return_mean is None:
            self.taxable_return_mean = self.isa_return_mean
        if self.taxable_return_vol is None:
            self.taxable_return_vol = self.isa_return_vol
        if self.taxable_cost_basis_start is None:
            self.taxable_cost_basis_start = self.taxable_start


# Layout of the float64 parameter vector read by the jitted kernels. Each
# P_<FIELD> constant is the slot of the Inputs field of the same name.
PARAM_FIELDS = (
    "current_age",
    "pension_access_age",
    "horizon_age",
    "isa_start",
    "taxable_start",
    "taxable_cost_basis_start",
    "pension_start",
    "cash_start",
    "bond_ladder_start",
    "isa_annual_contribution",
    "taxable_annual_contribution",
    "pension_annual_contribution",
    "isa_annual_contribution_limit",
    "contribution_growth_rate",
    "isa_return_mean",
    "isa_return_vol",
    "taxable_return_mean",
    "taxable_return_vol",
    "pension_return_mean",
    "pension_return_vol",
    "return_correlation",
    "inflation_mean",
    "inflation_vol",
    "capital_gains_tax_rate",
    "capital_gains_allowance",
    "taxable_return_tax_drag",
    "pension_tax_mode",
    "pension_flat_tax_rate",
    "uk_personal_allowance",
    "uk_basic_rate_limit",
    "uk_higher_rate_limit",
    "uk_basic_rate",
    "uk_higher_rate",
    "uk_additional_rate",
    "uk_allowance_taper_start",
    "uk_allowance_taper_end",
    "state_pension_start_age",
    "state_pension_annual_income",
    "mortgage_annual_payment",
    "mortgage_end_age",
    "target_annual_income",
    "bad_year_threshold",
    "good_year_threshold",
    "bad_year_cut",
    "good_year_raise",
    "min_income_floor",
    "max_income_ceiling",
    "withdrawal_strategy",
    "gk_lower_guardrail",
    "gk_upper_guardrail",
    "vpw_expected_real_return",
    "floor_upside_capture",
    "bucket_target_years",
    "good_year_extra_buffer_withdrawal",
    "cash_growth_rate",
    "bond_ladder_yield",
    "bond_ladder_years",
    "post_access_withdrawal_order",
)

(
    P_CURRENT_AGE,
    P_PENSION_ACCESS_AGE,
    P_HORIZON_AGE,
    P_ISA_START,
    P_TAXABLE_START,
    P_TAXABLE_COST_BASIS_START,
    P_PENSION_START,
    P_CASH_START,
    P_BOND_LADDER_START,
    P_ISA_ANNUAL_CONTRIBUTION,
    P_TAXABLE_ANNUAL_CONTRIBUTION,
    P_PENSION_ANNUAL_CONTRIBUTION,
    P_ISA_ANNUAL_CONTRIBUTION_LIMIT,
    P_CONTRIBUTION_GROWTH_RATE,
    P_ISA_RETURN_MEAN,
    P_ISA_RETURN_VOL,
    P_TAXABLE_RETURN_MEAN,
    P_TAXABLE_RETURN_VOL,
    P_PENSION_RETURN_MEAN,
    P_PENSION_RETURN_VOL,
    P_RETURN_CORRELATION,
    P_INFLATION_MEAN,
    P_INFLATION_VOL,
    P_CAPITAL_GAINS_TAX_RATE,
    P_CAPITAL_GAINS_ALLOWANCE,
    P_TAXABLE_RETURN_TAX_DRAG,
    P_PENSION_TAX_MODE,
    P_PENSION_FLAT_TAX_RATE,
    P_UK_PERSONAL_ALLOWANCE,
    P_UK_BASIC_RATE_LIMIT,
    P_UK_HIGHER_RATE_LIMIT,
    P_UK_BASIC_RATE,
    P_UK_HIGHER_RATE,
    P_UK_ADDITIONAL_RATE,
    P_UK_ALLOWANCE_TAPER_START,
    P_UK_ALLOWANCE_TAPER_END,
    P_STATE_PENSION_START_AGE,
    P_STATE_PENSION_ANNUAL_INCOME,
    P_MORTGAGE_ANNUAL_PAYMENT,
    P_MORTGAGE_END_AGE,
    P_TARGET_ANNUAL_INCOME,
    P_BAD_YEAR_THRESHOLD,
    P_GOOD_YEAR_THRESHOLD,
    P_BAD_YEAR_CUT,
    P_GOOD_YEAR_RAISE,
    P_MIN_INCOME_FLOOR,
    P_MAX_INCOME_CEILING,
    P_WITHDRAWAL_STRATEGY,
    P_GK_LOWER_GUARDRAIL,
    P_GK_UPPER_GUARDRAIL,
    P_VPW_EXPECTED_REAL_RETURN,
    P_FLOOR_UPSIDE_CAPTURE,
    P_BUCKET_TARGET_YEARS,
    P_GOOD_YEAR_EXTRA_BUFFER_WITHDRAWAL,
    P_CASH_GROWTH_RATE,
    P_BOND_LADDER_YIELD,
    P_BOND_LADDER_YEARS,
    P_POST_ACCESS_WITHDRAWAL_ORDER,
) = range(len(PARAM_FIELDS))


def inputs_to_params(inputs: Inputs) -> np.ndarray:
    """Pack ``inputs`` into the vector the jitted kernels read.

    Enums become their ``code``; a missing mortgage end age becomes NaN.
    Build it once per evaluation and hand it down.
    """
    params = np.empty(len(PARAM_FIELDS), dtype=np.float64)
    for idx, name in enumerate(PARAM_FIELDS):
        value = getattr(inputs, name)
        if isinstance(value, Enum):
            value = value.code
        elif value is None:
            value = math.nan
        params[idx] = value
    return params


def _check_rate(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0% and 100%")


def validate_inputs(inputs: Inputs) -> Inputs:
    """Reject parameter sets the simulator is not meant to handle.

    The simulation core assumes every check here has passed. Returns the
    inputs unchanged so the call can be chained.
    """

    if inputs.pension_access_age < inputs.current_age:
        raise ValueError("pension_access_age must be >= current_age")
    if inputs.max_retirement_age < inputs.current_age:
        raise ValueError("max_retirement_age must be >= current_age")
    if inputs.horizon_age <= inputs.max_retirement_age:
        raise ValueError("horizon_age must be > max_retirement_age")
    if inputs.simulations <= 0:
        raise ValueError("simulations must be > 0")
    _check_rate("success_threshold", inputs.success_threshold)
    if not -1.0 <= inputs.return_correlation <= 1.0:
        raise ValueError("return_correlation must be between -1 and 1")
    if inputs.target_annual_income <= 0.0:
        raise ValueError("target_annual_income must be > 0")
    if inputs.mortgage_annual_payment < 0.0:
        raise ValueError("mortgage_annual_payment must be >= 0")
    if inputs.mortgage_annual_payment > 0.0:
        if inputs.mortgage_end_age is None:
            raise ValueError(
                "mortgage_end_age is required when mortgage_annual_payment > 0"
            )
        if inputs.mortgage_end_age <= inputs.current_age:
            raise ValueError("mortgage_end_age must be > current_age")
    if inputs.cash_start < 0.0:
        raise ValueError("cash_start must be >= 0")
    _check_rate("capital_gains_tax_rate", inputs.capital_gains_tax_rate)
    if inputs.capital_gains_allowance < 0.0:
        raise ValueError("capital_gains_allowance must be >= 0")
    _check_rate("taxable_return_tax_drag", inputs.taxable_return_tax_drag)
    if inputs.taxable_cost_basis_start < 0.0:
        raise ValueError("taxable_cost_basis_start must be >= 0")
    if inputs.taxable_cost_basis_start > inputs.taxable_start:
        raise ValueError("taxable_cost_basis_start must be <= taxable_start")
    if inputs.min_income_floor <= 0.0 or inputs.max_income_ceiling <= 0.0:
        raise ValueError("income floor and ceiling must be > 0")
    if inputs.min_income_floor > inputs.max_income_ceiling:
        raise ValueError("min_income_floor must be <= max_income_ceiling")
    if inputs.gk_lower_guardrail <= 0.0 or inputs.gk_upper_guardrail <= 0.0:
        raise ValueError("Guyton-Klinger guardrails must be > 0")
    if inputs.gk_upper_guardrail < inputs.gk_lower_guardrail:
        raise ValueError("gk_upper_guardrail must be >= gk_lower_guardrail")
    if inputs.vpw_expected_real_return <= -1.0:
        raise ValueError("vpw_expected_real_return must be > -100%")
    if not 0.0 <= inputs.floor_upside_capture <= 3.0:
        raise ValueError("floor_upside_capture must be between 0% and 300%")
    if inputs.bucket_target_years < 0.0:
        raise ValueError("bucket_target_years must be >= 0")
    if inputs.isa_annual_contribution_limit < 0.0:
        raise ValueError("isa_annual_contribution_limit must be >= 0")
    if inputs.contribution_growth_rate <= -1.0:
        raise ValueError("contribution_growth_rate must be > -100%")
    _check_rate("pension_flat_tax_rate", inputs.pension_flat_tax_rate)
    _check_rate("uk_basic_rate", inputs.uk_basic_rate)
    _check_rate("uk_higher_rate", inputs.uk_higher_rate)
    _check_rate("uk_additional_rate", inputs.uk_additional_rate)
    if min(
        inputs.uk_personal_allowance,
        inputs.uk_basic_rate_limit,
        inputs.uk_higher_rate_limit,
        inputs.uk_allowance_taper_start,
        inputs.uk_allowance_taper_end,
    ) < 0.0:
        raise ValueError("UK tax thresholds must be >= 0")
    if inputs.uk_basic_rate_limit < inputs.uk_personal_allowance:
        raise ValueError("uk_basic_rate_limit must be >= uk_personal_allowance")
    if inputs.uk_higher_rate_limit < inputs.uk_basic_rate_limit:
        raise ValueError("uk_higher_rate_limit must be >= uk_basic_rate_limit")
    if inputs.uk_allowance_taper_end <= inputs.uk_allowance_taper_start:
        raise ValueError("uk_allowance_taper_end must be > uk_allowance_taper_start")
    if inputs.state_pension_annual_income < 0.0:
        raise ValueError("state_pension_annual_income must be >= 0")
    return inputs


def validate_coast_retirement_age(inputs: Inputs, age: int) -> int:
    if age < inputs.current_age:
        raise ValueError("coast_retirement_age must be >= current_age")
    if age >= inputs.horizon_age:
        raise ValueError("coast_retirement_age must be < horizon_age")
    return age


def inputs_to_dict(inputs: Inputs) -> dict:
    """Plain JSON-able view of ``inputs`` (enums as their string values)."""

    data = {}
    for f in fields(inputs):
        value = getattr(inputs, f.name)
        data[f.name] = value.value if isinstance(value, Enum) else value
    return data


def inputs_from_dict(data: dict) -> Inputs:
    """Build ``Inputs`` from config or command-line values.

    A cost basis of zero alongside a funded taxable account is read as
    "not given" and defaults to ``taxable_start``, like a missing one.
    """
    known = {f.name for f in fields(Inputs)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown input field(s): {', '.join(unknown)}")
    for key, value in data.items():
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"{key} must be finite")
    if data.get("taxable_cost_basis_start") == 0.0 and (data.get("taxable_start") or 0.0) > 0.0:
        data = dict(data, taxable_cost_basis_start=None)
    try:
        return Inputs(**data)
    except TypeError as exc:
        raise ValueError(str(exc)) from exc


def load_config(path: str = CONFIG_FILE) -> dict:
    """Load saved configuration if available."""

    if os.path.exists(path):
        with open(path) as f:
            return json.load(f)
    return {}


def save_config(inputs: Inputs, path: str = CONFIG_FILE) -> None:
    """Persist the provided inputs to disk."""

    with open(path, "w") as f:
        json.dump(inputs_to_dict(inputs), f, indent=2)
