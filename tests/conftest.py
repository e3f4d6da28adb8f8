import pytest

from core import Inputs, PensionTaxMode, WithdrawalOrder, WithdrawalStrategy


def _sample_inputs() -> Inputs:
    return Inputs(
        current_age=30,
        pension_access_age=57,
        isa_start=100_000.0,
        taxable_start=15_000.0,
        taxable_cost_basis_start=12_000.0,
        pension_start=200_000.0,
        cash_start=0.0,
        bond_ladder_start=0.0,
        isa_annual_contribution=30_000.0,
        isa_annual_contribution_limit=20_000.0,
        taxable_annual_contribution=5_000.0,
        pension_annual_contribution=0.0,
        contribution_growth_rate=0.0,
        isa_return_mean=0.08,
        isa_return_vol=0.12,
        taxable_return_mean=0.07,
        taxable_return_vol=0.10,
        pension_return_mean=0.08,
        pension_return_vol=0.12,
        return_correlation=0.8,
        capital_gains_tax_rate=0.20,
        capital_gains_allowance=3_000.0,
        taxable_return_tax_drag=0.01,
        pension_tax_mode=PensionTaxMode.FLAT_RATE,
        pension_flat_tax_rate=0.20,
        state_pension_start_age=67,
        state_pension_annual_income=0.0,
        inflation_mean=0.025,
        inflation_vol=0.01,
        target_annual_income=50_000.0,
        max_retirement_age=70,
        horizon_age=90,
        simulations=500,
        success_threshold=0.90,
        seed=42,
        bad_year_threshold=-0.05,
        good_year_threshold=0.10,
        bad_year_cut=0.10,
        good_year_raise=0.05,
        min_income_floor=0.80,
        max_income_ceiling=2.0,
        withdrawal_strategy=WithdrawalStrategy.GUARDRAILS,
        vpw_expected_real_return=0.035,
        floor_upside_capture=0.5,
        bucket_target_years=2.0,
        good_year_extra_buffer_withdrawal=0.10,
        cash_growth_rate=0.01,
        bond_ladder_yield=0.03,
        bond_ladder_years=10,
        post_access_withdrawal_order=WithdrawalOrder.PRO_RATA,
    )


@pytest.fixture
def sample_inputs() -> Inputs:
    """A realistic mid-career saver; tests tweak fields in place."""
    return _sample_inputs()


@pytest.fixture
def oracle_inputs() -> Inputs:
    """One tax-free, zero-volatility, zero-inflation year with spending pinned to target."""
    inputs = _sample_inputs()
    inputs.current_age = 30
    inputs.max_retirement_age = 30
    inputs.horizon_age = 31
    inputs.pension_access_age = 30
    inputs.simulations = 1
    inputs.seed = 7

    inputs.isa_annual_contribution = 0.0
    inputs.taxable_annual_contribution = 0.0
    inputs.pension_annual_contribution = 0.0

    inputs.isa_return_mean = 0.0
    inputs.taxable_return_mean = 0.0
    inputs.pension_return_mean = 0.0
    inputs.isa_return_vol = 0.0
    inputs.taxable_return_vol = 0.0
    inputs.pension_return_vol = 0.0
    inputs.inflation_mean = 0.0
    inputs.inflation_vol = 0.0
    inputs.cash_growth_rate = 0.0
    inputs.taxable_return_tax_drag = 0.0

    inputs.target_annual_income = 0.0
    inputs.capital_gains_tax_rate = 0.0
    inputs.capital_gains_allowance = 0.0
    inputs.pension_flat_tax_rate = 0.0
    inputs.state_pension_start_age = 200

    inputs.bad_year_threshold = -1.0
    inputs.good_year_threshold = 1.0
    inputs.bad_year_cut = 0.0
    inputs.good_year_raise = 0.0
    inputs.min_income_floor = 1.0
    inputs.max_income_ceiling = 1.0
    inputs.good_year_extra_buffer_withdrawal = 0.0
    inputs.post_access_withdrawal_order = WithdrawalOrder.ISA_FIRST
    inputs.bond_ladder_yield = 0.0
    inputs.bond_ladder_years = 0
    return inputs
