import dataclasses
import json

import numpy as np
import pytest

from core import AnalysisMode, PensionTaxMode, WithdrawalOrder
from sweep import (
    AgeResult,
    _build_model_result,
    camel_case_dict,
    evaluate_coast_sweep,
    evaluate_full_sweep,
    evaluate_single_age,
    percentile,
    run_analysis,
    trace_yearly_cashflow,
)


def _age_result(age: int, rate: float) -> AgeResult:
    values = {f.name: 0.0 for f in dataclasses.fields(AgeResult)}
    values.update(retirement_age=age, success_rate=rate)
    return AgeResult(**values)


@pytest.fixture
def small_inputs(sample_inputs):
    sample_inputs.simulations = 20
    sample_inputs.max_retirement_age = 33
    sample_inputs.horizon_age = 40
    sample_inputs.seed = 123
    return sample_inputs


@pytest.fixture
def tax_free_inputs(sample_inputs):
    """No taxes or drag and spending pinned to target, so extra wealth can only help."""
    sample_inputs.simulations = 50
    sample_inputs.max_retirement_age = 40
    sample_inputs.horizon_age = 70
    sample_inputs.target_annual_income = 45_000.0
    sample_inputs.capital_gains_tax_rate = 0.0
    sample_inputs.pension_tax_mode = PensionTaxMode.FLAT_RATE
    sample_inputs.pension_flat_tax_rate = 0.0
    sample_inputs.taxable_return_tax_drag = 0.0
    sample_inputs.min_income_floor = 1.0
    sample_inputs.max_income_ceiling = 1.0
    sample_inputs.good_year_extra_buffer_withdrawal = 0.0
    sample_inputs.post_access_withdrawal_order = WithdrawalOrder.ISA_FIRST
    return sample_inputs


def _success_rates(inputs):
    return [r.success_rate for r in evaluate_full_sweep(inputs).age_results]


def test_percentile_interpolates():
    assert percentile([4.0, 1.0, 3.0, 2.0], 25.0) == pytest.approx(1.75)
    assert percentile([1.0, 2.0, 3.0, 4.0], 50.0) == pytest.approx(2.5)
    assert percentile([1.0, 2.0, 3.0, 4.0], 100.0) == pytest.approx(4.0)


def test_percentile_edge_cases():
    assert percentile([], 50.0) == 0.0
    assert percentile([7.0], 10.0) == 7.0


def test_percentile_works_per_column():
    samples = np.array([[1.0, 10.0], [3.0, 30.0], [2.0, 20.0]])
    assert percentile(samples, 50.0).tolist() == [2.0, 20.0]


def test_percentile_is_ordered():
    values = np.random.default_rng(0).normal(size=101)
    assert percentile(values, 10.0) <= percentile(values, 50.0) <= percentile(values, 90.0)


def test_best_index_keeps_last_of_ties():
    results = [_age_result(40, 0.5), _age_result(41, 0.9), _age_result(42, 0.9), _age_result(43, 0.7)]
    model = _build_model_result(results, 0.8)
    assert model.best_index == 2
    assert model.best_age == 42
    assert model.selected_index == 1
    assert model.selected_age == 41


def test_no_age_meets_threshold():
    model = _build_model_result([_age_result(40, 0.1), _age_result(41, 0.2)], 0.95)
    assert model.selected_index is None
    assert model.selected_age is None
    assert model.best_age == 41


def test_full_sweep_is_reproducible(small_inputs):
    first = evaluate_full_sweep(small_inputs)
    second = evaluate_full_sweep(small_inputs)
    assert [r.retirement_age for r in first.age_results] == list(range(30, 34))
    assert first.age_results == second.age_results
    assert trace_yearly_cashflow(small_inputs, 32, 32, 32) == trace_yearly_cashflow(small_inputs, 32, 32, 32)


def test_age_result_statistics_are_consistent(small_inputs):
    result = evaluate_single_age(small_inputs, 33)
    assert 0.0 <= result.success_rate <= 1.0
    assert result.p10_retirement_pot <= result.median_retirement_pot
    assert result.p10_terminal_pot <= result.median_terminal_pot
    assert result.median_retirement_isa > 0.0
    assert result.median_retirement_pension > 0.0


def test_more_contributions_grow_the_retirement_pot(small_inputs):
    baseline = evaluate_single_age(small_inputs, 33)
    small_inputs.isa_annual_contribution_limit = 40_000.0
    small_inputs.isa_annual_contribution = 40_000.0
    richer = evaluate_single_age(small_inputs, 33)
    assert richer.median_retirement_pot > baseline.median_retirement_pot


def test_higher_returns_grow_the_retirement_pot(small_inputs):
    baseline = evaluate_single_age(small_inputs, 33)
    small_inputs.isa_return_mean += 0.02
    small_inputs.taxable_return_mean += 0.02
    small_inputs.pension_return_mean += 0.02
    better = evaluate_single_age(small_inputs, 33)
    assert better.median_retirement_pot > baseline.median_retirement_pot


@pytest.mark.parametrize("extra", [1_000.0, 10_000.0])
def test_success_rate_never_falls_when_every_contribution_rises(tax_free_inputs, extra):
    baseline = _success_rates(tax_free_inputs)
    tax_free_inputs.isa_annual_contribution += extra
    tax_free_inputs.taxable_annual_contribution += extra
    tax_free_inputs.pension_annual_contribution += extra
    richer = _success_rates(tax_free_inputs)
    assert len(richer) == len(baseline) == 11
    for age, (before, after) in enumerate(zip(baseline, richer), start=30):
        assert after >= before, age


@pytest.mark.parametrize("extra", [0.005, 0.02])
def test_success_rate_never_falls_when_every_return_rises(tax_free_inputs, extra):
    baseline = _success_rates(tax_free_inputs)
    tax_free_inputs.isa_return_mean += extra
    tax_free_inputs.taxable_return_mean += extra
    tax_free_inputs.pension_return_mean += extra
    better = _success_rates(tax_free_inputs)
    assert len(better) == len(baseline) == 11
    for age, (before, after) in enumerate(zip(baseline, better), start=30):
        assert after >= before, age


def test_higher_target_income_never_helps(small_inputs):
    small_inputs.isa_return_vol = 0.0
    small_inputs.taxable_return_vol = 0.0
    small_inputs.pension_return_vol = 0.0
    small_inputs.inflation_vol = 0.0
    rates = []
    for target in (10_000.0, 50_000.0, 200_000.0):
        small_inputs.target_annual_income = target
        rates.append(evaluate_single_age(small_inputs, 33).success_rate)
    assert rates[0] >= rates[1] >= rates[2]
    assert rates[0] == 1.0
    assert rates[2] == 0.0


def test_zero_simulations_report_zero_success(small_inputs):
    small_inputs.simulations = 0
    result = evaluate_single_age(small_inputs, 31)
    assert result.success_rate == 0.0
    assert result.median_retirement_pot == 0.0


def test_coast_sweep_varies_contribution_stop(small_inputs):
    model = evaluate_coast_sweep(small_inputs, 35)
    assert [r.retirement_age for r in model.age_results] == list(range(30, 36))


def test_run_analysis_report(small_inputs):
    report = run_analysis(small_inputs)
    assert report.mode is AnalysisMode.RETIREMENT_SWEEP
    assert report.coast_retirement_age is None
    assert report.cashflow_retirement_age == report.cashflow_candidate_age
    assert len(report.cashflow_years) == small_inputs.horizon_age - small_inputs.current_age

    model = report.model_result()
    assert model.best_age == report.best_retirement_age
    assert model.selected_age == report.selected_retirement_age

    data = report.to_dict()
    json.dumps(data)
    assert data["mode"] == "retirement"
    assert data["withdrawalPolicy"] == "guardrails"
    assert data["ageResults"][0]["retirementAge"] == 30
    assert "p10MinIncomeRatio" in data["ageResults"][0]
    assert "medianEndBondLadder" in data["cashflowYears"][0]


def test_run_analysis_coast_mode(small_inputs):
    report = run_analysis(small_inputs, AnalysisMode.COAST_FIRE, coast_retirement_age=35)
    assert report.to_dict()["mode"] == "coast"
    assert report.coast_retirement_age == 35
    assert report.cashflow_retirement_age == 35
    assert report.cashflow_contribution_stop_age == report.cashflow_candidate_age
    assert [r.retirement_age for r in report.age_results] == list(range(30, 36))


def test_run_analysis_coast_mode_resolves_retirement_age(small_inputs):
    report = run_analysis(small_inputs, AnalysisMode.COAST_FIRE)
    baseline = evaluate_full_sweep(small_inputs)
    expected = baseline.selected_age if baseline.selected_age is not None else baseline.best_age
    assert report.coast_retirement_age == expected


def test_run_analysis_rejects_coast_age_past_horizon(small_inputs):
    with pytest.raises(ValueError):
        run_analysis(small_inputs, AnalysisMode.COAST_FIRE, coast_retirement_age=small_inputs.horizon_age)


def test_camel_case_dict():
    assert camel_case_dict(_age_result(40, 0.5))["medianRetirementBondLadder"] == 0.0
