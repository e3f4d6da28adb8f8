import json

import pytest

from core import (
    Inputs,
    PensionTaxMode,
    WithdrawalOrder,
    WithdrawalStrategy,
    inputs_from_dict,
    inputs_to_dict,
    load_config,
    save_config,
    validate_coast_retirement_age,
    validate_inputs,
)


def _minimal_inputs(**overrides) -> Inputs:
    data = dict(
        current_age=35,
        pension_access_age=57,
        isa_start=50_000.0,
        pension_start=80_000.0,
        isa_annual_contribution=10_000.0,
        pension_annual_contribution=5_000.0,
        isa_return_mean=0.05,
        pension_return_mean=0.05,
        target_annual_income=30_000.0,
    )
    data.update(overrides)
    return Inputs(**data)


def test_defaults_fill_taxable_fields_from_isa():
    inputs = _minimal_inputs(taxable_start=10_000.0)
    assert inputs.taxable_return_mean == inputs.isa_return_mean
    assert inputs.taxable_return_vol == inputs.isa_return_vol
    assert inputs.taxable_cost_basis_start == 10_000.0
    assert inputs.withdrawal_strategy is WithdrawalStrategy.GUARDRAILS
    assert inputs.post_access_withdrawal_order is WithdrawalOrder.PRO_RATA
    assert inputs.pension_tax_mode is PensionTaxMode.UK_BANDS


def test_enum_fields_accept_strings():
    inputs = _minimal_inputs(withdrawal_strategy="vpw", post_access_withdrawal_order="isa_first")
    assert inputs.withdrawal_strategy is WithdrawalStrategy.VPW
    assert inputs.post_access_withdrawal_order is WithdrawalOrder.ISA_FIRST


def test_validate_accepts_defaults():
    inputs = _minimal_inputs()
    assert validate_inputs(inputs) is inputs


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"pension_access_age": 30}, "pension_access_age"),
        ({"max_retirement_age": 30}, "max_retirement_age"),
        ({"horizon_age": 75}, "horizon_age"),
        ({"simulations": 0}, "simulations"),
        ({"success_threshold": 1.5}, "success_threshold"),
        ({"return_correlation": -1.2}, "return_correlation"),
        ({"target_annual_income": 0.0}, "target_annual_income"),
        ({"mortgage_annual_payment": 1_000.0}, "mortgage_end_age is required"),
        ({"mortgage_annual_payment": 1_000.0, "mortgage_end_age": 35}, "mortgage_end_age"),
        ({"taxable_start": 100.0, "taxable_cost_basis_start": 200.0}, "taxable_cost_basis_start"),
        ({"min_income_floor": 1.5, "max_income_ceiling": 1.2}, "min_income_floor"),
        ({"gk_lower_guardrail": 1.3, "gk_upper_guardrail": 1.2}, "gk_upper_guardrail"),
        ({"floor_upside_capture": 3.5}, "floor_upside_capture"),
        ({"uk_allowance_taper_end": 90_000.0}, "uk_allowance_taper_end"),
        ({"state_pension_annual_income": -1.0}, "state_pension_annual_income"),
    ],
)
def test_validate_rejects_bad_inputs(overrides, message):
    with pytest.raises(ValueError, match=message):
        validate_inputs(_minimal_inputs(**overrides))


def test_coast_retirement_age_must_fall_inside_horizon():
    inputs = _minimal_inputs()
    assert validate_coast_retirement_age(inputs, 50) == 50
    with pytest.raises(ValueError, match=">= current_age"):
        validate_coast_retirement_age(inputs, 30)
    with pytest.raises(ValueError, match="< horizon_age"):
        validate_coast_retirement_age(inputs, inputs.horizon_age)


def test_dict_round_trip():
    inputs = _minimal_inputs(withdrawal_strategy=WithdrawalStrategy.BUCKET, mortgage_end_age=50)
    data = inputs_to_dict(inputs)
    assert data["withdrawal_strategy"] == "bucket"
    json.dumps(data)
    assert inputs_from_dict(data) == inputs


def test_from_dict_treats_zero_basis_as_missing():
    data = inputs_to_dict(_minimal_inputs(taxable_start=10_000.0))
    data["taxable_cost_basis_start"] = 0.0
    assert inputs_from_dict(data).taxable_cost_basis_start == 10_000.0

    data["taxable_start"] = 0.0
    assert inputs_from_dict(data).taxable_cost_basis_start == 0.0

    # direct construction keeps an explicit zero basis
    assert _minimal_inputs(taxable_start=10_000.0, taxable_cost_basis_start=0.0).taxable_cost_basis_start == 0.0


def test_params_vector_follows_field_order():
    import core

    inputs = _minimal_inputs(withdrawal_strategy=WithdrawalStrategy.BUCKET)
    params = core.inputs_to_params(inputs)
    assert params.shape == (len(core.PARAM_FIELDS),)
    for idx, name in enumerate(core.PARAM_FIELDS):
        assert getattr(core, "P_" + name.upper()) == idx
    assert params[core.P_WITHDRAWAL_STRATEGY] == 4
    assert params[core.P_POST_ACCESS_WITHDRAWAL_ORDER] == 0
    assert params[core.P_ISA_START] == 50_000.0
    assert params[core.P_UK_PERSONAL_ALLOWANCE] == inputs.uk_personal_allowance
    assert params[core.P_UK_HIGHER_RATE] == inputs.uk_higher_rate
    # no mortgage end age
    assert params[core.P_MORTGAGE_END_AGE] != params[core.P_MORTGAGE_END_AGE]


def test_from_dict_rejects_unknown_and_missing_fields():
    with pytest.raises(ValueError, match="Unknown input field"):
        inputs_from_dict({**inputs_to_dict(_minimal_inputs()), "colour": "blue"})
    with pytest.raises(ValueError):
        inputs_from_dict({"current_age": 30})
    with pytest.raises(ValueError, match="finite"):
        inputs_from_dict({**inputs_to_dict(_minimal_inputs()), "isa_start": float("nan")})


def test_save_and_load_config(tmp_path):
    path = tmp_path / "config.json"
    inputs = _minimal_inputs(seed=7)
    save_config(inputs, str(path))
    assert inputs_from_dict(load_config(str(path))) == inputs


def test_load_config_missing_file_returns_empty(tmp_path):
    assert load_config(str(tmp_path / "missing.json")) == {}
