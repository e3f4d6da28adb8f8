import pytest

from core import PensionTaxMode
from portfolio import Portfolio
from taxes import (
    CgtState,
    TaxYearState,
    execute_taxable_sale,
    income_tax,
    net_from_additional_pension_gross,
    net_from_taxable_gross,
    net_income_after_tax,
    pension_gross_for_net,
    taxable_gross_for_net,
    uk_income_tax,
)


@pytest.mark.parametrize(
    "income, expected",
    [
        (0, 0.0),
        (12_570, 0.0),
        (12_571, 0.2),
        (50_270, 7_540.0),
        (60_000, 11_432.0),
        (100_000, 27_432.0),
        # allowance tapered by half the excess over 100k
        (110_000, 32_432.0),
        (125_140, 40_002.0),
    ],
)
def test_uk_income_tax_bands(sample_inputs, income, expected):
    sample_inputs.pension_tax_mode = PensionTaxMode.UK_BANDS
    assert income_tax(income, sample_inputs, 1.0) == pytest.approx(expected, abs=1e-3)


def test_uk_bands_are_indexed_by_price_level(sample_inputs):
    assert uk_income_tax(120_000, sample_inputs, 2.0) == pytest.approx(
        2 * uk_income_tax(60_000, sample_inputs, 1.0)
    )


def test_flat_rate_mode(sample_inputs):
    sample_inputs.pension_flat_tax_rate = 0.20
    assert income_tax(1_000, sample_inputs, 1.0) == pytest.approx(200.0)
    assert net_income_after_tax(1_000, sample_inputs, 1.0) == pytest.approx(800.0)
    assert income_tax(-50, sample_inputs, 1.0) == 0.0


def test_pension_tax_is_marginal_on_existing_income(sample_inputs):
    sample_inputs.pension_tax_mode = PensionTaxMode.UK_BANDS
    state = TaxYearState(non_pension_taxable_income=12_570.0)
    assert net_from_additional_pension_gross(1_000.0, state, sample_inputs) == pytest.approx(800.0)

    untaxed = TaxYearState(non_pension_taxable_income=0.0)
    assert net_from_additional_pension_gross(1_000.0, untaxed, sample_inputs) == pytest.approx(1_000.0)
    assert net_from_additional_pension_gross(0.0, untaxed, sample_inputs) == 0.0


def test_net_from_taxable_gross_with_no_gain_has_no_tax():
    assert net_from_taxable_gross(100.0, 200.0, 200.0, 3_000.0, 0.20) == pytest.approx(100.0)


def test_net_from_taxable_gross_applies_allowance_then_tax():
    # basis sold 20, gain 30, allowance 10, tax 20% of 20
    assert net_from_taxable_gross(50.0, 100.0, 40.0, 10.0, 0.20) == pytest.approx(46.0)


def test_net_from_taxable_gross_caps_sale_at_value():
    assert net_from_taxable_gross(500.0, 100.0, 100.0, 0.0, 0.20) == pytest.approx(100.0)
    assert net_from_taxable_gross(50.0, 0.0, 0.0, 0.0, 0.20) == 0.0


def test_execute_taxable_sale_updates_value_basis_and_allowance():
    portfolio = Portfolio(taxable=100.0, taxable_basis=40.0)
    cgt = CgtState(allowance_remaining=10.0)

    net = execute_taxable_sale(50.0, portfolio, cgt, 0.20)
    assert net == pytest.approx(46.0)
    assert portfolio.taxable == pytest.approx(50.0)
    assert portfolio.taxable_basis == pytest.approx(20.0)
    assert cgt.allowance_remaining == pytest.approx(0.0)
    assert cgt.tax_paid == pytest.approx(4.0)


def test_taxable_gross_for_net_inverts_the_sale():
    # basis 40 of 100, allowance 10, 20% CGT: a 50 sale nets 46
    gross = taxable_gross_for_net(46.0, 100.0, 40.0, 10.0, 0.20)
    assert gross == pytest.approx(50.0, abs=1e-6)
    assert taxable_gross_for_net(1_000.0, 100.0, 40.0, 10.0, 0.20) == pytest.approx(100.0)


def test_pension_gross_for_net_grosses_up_flat_tax(sample_inputs):
    sample_inputs.pension_flat_tax_rate = 0.20
    gross = pension_gross_for_net(80.0, 1_000.0, TaxYearState(non_pension_taxable_income=0.0), sample_inputs)
    assert gross == pytest.approx(100.0, abs=1e-6)
