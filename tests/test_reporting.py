import dataclasses

import matplotlib

matplotlib.use("Agg")

import pytest

from reporting import age_results_frame, cashflow_frame, plot_cashflow, plot_success_by_age
from sweep import AgeResult, CashflowYearResult, ModelResult


def _model() -> ModelResult:
    results = []
    for age, rate in [(40, 0.5), (41, 0.92), (42, 0.95)]:
        values = {f.name: 0.0 for f in dataclasses.fields(AgeResult)}
        values.update(retirement_age=age, success_rate=rate, median_retirement_pot=age * 1_000.0)
        results.append(AgeResult(**values))
    return ModelResult(results, selected_index=1, best_index=2)


def _years():
    years = []
    for age in range(60, 63):
        values = {f.name: 0.0 for f in dataclasses.fields(CashflowYearResult)}
        values.update(age=age, median_end_isa=100.0 * age, median_spending_total=10.0)
        years.append(CashflowYearResult(**values))
    return years


def test_age_results_frame_marks_selected_and_best():
    df = age_results_frame(_model())
    assert list(df.index) == [40, 41, 42]
    assert df.loc[41, "selected"]
    assert not df.loc[42, "selected"]
    assert df.loc[42, "best"]
    assert df.loc[42, "median_retirement_pot"] == pytest.approx(42_000.0)


def test_age_results_frame_without_selection():
    model = _model()
    model.selected_index = None
    df = age_results_frame(model)
    assert not df["selected"].any()


def test_cashflow_frame_drops_median_prefix():
    df = cashflow_frame(_years())
    assert list(df.index) == [60, 61, 62]
    assert "end_isa" in df.columns
    assert "median_end_isa" not in df.columns
    assert df.loc[61, "end_isa"] == pytest.approx(6_100.0)


def test_empty_frames():
    assert age_results_frame(ModelResult([], None, 0)).empty
    assert cashflow_frame([]).empty


def test_plots_return_figures():
    import matplotlib.pyplot as plt

    fig = plot_success_by_age(_model(), threshold=0.9)
    ax = fig.axes[0]
    assert len(ax.patches) == 3
    assert ax.get_legend() is not None
    plt.close(fig)

    fig = plot_cashflow(_years())
    assert fig.axes[0].get_title() == "Median yearly cash flow"
    plt.close(fig)
