"""Tabular and chart views of sweep results."""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional, Sequence

from sweep import CashflowYearResult, ModelResult


def age_results_frame(model: ModelResult):
    """One row per candidate age, indexed by ``retirement_age``."""
    import pandas as pd

    df = pd.DataFrame([asdict(r) for r in model.age_results])
    if df.empty:
        return df
    df["selected"] = False
    df["best"] = False
    if model.selected_index is not None:
        df.loc[model.selected_index, "selected"] = True
    df.loc[model.best_index, "best"] = True
    return df.set_index("retirement_age")


def cashflow_frame(years: Sequence[CashflowYearResult]):
    """Median yearly cash flow, indexed by ``age`` with the ``median_`` prefix dropped."""
    import pandas as pd

    df = pd.DataFrame([asdict(y) for y in years])
    if df.empty:
        return df
    df = df.rename(columns=lambda c: c[len("median_"):] if c.startswith("median_") else c)
    return df.set_index("age")


def plot_success_by_age(model: ModelResult, threshold: Optional[float] = None):
    """Bar chart of success rate per age with the threshold line and selected age marked."""
    import matplotlib.pyplot as plt

    ages = [r.retirement_age for r in model.age_results]
    rates = [r.success_rate * 100 for r in model.age_results]
    colors = ["tab:blue"] * len(ages)
    if model.selected_index is not None:
        colors[model.selected_index] = "tab:green"

    fig, ax = plt.subplots(figsize=(8, 4))
    ax.bar(ages, rates, color=colors)
    if threshold is not None:
        ax.axhline(threshold * 100, color="red", linestyle="--", label="Target")
        ax.legend()
    ax.set_ylim(0, 100)
    ax.set_xlabel("Age")
    ax.set_ylabel("Success rate (%)")
    ax.set_title("Success rate by age")
    return fig


def plot_cashflow(years: Sequence[CashflowYearResult]):
    """Stacked median end-of-year balances per pot with median spending overlaid."""
    import matplotlib.pyplot as plt

    ages = [y.age for y in years]
    pots = {
        "ISA": [y.median_end_isa for y in years],
        "Taxable": [y.median_end_taxable for y in years],
        "Pension": [y.median_end_pension for y in years],
        "Cash": [y.median_end_cash for y in years],
        "Bond ladder": [y.median_end_bond_ladder for y in years],
    }

    fig, ax = plt.subplots(figsize=(8, 4))
    if ages:
        ax.stackplot(ages, *pots.values(), labels=list(pots))
        ax.plot(
            ages,
            [y.median_spending_total for y in years],
            color="black",
            linewidth=1.5,
            label="Spending",
        )
        ax.legend(loc="upper left")
    ax.set_xlabel("Age")
    ax.set_ylabel("Median balance (today's £)")
    ax.set_title("Median yearly cash flow")
    return fig
