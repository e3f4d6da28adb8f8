"""Command-line front end: ``fire-estimator sweep`` and ``fire-estimator solve``."""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import sys
from typing import List, Optional

from core import (
    AnalysisMode,
    Inputs,
    inputs_from_dict,
    load_config,
    parse_correlation,
    parse_dollars,
    parse_percent,
    save_config,
    validate_inputs,
)
from solver import GoalSolveConfig, GoalType, solve_goal
from sweep import run_analysis


logger = logging.getLogger(__name__)


def percent_arg(val: str) -> float:
    """'5' or '5%' -> 0.05, any sign or size."""
    return parse_percent(val, lower=-math.inf, upper=math.inf)


def choice_arg(val: str) -> str:
    return val.strip().lower().replace("-", "_")


# (flag, Inputs field, converter, help)
_INPUT_FLAGS = [
    ("--current-age", "current_age", int, "Current age"),
    ("--pension-access-age", "pension_access_age", int, "Age the pension can first be drawn"),
    ("--max-age", "max_retirement_age", int, "Latest retirement age to test (default 75)"),
    ("--horizon-age", "horizon_age", int, "Age to fund through (default 95)"),
    ("--isa-start", "isa_start", parse_dollars, "Starting ISA balance"),
    ("--taxable-start", "taxable_start", parse_dollars, "Starting taxable account balance"),
    (
        "--taxable-cost-basis-start",
        "taxable_cost_basis_start",
        parse_dollars,
        "Taxable account cost basis at start; defaults to --taxable-start when missing or 0",
    ),
    ("--pension-start", "pension_start", parse_dollars, "Starting pension balance"),
    ("--cash-start", "cash_start", parse_dollars, "Starting cash buffer"),
    ("--bond-ladder-start", "bond_ladder_start", parse_dollars, "Starting bond ladder balance"),
    ("--isa-annual-contribution", "isa_annual_contribution", parse_dollars, "Annual ISA contribution"),
    (
        "--isa-annual-contribution-limit",
        "isa_annual_contribution_limit",
        parse_dollars,
        "Annual ISA allowance; excess overflows to the taxable account (default 20000)",
    ),
    (
        "--taxable-annual-contribution",
        "taxable_annual_contribution",
        parse_dollars,
        "Annual taxable account contribution",
    ),
    (
        "--pension-annual-contribution",
        "pension_annual_contribution",
        parse_dollars,
        "Annual pension contribution",
    ),
    (
        "--contribution-growth-rate",
        "contribution_growth_rate",
        percent_arg,
        "Annual growth of all contributions in percent (e.g. pay rises)",
    ),
    ("--isa-growth-rate", "isa_return_mean", percent_arg, "Expected ISA return in percent, e.g. 5"),
    ("--isa-return-volatility", "isa_return_vol", percent_arg, "ISA return volatility in percent"),
    (
        "--taxable-growth-rate",
        "taxable_return_mean",
        percent_arg,
        "Expected taxable return in percent; defaults to --isa-growth-rate",
    ),
    (
        "--taxable-return-volatility",
        "taxable_return_vol",
        percent_arg,
        "Taxable return volatility in percent; defaults to --isa-return-volatility",
    ),
    ("--pension-growth-rate", "pension_return_mean", percent_arg, "Expected pension return in percent"),
    (
        "--pension-return-volatility",
        "pension_return_vol",
        percent_arg,
        "Pension return volatility in percent",
    ),
    (
        "--return-correlation",
        "return_correlation",
        parse_correlation,
        "Correlation between ISA and pension returns, e.g. 0.8 or 80%",
    ),
    ("--capital-gains-tax-rate", "capital_gains_tax_rate", percent_arg, "CGT rate in percent"),
    ("--capital-gains-allowance", "capital_gains_allowance", parse_dollars, "Annual CGT allowance"),
    (
        "--taxable-return-tax-drag",
        "taxable_return_tax_drag",
        percent_arg,
        "Annual tax drag on taxable returns in percent",
    ),
    ("--pension-tax-mode", "pension_tax_mode", choice_arg, "uk-bands or flat-rate"),
    (
        "--pension-income-tax-rate",
        "pension_flat_tax_rate",
        percent_arg,
        "Flat pension tax rate in percent, used with --pension-tax-mode flat-rate",
    ),
    ("--uk-personal-allowance", "uk_personal_allowance", parse_dollars, "UK personal allowance"),
    ("--uk-basic-rate-limit", "uk_basic_rate_limit", parse_dollars, "Top of the UK basic rate band"),
    ("--uk-higher-rate-limit", "uk_higher_rate_limit", parse_dollars, "Top of the UK higher rate band"),
    ("--uk-basic-rate", "uk_basic_rate", percent_arg, "UK basic rate in percent"),
    ("--uk-higher-rate", "uk_higher_rate", percent_arg, "UK higher rate in percent"),
    ("--uk-additional-rate", "uk_additional_rate", percent_arg, "UK additional rate in percent"),
    (
        "--uk-allowance-taper-start",
        "uk_allowance_taper_start",
        parse_dollars,
        "Income where the personal allowance taper starts",
    ),
    (
        "--uk-allowance-taper-end",
        "uk_allowance_taper_end",
        parse_dollars,
        "Income where the personal allowance is fully tapered away",
    ),
    ("--state-pension-start-age", "state_pension_start_age", int, "State pension start age"),
    (
        "--state-pension-annual-income",
        "state_pension_annual_income",
        parse_dollars,
        "Annual state pension in today's money",
    ),
    ("--inflation-rate", "inflation_mean", percent_arg, "Expected inflation in percent"),
    ("--inflation-volatility", "inflation_vol", percent_arg, "Inflation volatility in percent"),
    ("--target-annual-income", "target_annual_income", parse_dollars, "Net income wanted in retirement"),
    (
        "--mortgage-annual-payment",
        "mortgage_annual_payment",
        parse_dollars,
        "Annual mortgage payment in today's money",
    ),
    ("--mortgage-end-age", "mortgage_end_age", int, "Age when mortgage payments stop"),
    ("--simulations", "simulations", int, "Scenarios per age (default 10000)"),
    (
        "--success-threshold",
        "success_threshold",
        percent_arg,
        "Required success probability in percent (default 90)",
    ),
    ("--seed", "seed", int, "Base random seed"),
    ("--bad-year-threshold", "bad_year_threshold", percent_arg, "Bad-year real return in percent"),
    ("--good-year-threshold", "good_year_threshold", percent_arg, "Good-year real return in percent"),
    ("--bad-year-cut", "bad_year_cut", percent_arg, "Bad-year spending cut in percent"),
    ("--good-year-raise", "good_year_raise", percent_arg, "Good-year spending raise in percent"),
    ("--min-income-floor", "min_income_floor", percent_arg, "Spending floor as percent of target"),
    ("--max-income-ceiling", "max_income_ceiling", percent_arg, "Spending ceiling as percent of target"),
    (
        "--withdrawal-strategy",
        "withdrawal_strategy",
        choice_arg,
        "guardrails, guyton-klinger, vpw, floor-upside or bucket",
    ),
    (
        "--gk-lower-guardrail",
        "gk_lower_guardrail",
        percent_arg,
        "Guyton-Klinger lower guardrail as percent of the initial withdrawal rate",
    ),
    (
        "--gk-upper-guardrail",
        "gk_upper_guardrail",
        percent_arg,
        "Guyton-Klinger upper guardrail as percent of the initial withdrawal rate",
    ),
    (
        "--vpw-expected-real-return",
        "vpw_expected_real_return",
        percent_arg,
        "VPW expected real return in percent",
    ),
    (
        "--floor-upside-capture",
        "floor_upside_capture",
        percent_arg,
        "Share of positive real returns turned into spending growth, in percent",
    ),
    (
        "--bucket-target-years",
        "bucket_target_years",
        float,
        "Bucket strategy cash reserve in years of spending",
    ),
    (
        "--good-year-extra-buffer-withdrawal",
        "good_year_extra_buffer_withdrawal",
        percent_arg,
        "Extra withdrawal parked in cash in good years, percent of spending",
    ),
    ("--cash-growth-rate", "cash_growth_rate", percent_arg, "Cash buffer growth in percent"),
    ("--bond-ladder-yield", "bond_ladder_yield", percent_arg, "Bond ladder yield in percent"),
    ("--bond-ladder-years", "bond_ladder_years", int, "Years over which the ladder is drawn down"),
    (
        "--post-access-withdrawal-order",
        "post_access_withdrawal_order",
        choice_arg,
        "pro-rata, isa-first, taxable-first, pension-first or bond-ladder-first",
    ),
]


def _add_input_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("inputs")
    for flag, dest, convert, help_text in _INPUT_FLAGS:
        group.add_argument(flag, dest=dest, type=convert, default=None, help=help_text)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Load inputs saved with --save-config; flags override")
    common.add_argument("--save-config", help="Write the merged inputs to this file")
    verbosity = common.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log every step")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings")
    _add_input_flags(common)

    parser = argparse.ArgumentParser(
        prog="fire-estimator",
        description="Monte Carlo FIRE estimator (ISA + taxable account + pension + dynamic withdrawals)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    sweep = commands.add_parser(
        "sweep", parents=[common], help="Success rate for every retirement (or coast) age"
    )
    sweep.add_argument(
        "--mode",
        choices=["retirement", "coast"],
        default="retirement",
        help="coast: stop contributing at each age but retire at a fixed age",
    )
    sweep.add_argument(
        "--coast-retirement-age",
        type=int,
        help="Fixed retirement age in coast mode; defaults to the plain sweep's answer",
    )
    sweep.add_argument("--csv", metavar="DIR", help="Write age_results.csv and cashflow.csv here")
    sweep.add_argument("--plot", metavar="FILE", help="Save the success-rate chart to FILE")
    sweep.add_argument(
        "--plot-cashflow", metavar="FILE", help="Save the median cash-flow chart to FILE"
    )

    solve = commands.add_parser(
        "solve", parents=[common], help="Solve for a contribution or income goal"
    )
    solve.add_argument(
        "--goal",
        choices=["required-contribution", "max-income"],
        default="required-contribution",
    )
    solve.add_argument("--target-retirement-age", type=int, required=True)
    solve.add_argument(
        "--target-success-threshold",
        type=percent_arg,
        help="Success probability to reach in percent; defaults to --success-threshold",
    )
    solve.add_argument("--search-min", type=float, default=0.0)
    solve.add_argument("--search-max", type=float, default=100_000.0)
    solve.add_argument("--tolerance", type=float, default=10.0)
    solve.add_argument("--max-iterations", type=int, default=24)
    solve.add_argument("--simulations-per-iteration", type=int, default=1_000)
    solve.add_argument("--final-simulations", type=int, default=10_000)
    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def inputs_from_args(args: argparse.Namespace) -> Inputs:
    """Saved config (if any) overlaid with every flag given on the command line."""
    data = load_config(args.config) if args.config else {}
    if args.config and not data:
        raise ValueError(f"config file not found or empty: {args.config}")
    for _, dest, _, _ in _INPUT_FLAGS:
        value = getattr(args, dest)
        if value is not None:
            data[dest] = value
    inputs = validate_inputs(inputs_from_dict(data))
    if args.save_config:
        save_config(inputs, args.save_config)
        logger.info("saved inputs to %s", args.save_config)
    return inputs


def _save_figure(fig, path: str) -> None:
    import matplotlib.pyplot as plt

    fig.savefig(path)
    plt.close(fig)
    logger.info("saved chart to %s", path)


def _run_sweep(args: argparse.Namespace, inputs: Inputs) -> dict:
    mode = AnalysisMode.COAST_FIRE if args.mode == "coast" else AnalysisMode.RETIREMENT_SWEEP
    report = run_analysis(inputs, mode, args.coast_retirement_age)

    if args.csv or args.plot or args.plot_cashflow:
        from reporting import age_results_frame, cashflow_frame, plot_cashflow, plot_success_by_age

        model = report.model_result()
        if args.csv:
            os.makedirs(args.csv, exist_ok=True)
            age_results_frame(model).to_csv(os.path.join(args.csv, "age_results.csv"))
            cashflow_frame(report.cashflow_years).to_csv(os.path.join(args.csv, "cashflow.csv"))
            logger.info("wrote CSV files to %s", args.csv)
        if args.plot or args.plot_cashflow:
            import matplotlib

            matplotlib.use("Agg")
        if args.plot:
            _save_figure(plot_success_by_age(model, inputs.success_threshold), args.plot)
        if args.plot_cashflow:
            _save_figure(plot_cashflow(report.cashflow_years), args.plot_cashflow)
    return report.to_dict()


def _run_solve(args: argparse.Namespace, inputs: Inputs) -> dict:
    threshold = args.target_success_threshold
    config = GoalSolveConfig(
        goal_type=GoalType(choice_arg(args.goal)),
        target_retirement_age=args.target_retirement_age,
        target_success_threshold=inputs.success_threshold if threshold is None else threshold,
        search_min=args.search_min,
        search_max=args.search_max,
        tolerance=args.tolerance,
        max_iterations=args.max_iterations,
        simulations_per_iteration=args.simulations_per_iteration,
        final_simulations=args.final_simulations,
    )
    return solve_goal(inputs, config).to_dict()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)

    try:
        inputs = inputs_from_args(args)
        if args.command == "sweep":
            result = _run_sweep(args, inputs)
        else:
            result = _run_solve(args, inputs)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    json.dump(result, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
