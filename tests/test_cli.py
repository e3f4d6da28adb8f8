import json

import pytest

from cli import build_parser, choice_arg, main, percent_arg


BASE_ARGS = [
    "--current-age", "30",
    "--pension-access-age", "57",
    "--max-age", "32",
    "--horizon-age", "40",
    "--isa-start", "£100,000",
    "--pension-start", "50000",
    "--isa-annual-contribution", "10000",
    "--pension-annual-contribution", "5000",
    "--isa-growth-rate", "5",
    "--pension-growth-rate", "5%",
    "--target-annual-income", "20000",
    "--simulations", "10",
    "--seed", "1",
    "-q",
]


def test_percent_and_choice_args():
    assert percent_arg("-2.5%") == pytest.approx(-0.025)
    assert percent_arg("150") == pytest.approx(1.5)
    assert choice_arg(" Guyton-Klinger ") == "guyton_klinger"


def test_sweep_prints_json_report(capsys):
    assert main(["sweep", *BASE_ARGS]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["mode"] == "retirement"
    assert [r["retirementAge"] for r in data["ageResults"]] == [30, 31, 32]
    assert len(data["cashflowYears"]) == 10


def test_sweep_coast_mode(capsys):
    args = ["sweep", *BASE_ARGS, "--mode", "coast", "--coast-retirement-age", "35"]
    assert main(args) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["mode"] == "coast"
    assert data["coastRetirementAge"] == 35


def test_sweep_writes_csv_and_plot(tmp_path, capsys):
    out_dir = tmp_path / "out"
    chart = tmp_path / "success.png"
    args = ["sweep", *BASE_ARGS, "--csv", str(out_dir), "--plot", str(chart)]
    assert main(args) == 0
    capsys.readouterr()
    assert (out_dir / "age_results.csv").exists()
    assert (out_dir / "cashflow.csv").exists()
    assert chart.exists()


def test_sweep_writes_cashflow_chart(tmp_path, capsys):
    chart = tmp_path / "cashflow.png"
    assert main(["sweep", *BASE_ARGS, "--plot-cashflow", str(chart)]) == 0
    capsys.readouterr()
    assert chart.exists()
    assert chart.stat().st_size > 0


def test_solve_prints_json_result(capsys):
    args = [
        "solve",
        *BASE_ARGS,
        "--goal", "max-income",
        "--target-retirement-age", "32",
        "--target-success-threshold", "50",
        "--search-max", "200000",
        "--tolerance", "5000",
        "--simulations-per-iteration", "5",
        "--final-simulations", "10",
    ]
    assert main(args) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["config"]["goalType"] == "max_income"
    assert data["config"]["targetSuccessThreshold"] == pytest.approx(0.5)
    assert "solvedValue" in data


def test_save_and_reuse_config(tmp_path, capsys):
    path = tmp_path / "inputs.json"
    assert main(["sweep", *BASE_ARGS, "--save-config", str(path)]) == 0
    first = json.loads(capsys.readouterr().out)

    saved = json.loads(path.read_text())
    assert saved["isa_start"] == 100_000.0
    assert saved["pension_return_mean"] == pytest.approx(0.05)

    assert main(["sweep", "-q", "--config", str(path)]) == 0
    assert json.loads(capsys.readouterr().out) == first


def test_invalid_inputs_exit_with_error(capsys):
    args = ["sweep", *BASE_ARGS, "--horizon-age", "31"]
    assert main(args) == 2
    assert "horizon_age must be > max_retirement_age" in capsys.readouterr().err


def test_missing_inputs_exit_with_error(capsys):
    assert main(["sweep", "-q"]) == 2
    assert capsys.readouterr().err.startswith("error:")


def test_missing_config_file_is_an_error(tmp_path, capsys):
    assert main(["sweep", "-q", "--config", str(tmp_path / "nope.json")]) == 2
    assert "config file not found" in capsys.readouterr().err


def test_solve_requires_target_age():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["solve"])
