import pytest

from core import parse_correlation, parse_dollars, parse_percent


@pytest.mark.parametrize(
    "text, expected",
    [
        ("10%", 0.10),
        ("0%", 0.0),
        ("100%", 1.0),
        ("2.5", 0.025),
    ],
)
def test_parse_percent_valid(text, expected):
    assert parse_percent(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["101%", "-5%", "abc%"])
def test_parse_percent_invalid(text):
    with pytest.raises(ValueError):
        parse_percent(text)


def test_parse_percent_custom_bounds():
    assert parse_percent("-5%", lower=-1.0) == pytest.approx(-0.05)
    assert parse_percent("130%", upper=3.0) == pytest.approx(1.30)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("£1,234", 1234.0),
        ("$1,234", 1234.0),
        ("0", 0.0),
        (" 500 ", 500.0),
    ],
)
def test_parse_dollars_valid(text, expected):
    assert parse_dollars(text) == expected


@pytest.mark.parametrize("text", ["-1", "-£5", "abc"])
def test_parse_dollars_invalid(text):
    with pytest.raises(ValueError):
        parse_dollars(text)


@pytest.mark.parametrize(
    "text, expected",
    [("0.8", 0.8), ("-40%", -0.40), ("1", 1.0)],
)
def test_parse_correlation_valid(text, expected):
    assert parse_correlation(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["1.5", "-101%", "high"])
def test_parse_correlation_invalid(text):
    with pytest.raises(ValueError):
        parse_correlation(text)
