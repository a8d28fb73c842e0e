import pytest

from realty_report.core.numbers import (
    extract_leading_number,
    extract_marked_amount,
    parse_amount,
    parse_locale_number,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("6.900", 6900.0),
        ("6,5", 6.5),
        ("1.234.567,89", 1234567.89),
        ("$2.300.000", 2300000.0),
        ("UF 9.200", 9200.0),
        ("12.5", 12.5),
        ("3.75", 3.75),
        ("184", 184.0),
        ("$ 1.841.539", 1841539.0),
    ],
)
def test_parse_locale_number_examples(text, expected):
    assert parse_locale_number(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["abc", "", "   ", None, "UF", "12a", "1,2,3"])
def test_parse_locale_number_signals_failure(text):
    assert parse_locale_number(text) is None


def test_parse_amount_defaults_to_zero():
    assert parse_amount("no disponible") == 0.0
    assert parse_amount("$50.000") == 50000.0


@pytest.mark.parametrize(
    "text, expected",
    [
        ("4 dormitorios", 4.0),
        ("2,5 baños", 2.5),
        ("184 m2 totales", 184.0),
        ("1.200 m2", 1200.0),
        ("sin datos", None),
        (None, None),
    ],
)
def test_extract_leading_number(text, expected):
    assert extract_leading_number(text) == expected


def test_extract_marked_amount_reads_each_currency():
    text = "UF 2,98 (equivale a $116.920)"
    assert extract_marked_amount(text, "$") == 116920.0
    assert extract_marked_amount(text, "UF") == pytest.approx(2.98)
    assert extract_marked_amount("Sin costo", "$") is None
