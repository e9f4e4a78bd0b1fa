from datetime import date

import pytest

from leadtrack.domain.rules import ValidationError
from leadtrack.services.utils import day_range, parse_currency


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("R$ 1.234,56", 1234.56),
        ("R$ 450.000", 450000.0),
        ("1.500", 1500.0),
        ("1,234", 1234.0),
        ("1.5", 1.5),
        ("1,234.56", 1234.56),
        ("450000", 450000.0),
        ("12,5", 12.5),
        (300000, 300000.0),
        ("", None),
        (None, None),
    ],
)
def test_parse_currency(raw, expected) -> None:
    assert parse_currency(raw) == expected


def test_parse_currency_rejects_garbage() -> None:
    with pytest.raises(ValidationError):
        parse_currency("1.2.3,4,5")


def test_day_range_is_inclusive() -> None:
    lower, upper = day_range(date(2026, 10, 1), date(2026, 10, 19))
    assert lower == "2026-10-01T00:00:00+00:00"
    assert upper == "2026-10-19T23:59:59+00:00"


def test_day_range_rejects_inverted_dates() -> None:
    with pytest.raises(ValidationError):
        day_range(date(2026, 10, 19), date(2026, 10, 1))


def test_parse_currency_thousands_only() -> None:
    assert parse_currency("1.250.000") == 1250000.0
    assert parse_currency("1,250,000") == 1250000.0
