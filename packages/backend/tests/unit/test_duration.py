from datetime import datetime, timezone

import pytest

from shared.services.duration import add_months, compute_expiry, parse_duration

START = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "duration,expected",
    [
        ("1 year", ("years", 1)),
        ("2 years", ("years", 2)),
        ("6 months", ("months", 6)),
        ("month", ("months", 1)),
        ("14 days", ("days", 14)),
        ("days", ("days", 30)),
        ("garbage", ("years", 1)),
        ("", ("years", 1)),
        (None, ("years", 1)),
    ],
)
def test_parse_duration(duration, expected):
    assert parse_duration(duration) == expected


def test_parse_duration_is_case_sensitive():
    assert parse_duration("6 MONTHS") == ("years", 1)


def test_compute_expiry_months():
    assert compute_expiry(START, "6 months") == datetime(2024, 7, 15, 12, 0, tzinfo=timezone.utc)


def test_compute_expiry_days_and_years():
    assert compute_expiry(START, "30 days") == datetime(2024, 2, 14, 12, 0, tzinfo=timezone.utc)
    assert compute_expiry(START, "2 years") == datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def test_compute_expiry_unrecognised_is_one_year():
    assert compute_expiry(START, "forever-ish") == datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def test_add_months_clamps_to_month_end():
    jan_31 = datetime(2023, 1, 31, tzinfo=timezone.utc)
    assert add_months(jan_31, 1) == datetime(2023, 2, 28, tzinfo=timezone.utc)
    assert add_months(datetime(2024, 1, 31, tzinfo=timezone.utc), 1) == datetime(
        2024, 2, 29, tzinfo=timezone.utc
    )
    assert add_months(datetime(2024, 11, 30, tzinfo=timezone.utc), 3) == datetime(
        2025, 2, 28, tzinfo=timezone.utc
    )


def test_leap_day_plus_one_year():
    assert compute_expiry(datetime(2024, 2, 29, tzinfo=timezone.utc), "1 year") == datetime(
        2025, 2, 28, tzinfo=timezone.utc
    )
