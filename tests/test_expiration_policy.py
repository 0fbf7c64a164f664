import datetime as dt

import pytest

from loyalty_api.domain.loyalty.expiration import ExpirationPeriod, ExpirationPolicy


UTC = dt.timezone.utc


def test_relative_days_keep_time_of_day() -> None:
    policy = ExpirationPolicy.relative(ExpirationPeriod.DAYS, 30)
    issued = dt.datetime(2026, 1, 15, 9, 30, tzinfo=UTC)

    assert policy.calculate_expiration_date(issued) == dt.datetime(2026, 2, 14, 9, 30, tzinfo=UTC)


def test_relative_months_clamp_to_month_end() -> None:
    policy = ExpirationPolicy.relative("months", 1)

    assert policy.calculate_expiration_date(dt.datetime(2026, 1, 31, tzinfo=UTC)) == dt.datetime(
        2026, 2, 28, tzinfo=UTC
    )
    assert policy.calculate_expiration_date(dt.datetime(2024, 1, 31, tzinfo=UTC)) == dt.datetime(
        2024, 2, 29, tzinfo=UTC
    )


def test_relative_years_from_leap_day() -> None:
    policy = ExpirationPolicy.relative(ExpirationPeriod.YEARS, 1)

    assert policy.calculate_expiration_date(dt.datetime(2024, 2, 29, 12, tzinfo=UTC)) == dt.datetime(
        2025, 2, 28, 12, tzinfo=UTC
    )


def test_absolute_rolls_to_next_year_when_date_passed() -> None:
    policy = ExpirationPolicy.absolute(day=31, month=12)

    assert policy.calculate_expiration_date(dt.datetime(2026, 6, 1, 15, tzinfo=UTC)) == dt.datetime(
        2026, 12, 31, tzinfo=UTC
    )
    # issued on the expiry day itself moves a full year out
    assert policy.calculate_expiration_date(dt.datetime(2026, 12, 31, 8, tzinfo=UTC)) == dt.datetime(
        2027, 12, 31, tzinfo=UTC
    )


def test_absolute_february_29_outside_leap_years() -> None:
    policy = ExpirationPolicy.absolute(day=29, month=2)

    assert policy.calculate_expiration_date(dt.datetime(2026, 1, 10, tzinfo=UTC)) == dt.datetime(
        2026, 2, 28, tzinfo=UTC
    )
    assert policy.calculate_expiration_date(dt.datetime(2027, 12, 1, tzinfo=UTC)) == dt.datetime(
        2028, 2, 29, tzinfo=UTC
    )


def test_absolute_keeps_naive_inputs_naive() -> None:
    policy = ExpirationPolicy.absolute(day=1, month=3)

    result = policy.calculate_expiration_date(dt.datetime(2026, 2, 1, 10))

    assert result == dt.datetime(2026, 3, 1)
    assert result.tzinfo is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"period": ExpirationPeriod.DAYS},
        {"period": ExpirationPeriod.DAYS, "value": 0},
        {"day": 15},
        {"day": 1, "month": 13},
        {"day": 32, "month": 1},
        {"period": ExpirationPeriod.DAYS, "value": 10, "day": 1, "month": 1},
    ],
)
def test_invalid_policies_are_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        ExpirationPolicy(**kwargs)


def test_documented_round_trips() -> None:
    twelve_months = ExpirationPolicy.relative(ExpirationPeriod.MONTHS, 12)
    year_end = ExpirationPolicy.absolute(day=31, month=12)

    assert twelve_months.calculate_expiration_date(dt.datetime(2024, 1, 15, tzinfo=UTC)) == dt.datetime(
        2025, 1, 15, tzinfo=UTC
    )
    assert year_end.calculate_expiration_date(dt.datetime(2024, 3, 1, tzinfo=UTC)) == dt.datetime(
        2024, 12, 31, tzinfo=UTC
    )
    assert year_end.calculate_expiration_date(dt.datetime(2024, 12, 31, tzinfo=UTC)) == dt.datetime(
        2025, 12, 31, tzinfo=UTC
    )
