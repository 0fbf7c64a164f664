"""Expiration policy value object for loyalty programs."""

from __future__ import annotations

import calendar
import datetime as dt
from dataclasses import dataclass
from enum import Enum


class ExpirationPeriod(str, Enum):
    """Unit used by relative expiration policies."""

    DAYS = "days"
    MONTHS = "months"
    YEARS = "years"


def _clamped_date(year: int, month: int, day: int) -> dt.date:
    # Feb 29 becomes Feb 28 outside leap years, day 31 becomes 30 in short months.
    return dt.date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _add_months(moment: dt.datetime, months: int) -> dt.datetime:
    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    target = _clamped_date(year, month, moment.day)
    return moment.replace(year=target.year, month=target.month, day=target.day)


@dataclass(frozen=True, slots=True)
class ExpirationPolicy:
    """Either "N periods after issuance" or "every year on day/month".

    Build instances through :meth:`relative` or :meth:`absolute`; exactly one of
    the two modes may be populated.
    """

    period: ExpirationPeriod | None = None
    value: int | None = None
    day: int | None = None
    month: int | None = None

    def __post_init__(self) -> None:
        relative = self.period is not None or self.value is not None
        absolute = self.day is not None or self.month is not None
        if relative == absolute:
            raise ValueError("Expiration policy needs exactly one of period/value or day/month")

        if relative:
            if self.period is None or self.value is None:
                raise ValueError("Relative expiration requires both period and value")
            if self.value <= 0:
                raise ValueError("Expiration value must be greater than zero")
            return

        if self.day is None or self.month is None:
            raise ValueError("Absolute expiration requires both day and month")
        if not 1 <= self.month <= 12:
            raise ValueError("Expiration month must be between 1 and 12")
        if not 1 <= self.day <= 31:
            raise ValueError("Expiration day must be between 1 and 31")

    @classmethod
    def relative(cls, period: ExpirationPeriod | str, value: int) -> "ExpirationPolicy":
        return cls(period=ExpirationPeriod(period), value=value)

    @classmethod
    def absolute(cls, day: int, month: int) -> "ExpirationPolicy":
        return cls(day=day, month=month)

    @property
    def is_absolute(self) -> bool:
        return self.day is not None

    def calculate_expiration_date(self, issued_at: dt.datetime) -> dt.datetime:
        """Return the moment a card issued at ``issued_at`` expires.

        Relative policies keep the time of day. Absolute policies return midnight
        of the next (day, month) strictly after the issuance date, in UTC when
        ``issued_at`` is timezone-aware.
        """

        if not self.is_absolute:
            assert self.period is not None and self.value is not None
            if self.period is ExpirationPeriod.DAYS:
                return issued_at + dt.timedelta(days=self.value)
            if self.period is ExpirationPeriod.MONTHS:
                return _add_months(issued_at, self.value)
            return _add_months(issued_at, self.value * 12)

        assert self.day is not None and self.month is not None
        tzinfo = None
        if issued_at.tzinfo is not None:
            issued_at = issued_at.astimezone(dt.timezone.utc)
            tzinfo = dt.timezone.utc

        issued_on = issued_at.date()
        candidate = _clamped_date(issued_on.year, self.month, self.day)
        if candidate <= issued_on:
            candidate = _clamped_date(issued_on.year + 1, self.month, self.day)
        return dt.datetime.combine(candidate, dt.time.min, tzinfo=tzinfo)


__all__ = ["ExpirationPeriod", "ExpirationPolicy"]
