"""
Calendar periods.

A period is a signed number of calendar units (days, weeks, months or
years). Periods are used as the holding time of a Markov state and as the
length of one step of a scheduled model.

Month and year arithmetic is calendar-exact when a period is added to a
date (via ``dateutil.relativedelta``). Where a single length in days is
needed, :meth:`Period.approx_days` uses 7 days per week, 30 per month and
365 per year.
"""

import datetime
from dataclasses import dataclass
from enum import Enum

from dateutil.relativedelta import relativedelta


class PeriodType(Enum):
    """Unit of a period, with its one-letter code."""

    NONE = "NONE"
    DAYS = "D"
    WEEKS = "W"
    MONTHS = "M"
    YEARS = "Y"


_APPROX_DAYS = {
    PeriodType.NONE: 0,
    PeriodType.DAYS: 1,
    PeriodType.WEEKS: 7,
    PeriodType.MONTHS: 30,
    PeriodType.YEARS: 365,
}


@dataclass(frozen=True)
class Period:
    """
    Immutable calendar period.

    Attributes
    ----------
    period_type : PeriodType
        Calendar unit.
    size : int
        Number of units (can be negative or zero).
    """

    period_type: PeriodType = PeriodType.NONE
    size: int = 0

    @classmethod
    def none(cls) -> "Period":
        return cls(PeriodType.NONE, 0)

    @classmethod
    def days(cls, n: int) -> "Period":
        return cls(PeriodType.DAYS, n)

    @classmethod
    def weeks(cls, n: int) -> "Period":
        return cls(PeriodType.WEEKS, n)

    @classmethod
    def months(cls, n: int) -> "Period":
        return cls(PeriodType.MONTHS, n)

    @classmethod
    def years(cls, n: int) -> "Period":
        return cls(PeriodType.YEARS, n)

    @classmethod
    def between(cls, d1: datetime.date, d2: datetime.date) -> "Period":
        """Period p of type DAYS such that d1 + p == d2."""
        return cls(PeriodType.DAYS, (d2 - d1).days)

    @classmethod
    def parse(cls, text: str) -> "Period":
        """
        Parse a period such as ``"3M"``, ``"-2D"`` or ``"NONE"``.

        Raises
        ------
        ValueError
            If the text is not a size followed by one of D, W, M, Y.
        """
        text = text.strip()
        if text == "NONE":
            return cls.none()
        if len(text) < 2:
            raise ValueError(f"Cannot construct period from string: {text!r}")
        try:
            period_type = PeriodType(text[-1].upper())
            size = int(text[:-1])
        except ValueError:
            raise ValueError(f"Cannot construct period from string: {text!r}")
        return cls(period_type, size)

    def approx_days(self) -> int:
        """Approximate length of the period in days."""
        return _APPROX_DAYS[self.period_type] * self.size

    def add_to(self, date: datetime.date) -> datetime.date:
        """Move a date forward by this period."""
        if self.period_type is PeriodType.NONE:
            return date
        if self.period_type is PeriodType.DAYS:
            return date + relativedelta(days=self.size)
        if self.period_type is PeriodType.WEEKS:
            return date + relativedelta(weeks=self.size)
        if self.period_type is PeriodType.MONTHS:
            return date + relativedelta(months=self.size)
        return date + relativedelta(years=self.size)

    def __add__(self, other):
        """
        Add two periods.

        Same types add directly; weeks and days combine into days; years
        and months combine into months. Any other mix raises ValueError.
        """
        if isinstance(other, datetime.date):
            return self.add_to(other)
        if not isinstance(other, Period):
            return NotImplemented
        if other.period_type == self.period_type:
            return Period(self.period_type, self.size + other.size)
        types = {self.period_type, other.period_type}
        if types == {PeriodType.WEEKS, PeriodType.DAYS}:
            return Period.days(self.approx_days() + other.approx_days())
        if types == {PeriodType.YEARS, PeriodType.MONTHS}:
            months = sum(
                12 * p.size if p.period_type is PeriodType.YEARS else p.size
                for p in (self, other)
            )
            return Period.months(months)
        raise ValueError(
            f"Period types incompatible for addition: {self} + {other}"
        )

    def __radd__(self, other):
        if isinstance(other, datetime.date):
            return self.add_to(other)
        return NotImplemented

    def __floordiv__(self, n: int) -> "Period":
        # truncates towards zero
        return Period(self.period_type, int(self.size / n))

    def __str__(self) -> str:
        if self.period_type is PeriodType.NONE:
            return "NONE"
        return f"{self.size}{self.period_type.value}"
