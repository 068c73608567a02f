from dataclasses import dataclass
from datetime import date

from errors import InvalidInput


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def shift_month(year: int, month: int, count: int) -> tuple[int, int]:
    month_index = (year * 12) + (month - 1) + count
    return month_index // 12, (month_index % 12) + 1


def month_period(year: int, month: int) -> Period:
    return Period(
        f"{year:04d}-{month:02d}",
        date(year, month, 1),
        date(year, month, days_in_month(year, month)),
    )


def trailing_months(today: date, months: int) -> list[Period]:
    """Calendar months ending with ``today``'s month, oldest first."""
    if months < 1:
        raise InvalidInput("Window must cover at least one month")
    out: list[Period] = []
    for back in range(months - 1, -1, -1):
        year, month = shift_month(today.year, today.month, -back)
        out.append(month_period(year, month))
    return out
