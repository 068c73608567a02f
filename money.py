from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")

Number = Union[int, Decimal]


def round2(value: Decimal) -> Decimal:
    # ROUND_HALF_UP on Decimal rounds half away from zero, also for negatives
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def cents_to_decimal(cents: int) -> Decimal:
    return round2(Decimal(cents) / Decimal(100))


def percent(part: Number, whole: Number) -> Decimal:
    if not whole:
        return Decimal("0.00")
    return round2(Decimal(part) * Decimal(100) / Decimal(whole))


def format_amount(cents: int) -> str:
    return f"{cents_to_decimal(cents):,.2f}"
