"""
Stateless rental validation and pricing.

Every function here is pure: it takes the values it needs and returns a
result or raises, so a request handler can call it without holding any
shared validator instance.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from src.domain.exceptions import InvalidDateRangeError

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class RentalQuote:
    rental_days: int
    daily_price: Decimal
    total_rental_price: Decimal
    security_deposit: Decimal
    total_amount: Decimal


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def validate_date_range(start_date: date, end_date: date, today: date) -> None:
    if start_date > end_date:
        raise InvalidDateRangeError(
            f"Start date {start_date} is after end date {end_date}"
        )
    if start_date < today:
        raise InvalidDateRangeError(
            f"Start date {start_date} is in the past"
        )


def rental_days(start_date: date, end_date: date) -> int:
    """Inclusive day count: a same-day rental is one day."""
    return (end_date - start_date).days + 1


def quote_rental(
    start_date: date,
    end_date: date,
    daily_price,
    security_deposit,
) -> RentalQuote:
    days = rental_days(start_date, end_date)
    price = to_money(daily_price)
    deposit = to_money(security_deposit)
    total_rental = to_money(price * days)

    return RentalQuote(
        rental_days=days,
        daily_price=price,
        total_rental_price=total_rental,
        security_deposit=deposit,
        total_amount=to_money(total_rental + deposit),
    )


def to_minor_units(amount: Decimal) -> int:
    """Payment providers take amounts in the currency's smallest unit."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))
