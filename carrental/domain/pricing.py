"""
Rental pricing.

Pure functions that derive a booking's price snapshot:

    base      = price_per_day * rental_days
    tax       = round_half_up((base + extras + insurance) * 0.20)
    deposit   = round_half_up(base * 0.30)
    total     = base + extras + insurance + tax

Tax and deposit are rounded independently and the total is the sum of the
already-rounded components, so the same inputs always reproduce the same
snapshot. The deposit is a hold and is never part of the total.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Tuple, Union

from carrental.domain.errors import ValidationError


Amount = Union[Decimal, int, float, str]

TAX_RATE = Decimal("0.20")
DEPOSIT_RATE = Decimal("0.30")
ONE_DAY = timedelta(days=1)
ZERO = Decimal("0")


@dataclass(frozen=True)
class Extra:
    """Optional add-on from the booking form, priced per rental."""
    id: str
    name: str
    price: Decimal
    is_insurance: bool = False


EXTRAS_CATALOG = {
    extra.id: extra
    for extra in (
        Extra("gps", "GPS Navigation", Decimal("50")),
        Extra("child_seat", "Child Seat", Decimal("80")),
        Extra("extra_driver", "Additional Driver", Decimal("120")),
        Extra("wifi", "Mobile WiFi", Decimal("100")),
        Extra("insurance_full", "Full Insurance", Decimal("200"), is_insurance=True),
        Extra("delivery", "Car Delivery", Decimal("150")),
    )
}


@dataclass(frozen=True)
class PriceBreakdown:
    """Immutable pricing snapshot stored on a booking."""
    base_price: Decimal
    extras_price: Decimal
    insurance_price: Decimal
    tax_amount: Decimal
    total_price: Decimal
    security_deposit: Decimal


@dataclass(frozen=True)
class Quote:
    rental_days: int
    extras: Tuple[str, ...]
    breakdown: PriceBreakdown


def round_half_up(value: Decimal) -> Decimal:
    """Round to whole currency units, halves away from zero."""
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def _to_amount(value: Amount, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        # str() keeps floats like 0.1 from dragging binary noise into Decimal
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    return amount


def rental_days(pickup: datetime, dropoff: datetime) -> int:
    """
    Number of charged days: ``max(1, ceil((dropoff - pickup) / 1 day))``.

    Raises:
        ValidationError: if dropoff is not strictly after pickup
    """
    if dropoff <= pickup:
        raise ValidationError("Drop-off must be after pickup", field="dropoff_at")

    span = dropoff - pickup
    days = span // ONE_DAY
    if span % ONE_DAY:
        days += 1
    return max(1, days)


def calculate_price(
    price_per_day: Amount,
    days: int,
    extras_price: Amount = 0,
    insurance_price: Amount = 0,
) -> PriceBreakdown:
    """
    Derive a price breakdown.

    Raises:
        ValidationError: price_per_day <= 0, days < 1, or a negative extras/insurance amount.
            Bad inputs are rejected, never clamped.
    """
    per_day = _to_amount(price_per_day, "price_per_day")
    if per_day <= ZERO:
        raise ValidationError("price_per_day must be positive", field="price_per_day")

    if isinstance(days, bool) or not isinstance(days, int):
        raise ValidationError("rental_days must be an integer", field="rental_days")
    if days < 1:
        raise ValidationError("rental_days must be at least 1", field="rental_days")

    extras = _to_amount(extras_price, "extras_price")
    if extras < ZERO:
        raise ValidationError("extras_price cannot be negative", field="extras_price")

    insurance = _to_amount(insurance_price, "insurance_price")
    if insurance < ZERO:
        raise ValidationError("insurance_price cannot be negative", field="insurance_price")

    base = per_day * days
    tax = round_half_up((base + extras + insurance) * TAX_RATE)
    deposit = round_half_up(base * DEPOSIT_RATE)

    return PriceBreakdown(
        base_price=base,
        extras_price=extras,
        insurance_price=insurance,
        tax_amount=tax,
        total_price=base + extras + insurance + tax,
        security_deposit=deposit,
    )


def normalize_extras(extra_ids: Iterable[str]) -> Tuple[str, ...]:
    """Deduplicate and validate extras ids, preserving first-seen order."""
    seen = []
    for extra_id in extra_ids:
        if extra_id not in EXTRAS_CATALOG:
            raise ValidationError(f"Unknown extra '{extra_id}'", field="extras")
        if extra_id not in seen:
            seen.append(extra_id)
    return tuple(seen)


def price_extras(extra_ids: Iterable[str]) -> Tuple[Decimal, Decimal]:
    """Split selected extras into (extras_price, insurance_price)."""
    extras_total = ZERO
    insurance_total = ZERO
    for extra_id in normalize_extras(extra_ids):
        extra = EXTRAS_CATALOG[extra_id]
        if extra.is_insurance:
            insurance_total += extra.price
        else:
            extras_total += extra.price
    return extras_total, insurance_total


def quote(
    price_per_day: Amount,
    pickup: datetime,
    dropoff: datetime,
    extra_ids: Iterable[str] = (),
) -> Quote:
    """Price a rental window for a car with the selected extras."""
    selected = normalize_extras(extra_ids)
    days = rental_days(pickup, dropoff)
    extras_total, insurance_total = price_extras(selected)
    return Quote(
        rental_days=days,
        extras=selected,
        breakdown=calculate_price(price_per_day, days, extras_total, insurance_total),
    )
