from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from authnet.errors import ValidationError
from authnet.time_utils import parse_iso_datetime


# Percentages (minDiscountRate, commissionRate, paymentRatio) are stored as
# hundredths of a percent: 60% -> 6000, 85.25% -> 8525.
PERCENT_SCALE = 100
PERCENT_MAX_BPS = 100 * PERCENT_SCALE

# Discount ratios (globalDiscount, category/product discounts) are stored as
# parts per 10,000: 0.85 -> 8500.
RATIO_SCALE = 10_000

# Maximum price: 9,999,999.99 in major units
MAX_PRICE_CENTS = 999_999_999


def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return number


def optional_text(data: dict, field: str, *, max_length: int = 2000) -> str | None:
    value = data.get(field)
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return text


def parse_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """Strict integer parsing: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer", field=field)
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    else:
        raise ValidationError(f"{field} must be an integer", field=field)

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", field=field)
    return result


def parse_price_cents(value: Any, field: str) -> int:
    cents = parse_int(value, field, minimum=1)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum price", field=field)
    return cents


def parse_percent_bps(value: Any, field: str, *, allow_zero: bool = True) -> int:
    """Parse a 0-100 percentage (at most two decimals) into hundredths of a percent."""
    number = _to_decimal(value, field)
    if number < 0 or number > 100 or (number == 0 and not allow_zero):
        bound = "[0, 100]" if allow_zero else "(0, 100]"
        raise ValidationError(f"{field} must be a percentage in {bound}", field=field)
    scaled = number * PERCENT_SCALE
    if scaled != scaled.to_integral_value():
        raise ValidationError(f"{field} supports at most two decimal places", field=field)
    return int(scaled)


def parse_ratio_units(value: Any, field: str) -> int:
    """Parse a discount ratio in (0, 1] (at most four decimals) into parts per 10,000."""
    number = _to_decimal(value, field)
    if number <= 0 or number > 1:
        raise ValidationError(f"{field} must be a ratio in (0, 1]", field=field)
    scaled = number * RATIO_SCALE
    if scaled != scaled.to_integral_value():
        raise ValidationError(f"{field} supports at most four decimal places", field=field)
    return int(scaled)


def percent_from_bps(bps: int | None) -> float | None:
    if bps is None:
        return None
    return bps / PERCENT_SCALE


def ratio_from_units(units: int | None) -> float | None:
    if units is None:
        return None
    return units / RATIO_SCALE


def parse_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = tuple(choices)
    if not isinstance(value, str) or value.strip() not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(allowed)}",
            field=field,
        )
    return value.strip()


def parse_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"{field} must be a boolean", field=field)


def parse_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)


def parse_id_list(value: Any, field: str) -> list[str]:
    """Normalize a list of opaque ids, dropping blanks and duplicates (order kept)."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set)):
        raise ValidationError(f"{field} must be a list", field=field)
    seen: list[str] = []
    for item in value:
        if item is None or isinstance(item, bool):
            raise ValidationError(f"{field} contains an invalid id", field=field)
        text = str(item).strip()
        if not text:
            raise ValidationError(f"{field} contains an empty id", field=field)
        if text not in seen:
            seen.append(text)
    return seen
