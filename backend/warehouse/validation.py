from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


# Upper bound for any single money or rate value (9,999,999.99)
MAX_MONEY = Decimal("9999999.99")
MAX_PAYMENT_TERMS_DAYS = 365

CENT = Decimal("0.01")


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(LookupError):
    """404-level: pallet/location/invoice absent or in the wrong state."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., occupied target location)."""


class VersionConflictError(ConflictError):
    """
    Optimistic concurrency check lost: another writer changed the row first.

    The only conflict that is always safe to retry after a fresh read.
    """


class StoreError(RuntimeError):
    """500-level: the transactional store failed; the unit of work was rolled back."""


def round2(value: Decimal) -> Decimal:
    """Half-up rounding to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def clean_text(value: Any, field: str, *, required: bool = False, max_length: int | None = None) -> str | None:
    if is_blank(value):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def normalize_location_id(value: Any, field: str = "location") -> str:
    location = clean_text(value, field, required=True, max_length=32)
    return location.upper()


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion - rejects floats, bools and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_positive_int(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0")
    return number


def coerce_non_negative_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0")
    return number


def coerce_money(value: Any, field: str) -> Decimal:
    """
    Money/rate coercion to Decimal. Must be finite, >= 0 and within MAX_MONEY.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a valid number >= 0")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a valid number >= 0")
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be a valid number >= 0")
    if amount > MAX_MONEY:
        raise ValidationError(f"{field} cannot exceed {MAX_MONEY}")
    return amount


def coerce_payment_amount(value: Any, field: str = "amount") -> Decimal:
    if is_blank(value):
        raise ValidationError(f"{field} is required")
    amount = coerce_money(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be > 0")
    return round2(amount)


def coerce_payment_terms(value: Any, field: str = "payment_terms_days") -> int:
    try:
        days = coerce_int(value, field)
    except ValidationError:
        raise ValidationError(f"{field} must be an integer between 0 and {MAX_PAYMENT_TERMS_DAYS}")
    if days < 0 or days > MAX_PAYMENT_TERMS_DAYS:
        raise ValidationError(f"{field} must be an integer between 0 and {MAX_PAYMENT_TERMS_DAYS}")
    return days


def coerce_currency(value: Any, default: str) -> str:
    if is_blank(value):
        return default
    code = str(value).strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError("currency must be a 3-letter code")
    return code
