from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation

from verifactu.services.exceptions import ValidationError


def validate_amount(value: object) -> str:
    """Validate and normalize a monetary amount.

    Returns the value with exactly 2 decimal places (AEAT XSD format).
    Negative amounts are allowed (rectifications by differences).
    Raises ValueError for non-numeric or non-finite values.
    """
    try:
        d = Decimal(str(value).strip())
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Invalid amount: '{value}'") from None
    return f"{d:.2f}"


def validate_rate(value: object) -> str:
    """Validate and normalize a tax rate percentage (0.00-100.00)."""
    try:
        d = Decimal(str(value).strip())
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Invalid rate: '{value}'") from None
    if d < 0 or d > 100:
        raise ValueError("Rate must be between 0.00 and 100.00")
    return f"{d:.2f}"


def validate_date(value: str) -> str:
    """Validate an AEAT date string (DD-MM-YYYY).

    Returns the value unchanged if valid.
    """
    value = str(value or "").strip()
    if not re.fullmatch(r"\d{2}-\d{2}-\d{4}", value):
        raise ValueError(f"Invalid date: '{value}'. Use DD-MM-YYYY.")
    try:
        datetime.strptime(value, "%d-%m-%Y")
    except ValueError:
        raise ValueError(f"Invalid date: '{value}'. Use DD-MM-YYYY.") from None
    return value


def validate_timestamp(value: str) -> str:
    """Validate an ISO 8601 timestamp that carries a UTC offset."""
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid timestamp: '{value}'") from None
    if parsed.tzinfo is None:
        raise ValueError(f"Timestamp must include a UTC offset: '{value}'")
    return value


def validate_tax_id(value: str) -> str:
    """Validate a Spanish NIF: 9 alphanumeric characters."""
    normalized = str(value or "").strip().upper()
    if not re.fullmatch(r"[A-Z0-9]{9}", normalized):
        raise ValueError(f"NIF must have 9 alphanumeric characters: '{value}'")
    return normalized


def validate_country(value: object) -> str:
    """Validate a country code: exactly 2 uppercase letters (ISO 3166-1 alpha-2)."""
    normalized = ("" if value is None else str(value)).strip().upper()
    if not re.fullmatch(r"[A-Z]{2}", normalized):
        raise ValueError(f"Country must be an ISO 3166-1 alpha-2 code: '{value}'")
    return normalized


def validate_text(value: object, field: str, max_length: int) -> str:
    """Validate a required free-text field against its XSD length limit."""
    text = ("" if value is None else str(value)).strip()
    if not text:
        raise ValueError(f"{field}: required")
    if len(text) > max_length:
        raise ValueError(f"{field}: at most {max_length} characters")
    return text


def ensure(func, *args):
    """Run a validator, re-raising its ValueError as ValidationError."""
    try:
        return func(*args)
    except ValidationError:
        raise
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
