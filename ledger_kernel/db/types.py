"""
Module: ledger_kernel.db.types
Responsibility: Column types shared by every model (ShortCode, Label,
    UUIDString) and the helpers that coerce and quantize amounts before
    they reach a Numeric column.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Amounts are Decimal, never float.
    - round_money() is the ONLY sanctioned rounding function.  Balance
      comparisons happen on values quantized to the minor unit, so equality
      is exact with no tolerance.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Mapping
from uuid import UUID

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

# Column-width markers, resolved through Base.type_annotation_map
ShortCode = Annotated[str, 50]
Label = Annotated[str, 255]

# Minor currency unit (cents)
MINOR_UNIT_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")

# Exclusive bound on a single amount.  Quantizing and summing stay inside the
# default 28-digit decimal context.
MAX_AMOUNT = Decimal(10) ** 18


def round_money(
    value: Decimal,
    decimal_places: int = MINOR_UNIT_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the minor unit.

    Every amount that crosses a domain boundary goes through here so that
    ``sum(debits) == sum(credits)`` is an exact comparison.

    Raises:
        ValueError: If the value is not finite or its magnitude reaches
            MAX_AMOUNT.
    """
    if not value.is_finite() or abs(value) >= MAX_AMOUNT:
        raise ValueError(f"Amount out of range: {value}")
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    try:
        return value.quantize(Decimal(quantize_str), rounding=rounding)
    except InvalidOperation as exc:
        raise ValueError(f"Amount cannot be rounded: {value}") from exc


def to_decimal(value: Any) -> Decimal:
    """
    Coerce an int, str or Decimal to Decimal.

    Floats are converted through their shortest repr so that a JSON payload
    value of ``100.1`` becomes ``Decimal("100.1")`` rather than the binary
    expansion.  Booleans are rejected.

    Raises:
        ValueError: If the value is not a finite number below MAX_AMOUNT.
    """
    if isinstance(value, bool):
        raise ValueError(f"Boolean is not a monetary amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a numeric value: {value!r}") from exc
    else:
        raise ValueError(f"Not a numeric value: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    if abs(result) >= MAX_AMOUNT:
        raise ValueError(f"Amount out of range: {value!r}")
    return result


def to_money(value: Any) -> Decimal:
    """Coerce to Decimal and quantize to the minor unit."""
    return round_money(to_decimal(value))


def json_safe(value: Any) -> Any:
    """Copy of a payload that a JSON column can store (Decimal -> str, dates -> ISO)."""
    if isinstance(value, Mapping):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


class UUIDString(TypeDecorator):
    """UUID column stored as its 36-character text form on every backend."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)
