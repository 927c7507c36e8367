"""Numeric and field-precedence helpers for loosely shaped upstream records."""
from __future__ import annotations

import logging
import math
from typing import Any, Mapping, Optional, Sequence

LOGGER = logging.getLogger(__name__)

_CURRENCY_MARKS = ("₱", "$", "PHP", "php", ",")


def coerce_amount(value: Any) -> Optional[float]:
    """Return ``value`` as a float, or ``None`` when it is not a usable number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    cleaned = str(value)
    for mark in _CURRENCY_MARKS:
        cleaned = cleaned.replace(mark, "")
    cleaned = cleaned.strip()
    if cleaned == "":
        return None
    multiplier = -1.0 if cleaned.startswith("(") and cleaned.endswith(")") else 1.0
    cleaned = cleaned.strip("()")
    try:
        number = float(cleaned) * multiplier
    except ValueError:
        LOGGER.debug("Failed to parse amount: %r", value)
        return None
    return number if math.isfinite(number) else None


def first_present(record: Mapping[str, Any], candidates: Sequence[str]) -> Any:
    """Return the value of the first candidate key that is present and not null."""
    for name in candidates:
        value = record.get(name)
        if value is not None:
            return value
    return None


def first_truthy(record: Mapping[str, Any], candidates: Sequence[str]) -> Any:
    for name in candidates:
        value = record.get(name)
        if value:
            return value
    return None


def pick_amount(
    record: Mapping[str, Any], candidates: Sequence[str], default: float = 0.0
) -> float:
    """Coerce the first present candidate field; malformed or missing values give ``default``."""
    if not isinstance(record, Mapping):
        return default
    amount = coerce_amount(first_present(record, candidates))
    return default if amount is None else amount


def pick_nonzero_amount(
    record: Mapping[str, Any], candidates: Sequence[str], default: float = 0.0
) -> float:
    """Like :func:`pick_amount` but skips zero and unparsable candidates."""
    if not isinstance(record, Mapping):
        return default
    for name in candidates:
        amount = coerce_amount(record.get(name))
        if amount:
            return amount
    return default


def pick_text(record: Mapping[str, Any], candidates: Sequence[str], default: str = "") -> str:
    if not isinstance(record, Mapping):
        return default
    value = first_truthy(record, candidates)
    return default if value is None else str(value)


def item_amount(item: Any) -> float:
    """Line total of an invoice item given as a mapping or an ``InvoiceItem``."""
    if isinstance(item, Mapping):
        for name in ("totalPrice", "amount", "price", "unitPrice"):
            amount = coerce_amount(item.get(name))
            if amount:
                return amount
        return 0.0
    return coerce_amount(getattr(item, "amount", None)) or 0.0


def item_text(item: Any, name: str) -> str:
    if isinstance(item, Mapping):
        value = item.get(name)
    else:
        value = getattr(item, name, None)
    return "" if value is None else str(value)


__all__ = [
    "coerce_amount",
    "first_present",
    "first_truthy",
    "pick_amount",
    "pick_nonzero_amount",
    "pick_text",
    "item_amount",
    "item_text",
]
