"""Discount, VAT and total computation for invoices and payments."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from medibill.models import Discount, InvoiceItem, PriceBreakdown
from medibill.normalization.amounts import coerce_amount, item_amount

TAX_RATE = Decimal("0.12")
NON_TAXABLE_CATEGORIES = ("consultation", "laboratory", "diagnostic", "service", "procedure")
ZERO = Decimal("0")

Number = Union[Decimal, float, int, str]


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    amount = coerce_amount(value)
    return ZERO if amount is None else Decimal(str(amount))


def quantize(value: Number) -> Decimal:
    return _to_decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass
class DiscountSelection:
    """Discount state of a payment or invoice form.

    A cashier can pick a named discount from the catalog or type a manual
    type/value. Picking a named discount does not erase the manual fields:
    the named discount is the active one while it is selected, and the manual
    entry applies again once the selection is cleared.
    """

    named: Optional[Discount] = None
    manual_type: str = "percentage"
    manual_value: Optional[float] = None

    def select(self, discount: Discount) -> None:
        self.named = discount

    def clear_selection(self) -> None:
        self.named = None

    def set_manual(self, value: Optional[float], discount_type: str = "percentage") -> None:
        self.manual_value = value
        self.manual_type = discount_type

    @property
    def active(self) -> Optional[Tuple[str, Decimal]]:
        """``(type, value)`` of the discount in effect, or ``None``."""
        if self.named is not None:
            return self.named.type, _to_decimal(self.named.value)
        if self.manual_value in (None, ""):
            return None
        return self.manual_type, _to_decimal(self.manual_value)

    @property
    def label(self) -> str:
        if self.named is not None:
            return self.named.name or self.named.code
        return "Manual discount" if self.active else ""


DiscountInput = Union[DiscountSelection, Discount, None]


def _active_discount(
    discount: DiscountInput, value: Optional[Number], discount_type: Optional[str]
) -> Optional[Tuple[str, Decimal]]:
    if isinstance(discount, DiscountSelection):
        return discount.active
    if isinstance(discount, Discount):
        return discount.type, _to_decimal(discount.value)
    if value in (None, ""):
        return None
    return discount_type or "percentage", _to_decimal(value)


def compute_discount(
    subtotal: Number,
    discount: DiscountInput = None,
    *,
    value: Optional[Number] = None,
    discount_type: Optional[str] = None,
) -> Decimal:
    """Percentage discounts scale with the subtotal; fixed and service discounts are flat."""
    subtotal_dec = _to_decimal(subtotal)
    active = _active_discount(discount, value, discount_type)
    if active is None or subtotal_dec <= ZERO:
        return ZERO
    kind, amount = active
    if kind == "percentage":
        amount = subtotal_dec * amount / Decimal("100")
    return quantize(max(ZERO, amount))


def is_taxable_item(item: Any) -> bool:
    if isinstance(item, InvoiceItem):
        category = item.category
    elif isinstance(item, Mapping):
        category = item.get("category")
    else:
        return False
    category = str(category or "").lower()
    return not any(non_taxable in category for non_taxable in NON_TAXABLE_CATEGORIES)


def taxable_base(items: Iterable[Any]) -> Decimal:
    """Sum of line amounts subject to VAT; consultations, labs and other services are exempt."""
    return quantize(sum((_to_decimal(item_amount(item)) for item in items or [] if is_taxable_item(item)), ZERO))


def compute_tax(
    subtotal: Number,
    discount_amount: Number,
    items: Optional[Iterable[Any]],
    rate: Number = TAX_RATE,
) -> Decimal:
    """VAT on the taxable share of the subtotal, after pro-rating the discount onto it."""
    subtotal_dec = _to_decimal(subtotal)
    items = list(items or [])
    if subtotal_dec <= ZERO or not items:
        return ZERO
    base = taxable_base(items)
    if base <= ZERO:
        return ZERO
    discount_share = _to_decimal(discount_amount) * base / subtotal_dec
    taxable_after_discount = max(ZERO, base - discount_share)
    return quantize(taxable_after_discount * _to_decimal(rate))


def compute_total(subtotal: Number, discount: Number, tax: Number) -> Decimal:
    total = _to_decimal(subtotal) - _to_decimal(discount) + _to_decimal(tax)
    return quantize(max(ZERO, total))


def compute(
    subtotal: Number,
    discount: DiscountInput = None,
    items: Optional[Iterable[Any]] = None,
    *,
    discount_value: Optional[Number] = None,
    discount_type: Optional[str] = None,
    tax_rate: Number = TAX_RATE,
) -> PriceBreakdown:
    """Price a subtotal: discount, taxable base, VAT and a non-negative total."""
    subtotal_dec = quantize(subtotal)
    items = list(items or [])
    if subtotal_dec <= ZERO:
        return PriceBreakdown(
            subtotal=quantize(0), discount_amount=quantize(0), taxable_base=quantize(0),
            tax_amount=quantize(0), total=quantize(0),
        )
    discount_amount = compute_discount(subtotal_dec, discount, value=discount_value, discount_type=discount_type)
    tax_amount = compute_tax(subtotal_dec, discount_amount, items, rate=tax_rate)
    return PriceBreakdown(
        subtotal=subtotal_dec,
        discount_amount=discount_amount,
        taxable_base=taxable_base(items) if items else quantize(0),
        tax_amount=tax_amount,
        total=compute_total(subtotal_dec, discount_amount, tax_amount),
    )


__all__ = [
    "TAX_RATE",
    "NON_TAXABLE_CATEGORIES",
    "DiscountSelection",
    "quantize",
    "compute_discount",
    "is_taxable_item",
    "taxable_base",
    "compute_tax",
    "compute_total",
    "compute",
]
