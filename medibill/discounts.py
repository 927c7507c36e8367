"""Admin-managed discount master data and the validity rules cashiers apply."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from medibill.errors import DiscountValidationError
from medibill.events import DISCOUNTS_CHANGED, DiscountsChanged, EventBus
from medibill.models import Discount, DiscountType

LOGGER = logging.getLogger(__name__)

DISCOUNT_TYPES = ("percentage", "fixed", "service")
DISCOUNT_CATEGORIES = ("senior", "pwd", "employee", "insurance", "promotional", "seasonal")


@dataclass(frozen=True)
class DiscountValidation:
    valid: bool
    message: Optional[str] = None
    discount: Optional[Discount] = None


def _as_date(value: date | datetime | None) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    return value


def validate_discount(discount: Optional[Discount], now: date | datetime | None = None) -> DiscountValidation:
    """Check whether a discount can be applied on ``now``.

    Checks run in order (existence, active flag, start date, end date, usage
    limit) and the first failure is reported. Start and end dates are inclusive.
    """
    if discount is None:
        return DiscountValidation(False, "Discount code not found")
    if not discount.is_active:
        return DiscountValidation(False, "Discount code is inactive", discount)
    today = _as_date(now)
    if today < discount.start_date:
        return DiscountValidation(False, "Discount not yet valid", discount)
    if today > discount.end_date:
        return DiscountValidation(False, "Discount has expired", discount)
    if discount.max_usage and discount.usage_count >= discount.max_usage:
        return DiscountValidation(False, "Discount usage limit reached", discount)
    return DiscountValidation(True, None, discount)


class DiscountCatalog:
    """In-memory discount catalog. Codes are unique regardless of case."""

    def __init__(self, bus: Optional[EventBus] = None, seed_defaults: bool = True) -> None:
        self._bus = bus
        self._discounts: Dict[str, Discount] = {}
        if seed_defaults:
            self._seed_defaults()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_discounts(self) -> List[Discount]:
        return list(self._discounts.values())

    def get_discount(self, discount_id: str) -> Discount:
        try:
            return self._discounts[discount_id]
        except KeyError as exc:
            raise KeyError(f"Unknown discount '{discount_id}'") from exc

    def get_by_code(self, code: str) -> Optional[Discount]:
        wanted = (code or "").strip().lower()
        return next((d for d in self._discounts.values() if d.code.lower() == wanted), None)

    def get_active(self) -> List[Discount]:
        return [discount for discount in self._discounts.values() if discount.is_active]

    def search(self, query: str) -> List[Discount]:
        needle = (query or "").lower()
        return [
            discount
            for discount in self._discounts.values()
            if needle in discount.name.lower()
            or needle in discount.code.lower()
            or needle in discount.category.lower()
            or needle in discount.description.lower()
        ]

    def by_category(self, category: str) -> List[Discount]:
        if category == "all":
            return self.list_discounts()
        return [discount for discount in self._discounts.values() if discount.category == category]

    def validate_code(self, code: str, now: date | datetime | None = None) -> DiscountValidation:
        return validate_discount(self.get_by_code(code), now)

    def statistics(self) -> Dict[str, int]:
        discounts = self.list_discounts()
        return {
            "total_discounts": len(discounts),
            "active_discounts": sum(1 for d in discounts if d.is_active),
            "inactive_discounts": sum(1 for d in discounts if not d.is_active),
            "total_usage": sum(d.usage_count for d in discounts),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create_discount(
        self,
        *,
        code: str,
        name: str,
        type: DiscountType,
        value: float,
        category: str,
        start_date: date,
        end_date: date,
        is_active: bool = True,
        max_usage: Optional[int] = None,
        description: str = "",
        conditions: Optional[str] = None,
        applicable_services: Optional[Iterable[str]] = None,
        discount_id: Optional[str] = None,
        usage_count: int = 0,
    ) -> Discount:
        discount = Discount(
            id=discount_id or str(uuid4()),
            code=(code or "").strip(),
            name=(name or "").strip(),
            type=type,
            value=value,
            category=category,
            start_date=start_date,
            end_date=end_date,
            is_active=is_active,
            usage_count=usage_count,
            max_usage=max_usage,
            description=description,
            conditions=conditions,
            applicable_services=list(applicable_services or []),
        )
        self._check(discount)
        self._discounts[discount.id] = discount
        LOGGER.info("Created discount %s", discount.code)
        self._publish("create", discount)
        return discount

    def update_discount(self, discount_id: str, **changes: Any) -> Discount:
        current = self.get_discount(discount_id)
        unknown = set(changes) - set(current.__dataclass_fields__)
        if unknown:
            raise DiscountValidationError(f"Unknown discount fields: {', '.join(sorted(unknown))}")
        changes.pop("id", None)
        updated = replace(current, **changes)
        self._check(updated)
        self._discounts[discount_id] = updated
        self._publish("update", updated)
        return updated

    def delete_discount(self, discount_id: str) -> bool:
        discount = self._discounts.pop(discount_id, None)
        if discount is None:
            return False
        self._publish("delete", discount)
        return True

    def toggle_discount(self, discount_id: str) -> Discount:
        return self.update_discount(discount_id, is_active=not self.get_discount(discount_id).is_active)

    def increment_usage(self, code: str) -> Optional[Discount]:
        discount = self.get_by_code(code)
        if discount is None:
            LOGGER.debug("Usage not recorded, unknown discount code %s", code)
            return None
        return self.update_discount(discount.id, usage_count=discount.usage_count + 1)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _check(self, discount: Discount) -> None:
        if not discount.code or not discount.name:
            raise DiscountValidationError("Discount code and name are required")
        if discount.type not in DISCOUNT_TYPES:
            raise DiscountValidationError(f"Unsupported discount type '{discount.type}'")
        try:
            value = float(discount.value)
        except (TypeError, ValueError) as exc:
            raise DiscountValidationError("Discount value must be a number") from exc
        if value < 0 or (discount.type == "percentage" and value > 100):
            raise DiscountValidationError("Discount value is out of range")
        if discount.end_date < discount.start_date:
            raise DiscountValidationError("Discount end date is before its start date")
        clash = self.get_by_code(discount.code)
        if clash is not None and clash.id != discount.id:
            raise DiscountValidationError(f'Discount code "{discount.code}" already exists')

    def _publish(self, action: str, discount: Discount) -> None:
        if self._bus is not None:
            self._bus.publish(
                DISCOUNTS_CHANGED,
                DiscountsChanged(action=action, discount_id=discount.id, code=discount.code),
                retain=True,
            )

    def _seed_defaults(self) -> None:
        """Register the hospital's standing discounts."""

        year_start, year_end = date(2025, 1, 1), date(2025, 12, 31)
        defaults = [
            ("1", "SENIOR20", "Senior Citizen Discount", 20, "senior", 145,
             "20% discount for senior citizens (60 years and above)",
             "Valid ID required. Cannot be combined with other offers."),
            ("2", "PWD20", "PWD Discount", 20, "pwd", 89,
             "20% discount for Persons with Disabilities", "Valid PWD ID required."),
            ("3", "EMP15", "Employee Discount", 15, "employee", 67,
             "15% discount for hospital employees and their families", "Valid employee ID required."),
            ("5", "INSURANCE", "Insurance Coverage", 0, "insurance", 234,
             "Variable insurance coverage discount", "Insurance company authorization required."),
            ("6", "CHARITY50", "Charity Care", 50, "promotional", 45,
             "50% discount for charity care patients", "Social worker approval required."),
            ("7", "PROMPT5", "Prompt Payment Discount", 5, "promotional", 178,
             "5% discount for immediate payment", "Payment must be made within 24 hours of invoice."),
        ]
        for discount_id, code, name, value, category, usage, description, conditions in defaults:
            self._discounts[discount_id] = Discount(
                id=discount_id, code=code, name=name, type="percentage", value=value,
                category=category, start_date=year_start, end_date=year_end,
                usage_count=usage, description=description, conditions=conditions,
            )
        self._discounts["4"] = Discount(
            id="4",
            code="NEWYEAR2025",
            name="New Year Health Check",
            type="percentage",
            value=30,
            category="seasonal",
            start_date=year_start,
            end_date=date(2025, 1, 31),
            usage_count=23,
            max_usage=100,
            description="30% off all diagnostic tests for January",
            applicable_services=["Blood Test", "X-Ray", "ECG", "Ultrasound"],
        )


__all__ = [
    "DISCOUNT_TYPES",
    "DISCOUNT_CATEGORIES",
    "DiscountValidation",
    "validate_discount",
    "DiscountCatalog",
]
