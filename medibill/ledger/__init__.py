"""Billing ledger owning the unified invoice and payment history."""

from .engine import AutomationResult, BillingLedger, format_payment_method

__all__ = [
    "BillingLedger",
    "AutomationResult",
    "format_payment_method",
]
