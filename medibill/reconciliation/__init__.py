"""Reconciliation of upstream invoice, payment, EMR and pharmacy feeds."""

from .poller import PollNotification, PollResult, ReconciliationPoller

__all__ = [
    "ReconciliationPoller",
    "PollNotification",
    "PollResult",
]
