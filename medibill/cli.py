"""Command line interface for the billing reconciliation engine."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, List

from medibill import calculator
from medibill.clients import unwrap_collection
from medibill.config import get_settings
from medibill.discounts import DiscountCatalog
from medibill.normalization import cashier_queue, normalize_patients

LOGGER = logging.getLogger(__name__)


def _load_rows(path: Path) -> List[Any]:
    return unwrap_collection(json.loads(path.read_text(encoding="utf-8")))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="medibill", description="Hospital billing reconciliation")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    queue = commands.add_parser("queue", help="Normalize invoices into the cashier queue")
    queue.add_argument("invoices", type=Path, help="Invoices JSON (list or {data: [...]})")
    queue.add_argument("payments", type=Path, help="Payments JSON")
    queue.add_argument("--patients", type=Path, help="Optional patients JSON for display ids")
    queue.add_argument("-o", "--output", type=Path, help="Write JSON here instead of stdout")

    quote = commands.add_parser("quote", help="Price a subtotal with discount and VAT")
    quote.add_argument("subtotal", type=Decimal)
    quote.add_argument("--discount-code", help="Named discount from the catalog, e.g. SENIOR20")
    quote.add_argument("--discount-value", type=Decimal, help="Manual discount value")
    quote.add_argument("--discount-type", default="percentage", choices=["percentage", "fixed", "service"])
    quote.add_argument("--items", type=Path, help="Invoice lines JSON used for the taxable base")
    quote.add_argument("--as-of", type=date.fromisoformat, help="Date the discount must be valid on")
    return parser


def _queue(args: argparse.Namespace) -> int:
    invoices = _load_rows(args.invoices)
    payments = _load_rows(args.payments)
    patients = normalize_patients(_load_rows(args.patients)) if args.patients else []
    queue = cashier_queue(invoices, payments, patients)
    payload = json.dumps([asdict(invoice) for invoice in queue], indent=2)
    if args.output:
        args.output.write_text(payload, encoding="utf-8")
        LOGGER.info("Wrote %d invoices to %s", len(queue), args.output)
    else:
        print(payload)
    return 0


def _quote(args: argparse.Namespace) -> int:
    settings = get_settings()
    selection = calculator.DiscountSelection()
    if args.discount_value is not None:
        selection.set_manual(args.discount_value, args.discount_type)
    if args.discount_code:
        validation = DiscountCatalog().validate_code(args.discount_code, args.as_of)
        if not validation.valid:
            print(f"error: {validation.message}", file=sys.stderr)
            return 2
        selection.select(validation.discount)
    items = _load_rows(args.items) if args.items else []
    breakdown = calculator.compute(
        args.subtotal, selection, items, tax_rate=Decimal(str(settings.tax_rate))
    )
    print(json.dumps({key: str(value) for key, value in asdict(breakdown).items()}, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    if args.command == "queue":
        return _queue(args)
    return _quote(args)


if __name__ == "__main__":
    raise SystemExit(main())
