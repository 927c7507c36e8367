"""FastAPI application exposing the billing ledger, pricing and discount catalog."""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from typing import AsyncIterator, List, Optional

from fastapi import Depends, FastAPI, HTTPException

from medibill import calculator
from medibill.config import BillingSettings, get_settings
from medibill.context import BillingContext, create_context
from medibill.errors import ValidationError
from medibill.schemas import (
    AutomationResponse,
    BillingRecordResponse,
    DashboardMetrics,
    DiscountCreate,
    DiscountResponse,
    DiscountValidationResponse,
    InvoiceRecordCreate,
    NotificationResponse,
    PaymentRecordCreate,
    QuoteRequest,
    QuoteResponse,
    StatusUpdate,
    SyncSuppression,
)

_settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    context = get_context(_settings)
    if _settings.background_tasks:
        context.start()
    try:
        yield
    finally:
        await context.stop()


app = FastAPI(title=_settings.app_name, version="0.1.0", lifespan=lifespan)


def get_context(settings: BillingSettings = Depends(get_settings)) -> BillingContext:
    context = getattr(app.state, "context", None)
    if context is None:
        context = create_context(settings)
        app.state.context = context
    return context


def _record(record) -> BillingRecordResponse:
    return BillingRecordResponse.model_validate(record)


@app.get("/api/records", response_model=List[BillingRecordResponse])
def list_records(
    type: Optional[str] = None,
    patient_id: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    context: BillingContext = Depends(get_context),
) -> List[BillingRecordResponse]:
    ledger = context.ledger
    if start or end:
        records = ledger.get_records_by_date_range(start or date.min, end or date.max)
    else:
        records = ledger.get_all_records()
    if type:
        records = [r for r in records if r.type == type]
    if patient_id:
        records = [r for r in records if r.patient_id == patient_id]
    return [_record(r) for r in records]


@app.post("/api/records/invoices", response_model=BillingRecordResponse, status_code=201)
def create_invoice_record(
    payload: InvoiceRecordCreate,
    context: BillingContext = Depends(get_context),
) -> BillingRecordResponse:
    try:
        record = context.ledger.add_invoice_record(**payload.model_dump())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    context.announce_invoice_created(record.number, record.patient_name, record.amount)
    return _record(record)


@app.post("/api/records/payments", response_model=BillingRecordResponse, status_code=201)
def create_payment_record(
    payload: PaymentRecordCreate,
    context: BillingContext = Depends(get_context),
) -> BillingRecordResponse:
    try:
        record = context.ledger.add_payment_record(**payload.model_dump())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _record(record)


@app.patch("/api/records/{record_id}/status", response_model=BillingRecordResponse)
def update_record_status(
    record_id: str,
    payload: StatusUpdate,
    context: BillingContext = Depends(get_context),
) -> BillingRecordResponse:
    try:
        record = context.ledger.update_record_status(record_id, payload.status)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown billing record '{record_id}'") from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _record(record)


@app.post("/api/automations/run", response_model=AutomationResponse)
def run_automations(context: BillingContext = Depends(get_context)) -> AutomationResponse:
    result = context.ledger.run_automations()
    return AutomationResponse(settled=result.settled, voided=result.voided)


@app.get("/api/dashboard", response_model=DashboardMetrics)
def dashboard(as_of: Optional[date] = None, context: BillingContext = Depends(get_context)) -> DashboardMetrics:
    return DashboardMetrics(**context.ledger.dashboard_metrics(as_of=as_of))


@app.post("/api/pricing/quote", response_model=QuoteResponse)
def quote(payload: QuoteRequest, context: BillingContext = Depends(get_context)) -> QuoteResponse:
    selection = calculator.DiscountSelection()
    if payload.discount_value is not None:
        selection.set_manual(float(payload.discount_value), payload.discount_type)
    if payload.discount_code:
        validation = context.catalog.validate_code(payload.discount_code, payload.as_of)
        if not validation.valid:
            raise HTTPException(status_code=400, detail=validation.message)
        selection.select(validation.discount)
    breakdown = calculator.compute(
        payload.subtotal,
        selection,
        payload.items,
        tax_rate=Decimal(str(context.settings.tax_rate)),
    )
    return QuoteResponse(**asdict(breakdown), discount_label=selection.label)


@app.get("/api/discounts", response_model=List[DiscountResponse])
def list_discounts(
    category: str = "all",
    q: Optional[str] = None,
    active_only: bool = False,
    context: BillingContext = Depends(get_context),
) -> List[DiscountResponse]:
    catalog = context.catalog
    discounts = catalog.search(q) if q else catalog.by_category(category)
    if q and category != "all":
        discounts = [d for d in discounts if d.category == category]
    if active_only:
        discounts = [d for d in discounts if d.is_active]
    return [DiscountResponse.model_validate(d) for d in discounts]


@app.post("/api/discounts", response_model=DiscountResponse, status_code=201)
def create_discount(payload: DiscountCreate, context: BillingContext = Depends(get_context)) -> DiscountResponse:
    try:
        discount = context.catalog.create_discount(**payload.model_dump())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DiscountResponse.model_validate(discount)


@app.get("/api/discounts/{code}/validate", response_model=DiscountValidationResponse)
def validate_discount_code(
    code: str,
    on: Optional[date] = None,
    context: BillingContext = Depends(get_context),
) -> DiscountValidationResponse:
    validation = context.catalog.validate_code(code, on)
    return DiscountValidationResponse(
        valid=validation.valid,
        message=validation.message,
        discount=DiscountResponse.model_validate(validation.discount) if validation.discount else None,
    )


@app.get("/api/sync-suppression", response_model=SyncSuppression)
def get_sync_suppression(context: BillingContext = Depends(get_context)) -> SyncSuppression:
    return SyncSuppression(suppressed=context.ledger.is_remote_sync_suppressed())


@app.put("/api/sync-suppression", response_model=SyncSuppression)
def set_sync_suppression(
    payload: SyncSuppression, context: BillingContext = Depends(get_context)
) -> SyncSuppression:
    context.ledger.set_remote_sync_suppressed(payload.suppressed)
    return SyncSuppression(suppressed=context.ledger.is_remote_sync_suppressed())


@app.get("/api/notifications", response_model=List[NotificationResponse])
def notifications(context: BillingContext = Depends(get_context)) -> List[NotificationResponse]:
    return [NotificationResponse.model_validate(n) for n in context.feed.items()]


__all__ = ["app"]
