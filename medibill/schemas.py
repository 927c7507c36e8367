"""Pydantic schemas for the billing API."""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

RecordType = Literal["invoice", "payment", "pharmacy", "service"]
RecordStatus = Literal["completed", "pending", "cancelled", "refunded"]
PaymentStatus = Literal["completed", "processing", "pending", "failed"]
DiscountType = Literal["percentage", "fixed", "service"]


class BillingRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: RecordType
    number: str
    patient_name: str
    patient_id: str
    date: date
    amount: float
    status: RecordStatus
    description: str = ""
    time: Optional[str] = None
    payment_method: Optional[str] = None
    department: Optional[str] = None
    reference: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    items: List[Dict[str, Any]] = Field(default_factory=list)
    subtotal: Optional[float] = None
    discount: Optional[float] = None
    tax: Optional[float] = None


class InvoiceRecordCreate(BaseModel):
    invoice_number: str = Field(..., min_length=1)
    patient_name: str
    patient_id: str
    amount: float = Field(..., ge=0)
    description: str = ""
    record_date: Optional[date] = None
    time: Optional[str] = None
    department: Optional[str] = None
    invoice_id: Optional[str] = None
    subtotal: Optional[float] = None
    discount: Optional[float] = None
    discount_type: Optional[str] = None
    discount_percentage: Optional[float] = None
    tax: Optional[float] = None
    tax_rate: Optional[float] = None
    total_before_tax: Optional[float] = None
    items: List[Dict[str, Any]] = Field(default_factory=list)


class PaymentRecordCreate(BaseModel):
    invoice_number: str = Field(..., min_length=1)
    patient_name: str
    patient_id: str
    amount: float = Field(..., gt=0)
    method: str = "cash"
    reference: str = ""
    record_date: Optional[date] = None
    time: Optional[str] = None
    status: PaymentStatus = "completed"
    invoice_id: Optional[str] = None

    @field_validator("method")
    @classmethod
    def _lowercase_method(cls, value: str) -> str:
        return value.strip().lower()


class StatusUpdate(BaseModel):
    status: RecordStatus


class AutomationResponse(BaseModel):
    settled: List[str]
    voided: List[str]


class DashboardMetrics(BaseModel):
    total_revenue: Decimal
    revenue_today: Decimal
    pending_invoices: int
    pending_amount: Decimal
    completed_records: int
    cancelled_records: int


class QuoteRequest(BaseModel):
    subtotal: Decimal = Field(..., ge=0)
    discount_code: Optional[str] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0)
    discount_type: DiscountType = "percentage"
    items: List[Dict[str, Any]] = Field(default_factory=list)
    as_of: Optional[date] = None

    @field_validator("subtotal", "discount_value", mode="before")
    @classmethod
    def _normalize_amount(cls, value: Any) -> Any:
        if value is None:
            return None
        return Decimal(str(value))


class QuoteResponse(BaseModel):
    subtotal: Decimal
    discount_amount: Decimal
    taxable_base: Decimal
    tax_amount: Decimal
    total: Decimal
    discount_label: str = ""


class DiscountBase(BaseModel):
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    type: DiscountType = "percentage"
    value: float = Field(..., ge=0)
    category: str
    start_date: date
    end_date: date
    is_active: bool = True
    max_usage: Optional[int] = Field(default=None, ge=1)
    description: str = ""
    conditions: Optional[str] = None
    applicable_services: List[str] = Field(default_factory=list)


class DiscountCreate(DiscountBase):
    pass


class DiscountResponse(DiscountBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    usage_count: int


class DiscountValidationResponse(BaseModel):
    valid: bool
    message: Optional[str] = None
    discount: Optional[DiscountResponse] = None


class SyncSuppression(BaseModel):
    suppressed: bool


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    title: str
    message: str
    created_at: str
