"""Fee ledger schemas. JSON uses the domain's camelCase field names (tuitionFee, totalAmount, ...)."""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from app.core.enums import AllocationStatus, PaymentMethod

from .scheduler import MAX_INSTALLMENTS, MAX_INTERVAL_DAYS

ACADEMIC_YEAR_PATTERN = re.compile(r"^(\d{4})-(\d{4})$")


def validate_academic_year(value: str) -> str:
    value = value.strip()
    match = ACADEMIC_YEAR_PATTERN.match(value)
    if not match:
        raise ValueError("Academic year format should be YYYY-YYYY")
    start, end = int(match.group(1)), int(match.group(2))
    if end != start + 1:
        raise ValueError("Academic year must span two consecutive years")
    return value


class FeeSchema(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# --- Structure / discounts / late fees ---
class FeeStructureIn(FeeSchema):
    """Component amounts. Unset components fall back to the class default (create) or stay unchanged (update)."""

    tuition_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    admission_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    exam_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    library_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    lab_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    transport_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    sports_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    development_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    miscellaneous_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)


class FeeStructureOut(FeeSchema):
    tuition_fee: Decimal
    admission_fee: Decimal
    exam_fee: Decimal
    library_fee: Decimal
    lab_fee: Decimal
    transport_fee: Decimal
    sports_fee: Decimal
    development_fee: Decimal
    miscellaneous_fee: Decimal


class DiscountsIn(FeeSchema):
    scholarship_percentage: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)
    sibling_discount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    staff_ward_discount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    other_discount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    discount_reason: Optional[str] = None


class DiscountsOut(FeeSchema):
    scholarship_percentage: Decimal
    sibling_discount: Decimal
    staff_ward_discount: Decimal
    other_discount: Decimal
    discount_reason: Optional[str] = None


class LateFeeSettingsIn(FeeSchema):
    late_fee_percentage: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)
    grace_period_days: Optional[int] = Field(None, ge=0)


class LateFeesOut(FeeSchema):
    total_late_fee: Decimal
    late_fee_percentage: Decimal
    grace_period_days: int


# --- Ledger requests ---
class FeeLedgerCreate(FeeSchema):
    student_id: UUID
    class_id: UUID
    academic_year: str
    fee_structure: FeeStructureIn = Field(default_factory=FeeStructureIn)
    discounts: DiscountsIn = Field(default_factory=DiscountsIn)
    late_fees: Optional[LateFeeSettingsIn] = None
    remarks: Optional[str] = None

    @field_validator("academic_year")
    @classmethod
    def check_academic_year(cls, value: str) -> str:
        return validate_academic_year(value)


class FeeLedgerUpdate(FeeSchema):
    fee_structure: Optional[FeeStructureIn] = None
    discounts: Optional[DiscountsIn] = None
    late_fees: Optional[LateFeeSettingsIn] = None
    remarks: Optional[str] = None


class BillClassRequest(FeeSchema):
    class_id: UUID
    academic_year: str
    fee_structure: FeeStructureIn = Field(default_factory=FeeStructureIn)
    discounts: DiscountsIn = Field(default_factory=DiscountsIn)

    @field_validator("academic_year")
    @classmethod
    def check_academic_year(cls, value: str) -> str:
        return validate_academic_year(value)


class WaiveRequest(FeeSchema):
    reason: str = Field(..., min_length=1)


class InstallmentScheduleRequest(FeeSchema):
    # Lower bounds are checked by the scheduler so they fail as InvalidScheduleRequest
    count: int = Field(..., le=MAX_INSTALLMENTS)
    first_due_date: date
    interval_days: int = Field(30, le=MAX_INTERVAL_DAYS)


class LateFeeSweepRequest(FeeSchema):
    as_of: Optional[date] = None


# --- Payments ---
class BankDetails(FeeSchema):
    bank_name: Optional[str] = None
    cheque_number: Optional[str] = None
    cheque_date: Optional[date] = None


class PaymentCreate(FeeSchema):
    # Amount is validated by the payment recorder so the failure carries the domain message
    amount: Decimal
    payment_method: PaymentMethod
    receipt_number: Optional[str] = Field(None, max_length=50)
    installment_number: Optional[int] = None
    transaction_id: Optional[str] = Field(None, max_length=100)
    payment_date: Optional[datetime] = None
    bank_details: Optional[BankDetails] = None
    remarks: Optional[str] = None


class PaymentEntryResponse(FeeSchema):
    id: UUID
    sequence: int
    amount: Decimal
    payment_date: datetime
    payment_method: str
    transaction_id: Optional[str] = None
    receipt_number: str
    collected_by: UUID
    bank_details: Optional[BankDetails] = None
    remarks: Optional[str] = None
    installment_number: Optional[int] = None


class InstallmentResponse(FeeSchema):
    installment_number: int
    due_date: date
    amount: Decimal
    paid_amount: Decimal
    status: str
    paid_date: Optional[datetime] = None
    late_fee: Decimal
    last_accrual_date: Optional[date] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    receipt_number: Optional[str] = None


class FeeLedgerResponse(FeeSchema):
    id: UUID
    school_id: UUID
    student_id: UUID
    class_id: UUID
    academic_year: str
    fee_structure: FeeStructureOut
    discounts: DiscountsOut
    late_fees: LateFeesOut
    gross_amount: Decimal
    total_discount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    status: str
    installments: List[InstallmentResponse]
    payments: List[PaymentEntryResponse]
    schedule_drift: Optional[Decimal] = None
    is_waived: bool
    waiver_reason: Optional[str] = None
    remarks: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PaymentAllocation(FeeSchema):
    status: AllocationStatus
    installment_number: Optional[int] = None
    message: Optional[str] = None


class PaymentResult(FeeSchema):
    ledger: FeeLedgerResponse
    payment: PaymentEntryResponse
    allocation: PaymentAllocation


# --- Summaries / lists ---
class StudentFeeSummary(FeeSchema):
    student_id: UUID
    academic_year: Optional[str] = None
    total_billed: Decimal
    total_paid: Decimal
    total_due: Decimal
    ledger_count: int
    ledgers: List[FeeLedgerResponse]


class Pagination(FeeSchema):
    page: int
    limit: int
    pages: int


class FeeLedgerList(FeeSchema):
    count: int
    total: int
    pagination: Pagination
    data: List[FeeLedgerResponse]


class StatusBreakdown(FeeSchema):
    status: str
    count: int
    total_amount: Decimal
    total_paid: Decimal
    total_due: Decimal


class MonthlyCollection(FeeSchema):
    year: int
    month: int
    amount: Decimal


class DashboardSummary(FeeSchema):
    academic_year: Optional[str] = None
    by_status: List[StatusBreakdown]
    monthly: List[MonthlyCollection]


class BillClassResponse(FeeSchema):
    created: List[FeeLedgerResponse]
    skipped_student_ids: List[UUID]


class LateFeeSweepResult(FeeSchema):
    as_of: date
    ledgers_checked: int
    ledgers_charged: int
    total_accrued: Decimal
