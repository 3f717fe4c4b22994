"""Fees router: ledgers, payments, installment plans, summaries, bulk billing, waivers, late-fee sweep."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_fee_capability, require_school_admin
from app.auth.schemas import CurrentUser
from app.core.enums import AllocationStatus, FeeLedgerStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    BillClassRequest,
    BillClassResponse,
    DashboardSummary,
    FeeLedgerCreate,
    FeeLedgerList,
    FeeLedgerResponse,
    FeeLedgerUpdate,
    InstallmentScheduleRequest,
    LateFeeSweepRequest,
    LateFeeSweepResult,
    PaymentCreate,
    PaymentResult,
    StudentFeeSummary,
    WaiveRequest,
)
from . import service
from .sweep import run_late_fee_sweep

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


def _http_error(e: ServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


# --- Ledgers ---
@router.post(
    "",
    response_model=FeeLedgerResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_fee_capability("create"))],
)
async def create_fee_ledger(
    payload: FeeLedgerCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeLedgerResponse:
    try:
        return await service.create_ledger(db, current_user.tenant_id, payload, created_by=current_user.id)
    except ServiceError as e:
        raise _http_error(e)


@router.get(
    "",
    response_model=FeeLedgerList,
    dependencies=[Depends(require_fee_capability("read"))],
)
async def list_fee_ledgers(
    student_id: Optional[UUID] = Query(None, alias="studentId"),
    class_id: Optional[UUID] = Query(None, alias="classId"),
    status_filter: Optional[FeeLedgerStatus] = Query(None, alias="status"),
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeLedgerList:
    return await service.list_ledgers(
        db,
        current_user.tenant_id,
        student_id=student_id,
        class_id=class_id,
        status_filter=status_filter.value if status_filter else None,
        academic_year=academic_year,
        page=page,
        limit=limit,
    )


@router.get(
    "/summary/dashboard",
    response_model=DashboardSummary,
    dependencies=[Depends(require_fee_capability("read"))],
)
async def read_dashboard_summary(
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> DashboardSummary:
    return await service.get_dashboard_summary(db, current_user.tenant_id, academic_year)


@router.get(
    "/student/{student_id}",
    response_model=StudentFeeSummary,
    dependencies=[Depends(require_fee_capability("summary"))],
)
async def read_student_summary(
    student_id: UUID,
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentFeeSummary:
    try:
        await service.authorize_student_access(db, current_user, student_id)
        return await service.get_student_summary(db, current_user.tenant_id, student_id, academic_year)
    except ServiceError as e:
        raise _http_error(e)


@router.post(
    "/bill-class",
    response_model=BillClassResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_fee_capability("bill"))],
)
async def bill_class(
    payload: BillClassRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BillClassResponse:
    try:
        return await service.bill_class(db, current_user.tenant_id, payload, created_by=current_user.id)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/late-fee-sweep", response_model=LateFeeSweepResult)
async def late_fee_sweep(
    payload: LateFeeSweepRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_school_admin),
) -> LateFeeSweepResult:
    try:
        return await run_late_fee_sweep(
            db, school_id=current_user.tenant_id, as_of=payload.as_of, changed_by=current_user.id
        )
    except ServiceError as e:
        raise _http_error(e)


@router.get(
    "/{ledger_id}",
    response_model=FeeLedgerResponse,
    dependencies=[Depends(require_fee_capability("read"))],
)
async def read_fee_ledger(
    ledger_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeLedgerResponse:
    try:
        return await service.get_ledger(db, current_user.tenant_id, ledger_id)
    except ServiceError as e:
        raise _http_error(e)


@router.put(
    "/{ledger_id}",
    response_model=FeeLedgerResponse,
    dependencies=[Depends(require_fee_capability("update"))],
)
async def update_fee_structure(
    ledger_id: UUID,
    payload: FeeLedgerUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeLedgerResponse:
    try:
        return await service.update_structure(
            db, current_user.tenant_id, ledger_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise _http_error(e)


@router.delete(
    "/{ledger_id}",
    dependencies=[Depends(require_school_admin)],
)
async def delete_fee_ledger(
    ledger_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    try:
        await service.delete_ledger(db, current_user.tenant_id, ledger_id, changed_by=current_user.id)
    except ServiceError as e:
        raise _http_error(e)
    return {"success": True, "message": "Fee ledger deleted"}


# --- Payments ---
@router.post(
    "/{ledger_id}/pay",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_fee_capability("pay"))],
)
async def record_payment(
    ledger_id: UUID,
    payload: PaymentCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResult:
    try:
        result = await service.record_payment(
            db, current_user.tenant_id, ledger_id, payload, collected_by=current_user.id
        )
    except ServiceError as e:
        raise _http_error(e)
    if result.allocation.status == AllocationStatus.installment_not_found:
        # Payment is recorded; only the installment allocation failed
        response.status_code = status.HTTP_207_MULTI_STATUS
    return result


# --- Installments ---
@router.post(
    "/{ledger_id}/installments",
    response_model=FeeLedgerResponse,
    dependencies=[Depends(require_fee_capability("schedule"))],
)
async def schedule_installments(
    ledger_id: UUID,
    payload: InstallmentScheduleRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeLedgerResponse:
    try:
        return await service.schedule_installments(
            db, current_user.tenant_id, ledger_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise _http_error(e)


# --- Waiver ---
@router.post(
    "/{ledger_id}/waive",
    response_model=FeeLedgerResponse,
)
async def waive_fee_ledger(
    ledger_id: UUID,
    payload: WaiveRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_school_admin),
) -> FeeLedgerResponse:
    try:
        return await service.waive_ledger(db, current_user.tenant_id, ledger_id, payload, waived_by=current_user.id)
    except ServiceError as e:
        raise _http_error(e)
