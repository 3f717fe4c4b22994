"""Fee ledger service: create, structure edits, payments, installment plans, waivers, summaries. Financial logic with audit."""

import logging
import math
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import AllocationStatus, UserRole
from app.core.exceptions import (
    Conflict,
    DuplicateReceipt,
    InstallmentNotFound,
    InvalidAmount,
    LedgerNotFound,
    NotAuthorized,
    ServiceError,
)
from app.core.models import FeeAuditLog, FeeLedger, FeePayment, Student

from . import scheduler
from .computation import (
    CENT,
    FEE_COMPONENTS,
    FLAT_DISCOUNTS,
    MAX_AMOUNT,
    ZERO,
    gross_fee_amount,
    recompute,
    schedule_drift,
    to_decimal,
    total_discount,
)
from .locks import ledger_lock
from .receipts import generate_receipt_number, next_sequence, receipt_in_use
from .resolver import get_class_in_school, resolve_fee_structure
from .schemas import (
    BankDetails,
    BillClassRequest,
    BillClassResponse,
    DashboardSummary,
    DiscountsOut,
    FeeLedgerCreate,
    FeeLedgerList,
    FeeLedgerResponse,
    FeeLedgerUpdate,
    FeeStructureOut,
    InstallmentResponse,
    InstallmentScheduleRequest,
    LateFeesOut,
    MonthlyCollection,
    Pagination,
    PaymentAllocation,
    PaymentCreate,
    PaymentEntryResponse,
    PaymentResult,
    StatusBreakdown,
    StudentFeeSummary,
    WaiveRequest,
)

logger = logging.getLogger(__name__)


def _to_uuid(val):
    if val is None:
        return None
    return val if isinstance(val, UUID) else UUID(str(val))


# --- Audit helper ---
async def _log_fee_audit(
    db: AsyncSession,
    tenant_id: UUID,
    reference_table: str,
    reference_id: UUID,
    action_type: str,
    old_value: Optional[dict],
    new_value: Optional[dict],
    changed_by: Optional[UUID],
) -> None:
    log = FeeAuditLog(
        tenant_id=tenant_id,
        reference_table=reference_table,
        reference_id=reference_id,
        action_type=action_type,
        old_value=old_value,
        new_value=new_value,
        changed_by=changed_by,
    )
    db.add(log)


def _snapshot(ledger: FeeLedger) -> Dict[str, Optional[str]]:
    """JSON-safe view of the ledger's structural and derived money fields for the audit trail."""
    fields = FEE_COMPONENTS + ("scholarship_percentage",) + FLAT_DISCOUNTS + (
        "total_late_fee",
        "late_fee_percentage",
        "total_amount",
        "paid_amount",
        "due_amount",
    )
    snap = {name: str(to_decimal(getattr(ledger, name))) for name in fields}
    snap["grace_period_days"] = ledger.grace_period_days
    snap["status"] = ledger.status
    return snap


# --- Response builders ---
def _payment_to_response(p: FeePayment) -> PaymentEntryResponse:
    bank = None
    if p.bank_name or p.cheque_number or p.cheque_date:
        bank = BankDetails(bank_name=p.bank_name, cheque_number=p.cheque_number, cheque_date=p.cheque_date)
    return PaymentEntryResponse(
        id=_to_uuid(p.id),
        sequence=p.sequence,
        amount=to_decimal(p.amount),
        payment_date=p.payment_date,
        payment_method=p.payment_method,
        transaction_id=p.transaction_id,
        receipt_number=p.receipt_number,
        collected_by=_to_uuid(p.collected_by),
        bank_details=bank,
        remarks=p.remarks,
        installment_number=p.installment_number,
    )


def _ledger_to_response(ledger: FeeLedger) -> FeeLedgerResponse:
    return FeeLedgerResponse(
        id=_to_uuid(ledger.id),
        school_id=_to_uuid(ledger.tenant_id),
        student_id=_to_uuid(ledger.student_id),
        class_id=_to_uuid(ledger.class_id),
        academic_year=ledger.academic_year,
        fee_structure=FeeStructureOut(**{name: to_decimal(getattr(ledger, name)) for name in FEE_COMPONENTS}),
        discounts=DiscountsOut(
            scholarship_percentage=to_decimal(ledger.scholarship_percentage),
            sibling_discount=to_decimal(ledger.sibling_discount),
            staff_ward_discount=to_decimal(ledger.staff_ward_discount),
            other_discount=to_decimal(ledger.other_discount),
            discount_reason=ledger.discount_reason,
        ),
        late_fees=LateFeesOut(
            total_late_fee=to_decimal(ledger.total_late_fee),
            late_fee_percentage=to_decimal(ledger.late_fee_percentage),
            grace_period_days=ledger.grace_period_days,
        ),
        gross_amount=gross_fee_amount(ledger),
        total_discount=total_discount(ledger),
        total_amount=to_decimal(ledger.total_amount),
        paid_amount=to_decimal(ledger.paid_amount),
        due_amount=to_decimal(ledger.due_amount),
        status=ledger.status,
        installments=[
            InstallmentResponse(
                installment_number=i.installment_number,
                due_date=i.due_date,
                amount=to_decimal(i.amount),
                paid_amount=to_decimal(i.paid_amount),
                status=i.status,
                paid_date=i.paid_date,
                late_fee=to_decimal(i.late_fee),
                last_accrual_date=i.last_accrual_date,
                payment_method=i.payment_method,
                transaction_id=i.transaction_id,
                receipt_number=i.receipt_number,
            )
            for i in ledger.installments
        ],
        payments=[_payment_to_response(p) for p in ledger.payments],
        schedule_drift=schedule_drift(ledger),
        is_waived=bool(ledger.is_waived),
        waiver_reason=ledger.waiver_reason,
        remarks=ledger.remarks,
        is_active=bool(ledger.is_active),
        created_at=ledger.created_at,
        updated_at=ledger.updated_at,
    )


# --- Loading / locking ---
async def _get_ledger(
    db: AsyncSession,
    school_id: UUID,
    ledger_id: UUID,
    for_update: bool = False,
) -> FeeLedger:
    stmt = (
        select(FeeLedger)
        .where(FeeLedger.id == ledger_id, FeeLedger.is_active.is_(True))
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    ledger = (await db.execute(stmt)).scalar_one_or_none()
    if not ledger:
        raise LedgerNotFound()
    if ledger.tenant_id != school_id:
        raise NotAuthorized("Not authorized to access this fee ledger")
    return ledger


def _integrity_to_conflict(exc: IntegrityError) -> Conflict:
    text = str(exc.orig).lower()
    if "receipt_number" in text or "uq_fee_payment_ledger_receipt" in text:
        return Conflict("Receipt number already used on this ledger")
    if "sequence" in text:
        return Conflict("Another payment was recorded on this ledger at the same time; please retry")
    if "installment_number" in text:
        return Conflict("Installment numbers must be unique within a ledger")
    return Conflict("Duplicate value entered")


@asynccontextmanager
async def _ledger_transaction(db: AsyncSession, ledger_id: UUID):
    """Serialize read-modify-write on one ledger; roll back and translate store errors on failure."""
    async with ledger_lock(ledger_id):
        try:
            yield
        except ServiceError:
            await db.rollback()
            raise
        except StaleDataError:
            await db.rollback()
            raise Conflict("Fee ledger was modified concurrently; please retry")
        except IntegrityError as e:
            await db.rollback()
            raise _integrity_to_conflict(e)


async def _reload(db: AsyncSession, ledger_id: UUID) -> FeeLedger:
    stmt = select(FeeLedger).where(FeeLedger.id == ledger_id).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one()


# --- Create / read ---
def _apply_discounts(ledger: FeeLedger, discounts: Dict[str, Decimal], reason: Optional[str]) -> None:
    for name, value in discounts.items():
        setattr(ledger, name, value)
    ledger.discount_reason = reason


async def create_ledger(
    db: AsyncSession,
    school_id: UUID,
    payload: FeeLedgerCreate,
    created_by: Optional[UUID] = None,
    as_of: Optional[date] = None,
) -> FeeLedgerResponse:
    draft = await resolve_fee_structure(
        db,
        school_id,
        payload.student_id,
        payload.class_id,
        payload.academic_year,
        overrides=payload.fee_structure,
        discounts=payload.discounts,
    )
    late = payload.late_fees
    ledger = FeeLedger(
        tenant_id=school_id,
        student_id=draft.student.id,
        class_id=draft.school_class.id,
        academic_year=payload.academic_year,
        total_late_fee=ZERO,
        late_fee_percentage=(
            late.late_fee_percentage
            if late and late.late_fee_percentage is not None
            else settings.default_late_fee_percentage
        ),
        grace_period_days=(
            late.grace_period_days
            if late and late.grace_period_days is not None
            else settings.default_grace_period_days
        ),
        is_waived=False,
        is_active=True,
        remarks=(payload.remarks or "").strip() or None,
        created_by=created_by,
        installments=[],
        payments=[],
    )
    for name, amount in draft.fee_structure.items():
        setattr(ledger, name, amount)
    _apply_discounts(ledger, draft.discounts, draft.discount_reason)
    recompute(ledger, as_of)

    db.add(ledger)
    await db.flush()
    await _log_fee_audit(
        db, school_id, "fee_ledgers", ledger.id,
        "CREATE", None,
        {"student_id": str(ledger.student_id), "academic_year": ledger.academic_year, **_snapshot(ledger)},
        created_by,
    )
    await db.commit()
    logger.info(
        "Created fee ledger %s for student %s (%s), total %s",
        ledger.id, ledger.student_id, ledger.academic_year, ledger.total_amount,
    )
    return _ledger_to_response(await _reload(db, ledger.id))


async def get_ledger(db: AsyncSession, school_id: UUID, ledger_id: UUID) -> FeeLedgerResponse:
    ledger = await _get_ledger(db, school_id, _to_uuid(ledger_id))
    return _ledger_to_response(ledger)


async def list_ledgers(
    db: AsyncSession,
    school_id: UUID,
    student_id: Optional[UUID] = None,
    class_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
    academic_year: Optional[str] = None,
    page: int = 1,
    limit: int = 25,
) -> FeeLedgerList:
    page = max(1, page)
    limit = max(1, limit)
    conditions = [FeeLedger.tenant_id == school_id, FeeLedger.is_active.is_(True)]
    if student_id is not None:
        conditions.append(FeeLedger.student_id == student_id)
    if class_id is not None:
        conditions.append(FeeLedger.class_id == class_id)
    if status_filter:
        conditions.append(FeeLedger.status == status_filter)
    if academic_year:
        conditions.append(FeeLedger.academic_year == academic_year)

    total = (await db.execute(select(func.count(FeeLedger.id)).where(*conditions))).scalar() or 0
    stmt = (
        select(FeeLedger)
        .where(*conditions)
        .order_by(FeeLedger.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    ledgers = (await db.execute(stmt)).scalars().all()
    return FeeLedgerList(
        count=len(ledgers),
        total=total,
        pagination=Pagination(page=page, limit=limit, pages=math.ceil(total / limit)),
        data=[_ledger_to_response(l) for l in ledgers],
    )


# --- Structure edits ---
async def update_structure(
    db: AsyncSession,
    school_id: UUID,
    ledger_id: UUID,
    payload: FeeLedgerUpdate,
    changed_by: Optional[UUID] = None,
    as_of: Optional[date] = None,
) -> FeeLedgerResponse:
    """Edit fee structure, discounts or late-fee settings. Derived fields are always recomputed, never set."""
    ledger_id = _to_uuid(ledger_id)
    async with _ledger_transaction(db, ledger_id):
        ledger = await _get_ledger(db, school_id, ledger_id, for_update=True)
        old = _snapshot(ledger)
        structural = False

        if payload.fee_structure is not None:
            for name, amount in payload.fee_structure.model_dump(exclude_none=True).items():
                setattr(ledger, name, to_decimal(amount))
                structural = True
        if payload.discounts is not None:
            supplied = payload.discounts.model_dump(exclude_none=True)
            reason = supplied.pop("discount_reason", None)
            for name, amount in supplied.items():
                setattr(ledger, name, to_decimal(amount))
                structural = True
            if reason is not None:
                ledger.discount_reason = reason.strip() or None
        if payload.late_fees is not None:
            if payload.late_fees.late_fee_percentage is not None:
                ledger.late_fee_percentage = payload.late_fees.late_fee_percentage
                structural = True
            if payload.late_fees.grace_period_days is not None:
                ledger.grace_period_days = payload.late_fees.grace_period_days
                structural = True
        if payload.remarks is not None:
            ledger.remarks = payload.remarks.strip() or None

        if structural and ledger.is_waived:
            ledger.is_waived = False
            ledger.waived_by = None
            ledger.waived_at = None
            ledger.waiver_reason = None

        recompute(ledger, as_of)
        await db.flush()
        await _log_fee_audit(db, school_id, "fee_ledgers", ledger.id, "UPDATE", old, _snapshot(ledger), changed_by)
        await db.commit()
    logger.info("Updated fee ledger %s structure; total %s, due %s", ledger.id, ledger.total_amount, ledger.due_amount)
    return _ledger_to_response(await _reload(db, ledger_id))


# --- Payments ---
async def record_payment(
    db: AsyncSession,
    school_id: UUID,
    ledger_id: UUID,
    payload: PaymentCreate,
    collected_by: UUID,
    as_of: Optional[date] = None,
) -> PaymentResult:
    """
    Append one payment to the ledger log and recompute.

    A caller-supplied receipt number is the idempotency key: if it is already on the ledger nothing is
    appended and DuplicateReceipt is raised. An unknown installment number does not undo the payment;
    the result reports the failed allocation instead.
    """
    amount = to_decimal(payload.amount)
    if amount <= 0:
        raise InvalidAmount()
    if amount > MAX_AMOUNT:
        raise InvalidAmount(f"Amount cannot exceed {MAX_AMOUNT}")
    if amount != amount.quantize(CENT):
        raise InvalidAmount("Amount cannot have more than 2 decimal places")
    ledger_id = _to_uuid(ledger_id)

    async with _ledger_transaction(db, ledger_id):
        ledger = await _get_ledger(db, school_id, ledger_id, for_update=True)

        receipt_number = (payload.receipt_number or "").strip() or None
        if receipt_number and receipt_in_use(ledger, receipt_number):
            raise DuplicateReceipt(receipt_number)
        sequence = next_sequence(ledger.payments)
        if not receipt_number:
            receipt_number = generate_receipt_number(ledger, sequence)

        allocation = PaymentAllocation(status=AllocationStatus.not_requested)
        installment = None
        if payload.installment_number is not None:
            installment = next(
                (i for i in ledger.installments if i.installment_number == payload.installment_number),
                None,
            )
            if installment is None:
                missing = InstallmentNotFound(payload.installment_number)
                allocation = PaymentAllocation(
                    status=AllocationStatus.installment_not_found,
                    installment_number=payload.installment_number,
                    message=missing.message,
                )
                logger.warning(
                    "Payment on fee ledger %s recorded without allocation: %s", ledger_id, missing.message
                )
            else:
                allocation = PaymentAllocation(
                    status=AllocationStatus.allocated,
                    installment_number=installment.installment_number,
                )

        bank = payload.bank_details
        payment = FeePayment(
            tenant_id=school_id,
            ledger_id=ledger.id,
            sequence=sequence,
            amount=amount,
            payment_date=payload.payment_date or datetime.now(timezone.utc),
            payment_method=payload.payment_method.value,
            transaction_id=(payload.transaction_id or "").strip() or None,
            receipt_number=receipt_number,
            collected_by=collected_by,
            bank_name=bank.bank_name if bank else None,
            cheque_number=bank.cheque_number if bank else None,
            cheque_date=bank.cheque_date if bank else None,
            remarks=(payload.remarks or "").strip() or None,
            installment_number=installment.installment_number if installment else None,
        )
        ledger.payments.append(payment)
        if installment is not None:
            installment.payment_method = payment.payment_method
            installment.transaction_id = payment.transaction_id
            installment.receipt_number = receipt_number

        old_status = ledger.status
        recompute(ledger, as_of)
        await db.flush()
        await _log_fee_audit(
            db, school_id, "fee_payments", payment.id,
            "PAYMENT",
            None,
            {
                "ledger_id": str(ledger.id),
                "amount": str(amount),
                "payment_method": payment.payment_method,
                "receipt_number": receipt_number,
                "installment_number": payment.installment_number,
                "allocation": allocation.status.value,
                "ledger_old_status": old_status,
                "ledger_new_status": ledger.status,
            },
            collected_by,
        )
        await db.commit()

    logger.info(
        "Recorded payment %s of %s on fee ledger %s (paid %s, due %s, status %s)",
        receipt_number, amount, ledger_id, ledger.paid_amount, ledger.due_amount, ledger.status,
    )
    ledger = await _reload(db, ledger_id)
    payment = next(p for p in ledger.payments if p.receipt_number == receipt_number)
    return PaymentResult(
        ledger=_ledger_to_response(ledger),
        payment=_payment_to_response(payment),
        allocation=allocation,
    )


# --- Installments ---
async def schedule_installments(
    db: AsyncSession,
    school_id: UUID,
    ledger_id: UUID,
    payload: InstallmentScheduleRequest,
    changed_by: Optional[UUID] = None,
    as_of: Optional[date] = None,
) -> FeeLedgerResponse:
    ledger_id = _to_uuid(ledger_id)
    async with _ledger_transaction(db, ledger_id):
        ledger = await _get_ledger(db, school_id, ledger_id, for_update=True)
        recompute(ledger, as_of)
        new_installments = scheduler.build_installments(
            ledger, payload.count, payload.first_due_date, payload.interval_days
        )
        replaced = len(ledger.installments)
        if replaced:
            ledger.installments.clear()
            await db.flush()
        ledger.installments.extend(new_installments)
        recompute(ledger, as_of)
        await db.flush()
        await _log_fee_audit(
            db, school_id, "fee_ledgers", ledger.id,
            "SCHEDULE",
            {"installment_count": replaced} if replaced else None,
            {
                "installment_count": payload.count,
                "first_due_date": payload.first_due_date.isoformat(),
                "interval_days": payload.interval_days,
                "amounts": [str(i.amount) for i in new_installments],
            },
            changed_by,
        )
        await db.commit()
    logger.info("Scheduled %s installments on fee ledger %s", payload.count, ledger_id)
    return _ledger_to_response(await _reload(db, ledger_id))


# --- Waiver ---
async def waive_ledger(
    db: AsyncSession,
    school_id: UUID,
    ledger_id: UUID,
    payload: WaiveRequest,
    waived_by: UUID,
    as_of: Optional[date] = None,
) -> FeeLedgerResponse:
    """Administrative waiver: status becomes waived until the next structural edit."""
    ledger_id = _to_uuid(ledger_id)
    async with _ledger_transaction(db, ledger_id):
        ledger = await _get_ledger(db, school_id, ledger_id, for_update=True)
        old_status = ledger.status
        ledger.is_waived = True
        ledger.waived_by = waived_by
        ledger.waived_at = datetime.now(timezone.utc)
        ledger.waiver_reason = payload.reason.strip()
        recompute(ledger, as_of)
        await db.flush()
        await _log_fee_audit(
            db, school_id, "fee_ledgers", ledger.id,
            "WAIVE",
            {"status": old_status},
            {"status": ledger.status, "reason": ledger.waiver_reason},
            waived_by,
        )
        await db.commit()
    logger.info("Fee ledger %s waived by %s", ledger_id, waived_by)
    return _ledger_to_response(await _reload(db, ledger_id))


# --- Delete ---
async def delete_ledger(
    db: AsyncSession,
    school_id: UUID,
    ledger_id: UUID,
    changed_by: Optional[UUID] = None,
) -> None:
    """Hard delete, only while no payment history exists."""
    ledger_id = _to_uuid(ledger_id)
    async with _ledger_transaction(db, ledger_id):
        ledger = await _get_ledger(db, school_id, ledger_id, for_update=True)
        if ledger.payments or to_decimal(ledger.paid_amount) > 0:
            raise Conflict("Cannot delete a fee ledger that has recorded payments")
        await _log_fee_audit(db, school_id, "fee_ledgers", ledger.id, "DELETE", _snapshot(ledger), None, changed_by)
        await db.delete(ledger)
        await db.commit()
    logger.info("Deleted fee ledger %s", ledger_id)


# --- Summaries ---
async def authorize_student_access(
    db: AsyncSession,
    current_user: CurrentUser,
    student_id: UUID,
) -> None:
    """Students may only read their own fees; parents only their wards'."""
    if current_user.role == UserRole.STUDENT.value:
        student = (
            await db.execute(
                select(Student).where(Student.id == student_id, Student.tenant_id == current_user.tenant_id)
            )
        ).scalar_one_or_none()
        if not student or student.user_id != current_user.id:
            raise NotAuthorized()
    elif current_user.role == UserRole.PARENT.value:
        if student_id not in (current_user.ward_ids or []):
            raise NotAuthorized()


async def get_student_summary(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
    academic_year: Optional[str] = None,
) -> StudentFeeSummary:
    stmt = select(FeeLedger).where(
        FeeLedger.tenant_id == school_id,
        FeeLedger.student_id == student_id,
        FeeLedger.is_active.is_(True),
    )
    if academic_year:
        stmt = stmt.where(FeeLedger.academic_year == academic_year)
    stmt = stmt.order_by(FeeLedger.created_at.desc())
    ledgers = (await db.execute(stmt)).scalars().all()

    return StudentFeeSummary(
        student_id=student_id,
        academic_year=academic_year,
        total_billed=sum((to_decimal(l.total_amount) for l in ledgers), ZERO),
        total_paid=sum((to_decimal(l.paid_amount) for l in ledgers), ZERO),
        total_due=sum((to_decimal(l.due_amount) for l in ledgers), ZERO),
        ledger_count=len(ledgers),
        ledgers=[_ledger_to_response(l) for l in ledgers],
    )


async def get_dashboard_summary(
    db: AsyncSession,
    school_id: UUID,
    academic_year: Optional[str] = None,
) -> DashboardSummary:
    conditions = [FeeLedger.tenant_id == school_id, FeeLedger.is_active.is_(True)]
    if academic_year:
        conditions.append(FeeLedger.academic_year == academic_year)

    status_rows = (
        await db.execute(
            select(
                FeeLedger.status,
                func.count(FeeLedger.id),
                func.coalesce(func.sum(FeeLedger.total_amount), 0),
                func.coalesce(func.sum(FeeLedger.paid_amount), 0),
                func.coalesce(func.sum(FeeLedger.due_amount), 0),
            )
            .where(*conditions)
            .group_by(FeeLedger.status)
            .order_by(FeeLedger.status)
        )
    ).all()

    payment_rows = (
        await db.execute(
            select(FeePayment.payment_date, FeePayment.amount)
            .join(FeeLedger, FeePayment.ledger_id == FeeLedger.id)
            .where(*conditions)
        )
    ).all()
    monthly: Dict[tuple, Decimal] = {}
    for paid_at, amount in payment_rows:
        key = (paid_at.year, paid_at.month)
        monthly[key] = monthly.get(key, ZERO) + to_decimal(amount)

    return DashboardSummary(
        academic_year=academic_year,
        by_status=[
            StatusBreakdown(
                status=status_value,
                count=count,
                total_amount=to_decimal(total),
                total_paid=to_decimal(paid),
                total_due=to_decimal(due),
            )
            for status_value, count, total, paid, due in status_rows
        ],
        monthly=[
            MonthlyCollection(year=year, month=month, amount=amount)
            for (year, month), amount in sorted(monthly.items())
        ],
    )


# --- Bulk billing ---
async def bill_class(
    db: AsyncSession,
    school_id: UUID,
    payload: BillClassRequest,
    created_by: Optional[UUID] = None,
    as_of: Optional[date] = None,
) -> BillClassResponse:
    """Create a ledger for every active student of the class who has no active ledger for the year."""
    await get_class_in_school(db, school_id, payload.class_id)
    students = (
        await db.execute(
            select(Student).where(
                Student.tenant_id == school_id,
                Student.class_id == payload.class_id,
                Student.status == "ACTIVE",
            ).order_by(Student.admission_number)
        )
    ).scalars().all()
    already_billed = set(
        (
            await db.execute(
                select(FeeLedger.student_id).where(
                    FeeLedger.tenant_id == school_id,
                    FeeLedger.academic_year == payload.academic_year,
                    FeeLedger.is_active.is_(True),
                )
            )
        ).scalars().all()
    )

    created: List[FeeLedgerResponse] = []
    skipped: List[UUID] = []
    for student in students:
        if student.id in already_billed:
            skipped.append(student.id)
            continue
        created.append(
            await create_ledger(
                db,
                school_id,
                FeeLedgerCreate(
                    student_id=student.id,
                    class_id=payload.class_id,
                    academic_year=payload.academic_year,
                    fee_structure=payload.fee_structure,
                    discounts=payload.discounts,
                ),
                created_by=created_by,
                as_of=as_of,
            )
        )
    logger.info(
        "Billed class %s for %s: %s created, %s skipped",
        payload.class_id, payload.academic_year, len(created), len(skipped),
    )
    return BillClassResponse(created=created, skipped_student_ids=skipped)
