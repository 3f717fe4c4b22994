import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees import service
from app.api.v1.fees.schemas import (
    BillClassRequest,
    DiscountsIn,
    FeeLedgerCreate,
    FeeLedgerUpdate,
    FeeStructureIn,
    InstallmentScheduleRequest,
    PaymentCreate,
    WaiveRequest,
)
from app.api.v1.fees.sweep import run_late_fee_sweep
from app.auth.schemas import CurrentUser
from app.core.enums import AllocationStatus
from app.core.exceptions import (
    Conflict,
    DuplicateReceipt,
    InvalidAmount,
    LedgerNotFound,
    NotAuthorized,
    ReferenceNotFound,
    ScheduleConflict,
    ValidationError,
)
from app.core.models import FeeAuditLog, FeePayment, Student

YEAR = "2024-2025"
CASHIER = uuid4()


def ledger_payload(student, school_class, tuition="1000", **extra) -> FeeLedgerCreate:
    return FeeLedgerCreate(
        student_id=student.id,
        class_id=school_class.id,
        academic_year=extra.pop("academic_year", YEAR),
        fee_structure=FeeStructureIn(tuition_fee=Decimal(tuition)),
        **extra,
    )


def payment(amount="100", **extra) -> PaymentCreate:
    return PaymentCreate(amount=Decimal(amount), payment_method="cash", **extra)


@pytest.fixture()
async def ledger(db_session: AsyncSession, school, school_class, student):
    return await service.create_ledger(db_session, school.id, ledger_payload(student, school_class), as_of=date(2024, 4, 1))


async def test_create_ledger_with_tuition_only(ledger) -> None:
    assert ledger.total_amount == Decimal("1000")
    assert ledger.due_amount == Decimal("1000")
    assert ledger.paid_amount == Decimal("0")
    assert ledger.status == "pending"
    assert ledger.late_fees.late_fee_percentage == Decimal("5")
    assert ledger.late_fees.grace_period_days == 7


async def test_create_ledger_with_scholarship(db_session, school, school_class, student) -> None:
    created = await service.create_ledger(
        db_session,
        school.id,
        ledger_payload(student, school_class, discounts=DiscountsIn(scholarship_percentage=Decimal("20"))),
    )
    assert created.total_amount == Decimal("800")


async def test_create_ledger_uses_class_defaults(db_session, school, school_class, student, class_defaults) -> None:
    created = await service.create_ledger(
        db_session,
        school.id,
        FeeLedgerCreate(
            student_id=student.id,
            class_id=school_class.id,
            academic_year=YEAR,
            fee_structure=FeeStructureIn(exam_fee=Decimal("250")),
        ),
    )
    assert created.fee_structure.tuition_fee == Decimal("800")
    assert created.fee_structure.exam_fee == Decimal("250")
    assert created.total_amount == Decimal("1050")


async def test_create_ledger_requires_tuition(db_session, school, school_class, student) -> None:
    with pytest.raises(ValidationError):
        await service.create_ledger(
            db_session,
            school.id,
            FeeLedgerCreate(student_id=student.id, class_id=school_class.id, academic_year=YEAR),
        )


async def test_create_ledger_rejects_student_from_another_school(
    db_session, school, other_school, school_class, student
) -> None:
    with pytest.raises(ReferenceNotFound):
        await service.create_ledger(db_session, other_school.id, ledger_payload(student, school_class))


async def test_full_payment_settles_ledger(db_session, school, ledger) -> None:
    result = await service.record_payment(db_session, school.id, ledger.id, payment("1000"), collected_by=CASHIER)
    assert result.ledger.paid_amount == Decimal("1000")
    assert result.ledger.due_amount == Decimal("0")
    assert result.ledger.status == "paid"
    assert result.payment.sequence == 1
    assert result.payment.receipt_number.startswith("REC-")
    assert result.allocation.status == AllocationStatus.not_requested


async def test_zero_payment_is_rejected_and_ledger_unchanged(db_session, school, ledger) -> None:
    with pytest.raises(InvalidAmount) as exc:
        await service.record_payment(db_session, school.id, ledger.id, payment("0"), collected_by=CASHIER)
    assert exc.value.message == "Amount must be greater than 0"
    with pytest.raises(InvalidAmount):
        await service.record_payment(db_session, school.id, ledger.id, payment("-5"), collected_by=CASHIER)

    current = await service.get_ledger(db_session, school.id, ledger.id)
    assert current.paid_amount == Decimal("0")
    assert current.payments == []


async def test_duplicate_receipt_is_rejected(db_session, school, ledger) -> None:
    await service.record_payment(
        db_session, school.id, ledger.id, payment("100", receipt_number="R-001"), collected_by=CASHIER
    )
    with pytest.raises(DuplicateReceipt) as exc:
        await service.record_payment(
            db_session, school.id, ledger.id, payment("100", receipt_number="R-001"), collected_by=CASHIER
        )
    assert exc.value.status_code == 409

    current = await service.get_ledger(db_session, school.id, ledger.id)
    assert len(current.payments) == 1
    assert current.paid_amount == Decimal("100")


async def test_generated_receipts_are_unique_per_ledger(db_session, school, ledger) -> None:
    first = await service.record_payment(db_session, school.id, ledger.id, payment("100"), collected_by=CASHIER)
    second = await service.record_payment(db_session, school.id, ledger.id, payment("100"), collected_by=CASHIER)
    assert first.payment.receipt_number != second.payment.receipt_number
    assert second.payment.sequence == 2


async def test_payment_allocated_to_installment(db_session, school, ledger) -> None:
    await service.schedule_installments(
        db_session, school.id, ledger.id,
        InstallmentScheduleRequest(count=2, first_due_date=date(2030, 1, 1), interval_days=30),
    )
    result = await service.record_payment(
        db_session, school.id, ledger.id, payment("500", installment_number=1, transaction_id="TX-9"),
        collected_by=CASHIER,
    )
    assert result.allocation.status == AllocationStatus.allocated
    first, second = result.ledger.installments
    assert first.paid_amount == Decimal("500")
    assert first.status == "paid"
    assert first.transaction_id == "TX-9"
    assert first.receipt_number == result.payment.receipt_number
    assert second.status == "pending"
    assert result.ledger.status == "partial"


async def test_unknown_installment_still_records_payment(db_session, school, ledger) -> None:
    await service.schedule_installments(
        db_session, school.id, ledger.id,
        InstallmentScheduleRequest(count=2, first_due_date=date(2030, 1, 1)),
    )
    result = await service.record_payment(
        db_session, school.id, ledger.id, payment("200", installment_number=7), collected_by=CASHIER
    )
    assert result.allocation.status == AllocationStatus.installment_not_found
    assert result.allocation.installment_number == 7
    assert "Installment 7" in result.allocation.message
    assert result.ledger.paid_amount == Decimal("200")
    assert result.payment.installment_number is None
    assert all(i.paid_amount == Decimal("0") for i in result.ledger.installments)


async def test_concurrent_payments_are_not_lost(session_factory, db_session, school, ledger) -> None:
    updated = await service.update_structure(
        db_session, school.id, ledger.id, FeeLedgerUpdate(fee_structure=FeeStructureIn(tuition_fee=Decimal("100")))
    )
    assert updated.total_amount == Decimal("100")

    async def pay_fifty():
        async with session_factory() as session:
            return await service.record_payment(session, school.id, ledger.id, payment("50"), collected_by=CASHIER)

    results = await asyncio.gather(pay_fifty(), pay_fifty())
    assert sorted(r.payment.sequence for r in results) == [1, 2]

    current = await service.get_ledger(db_session, school.id, ledger.id)
    assert current.paid_amount == Decimal("100")
    assert current.due_amount == Decimal("0")
    assert current.status == "paid"
    assert len(current.payments) == 2


async def test_other_school_cannot_read_or_pay(db_session, school, other_school, ledger) -> None:
    with pytest.raises(NotAuthorized):
        await service.get_ledger(db_session, other_school.id, ledger.id)
    with pytest.raises(NotAuthorized):
        await service.record_payment(db_session, other_school.id, ledger.id, payment("10"), collected_by=CASHIER)
    count = (await db_session.execute(select(func.count(FeePayment.id)))).scalar()
    assert count == 0


async def test_missing_ledger(db_session, school) -> None:
    with pytest.raises(LedgerNotFound):
        await service.get_ledger(db_session, school.id, uuid4())


async def test_update_structure_recomputes_totals(db_session, school, ledger) -> None:
    await service.record_payment(db_session, school.id, ledger.id, payment("300"), collected_by=CASHIER)
    updated = await service.update_structure(
        db_session,
        school.id,
        ledger.id,
        FeeLedgerUpdate(
            fee_structure=FeeStructureIn(exam_fee=Decimal("200")),
            discounts=DiscountsIn(sibling_discount=Decimal("100"), discount_reason="Sibling in grade 3"),
        ),
    )
    assert updated.fee_structure.tuition_fee == Decimal("1000")
    assert updated.total_amount == Decimal("1100")
    assert updated.due_amount == Decimal("800")
    assert updated.status == "partial"
    assert updated.discounts.discount_reason == "Sibling in grade 3"

    audit_actions = (await db_session.execute(select(FeeAuditLog.action_type))).scalars().all()
    assert "UPDATE" in audit_actions
    assert "PAYMENT" in audit_actions


async def test_structure_change_after_schedule_reports_drift(db_session, school, ledger) -> None:
    scheduled = await service.schedule_installments(
        db_session, school.id, ledger.id,
        InstallmentScheduleRequest(count=3, first_due_date=date(2030, 1, 1)),
    )
    assert [i.amount for i in scheduled.installments] == [Decimal("333.33"), Decimal("333.33"), Decimal("333.34")]
    assert scheduled.schedule_drift == Decimal("0")

    updated = await service.update_structure(
        db_session, school.id, ledger.id, FeeLedgerUpdate(fee_structure=FeeStructureIn(lab_fee=Decimal("90")))
    )
    assert updated.schedule_drift == Decimal("90")


async def test_reschedule_replaces_unpaid_plan(db_session, school, ledger) -> None:
    await service.schedule_installments(
        db_session, school.id, ledger.id, InstallmentScheduleRequest(count=2, first_due_date=date(2030, 1, 1))
    )
    rescheduled = await service.schedule_installments(
        db_session, school.id, ledger.id, InstallmentScheduleRequest(count=4, first_due_date=date(2030, 2, 1))
    )
    assert [i.installment_number for i in rescheduled.installments] == [1, 2, 3, 4]
    assert sum(i.amount for i in rescheduled.installments) == Decimal("1000")


async def test_reschedule_blocked_after_installment_payment(db_session, school, ledger) -> None:
    await service.schedule_installments(
        db_session, school.id, ledger.id, InstallmentScheduleRequest(count=2, first_due_date=date(2030, 1, 1))
    )
    await service.record_payment(
        db_session, school.id, ledger.id, payment("100", installment_number=1), collected_by=CASHIER
    )
    with pytest.raises(ScheduleConflict):
        await service.schedule_installments(
            db_session, school.id, ledger.id, InstallmentScheduleRequest(count=3, first_due_date=date(2030, 1, 1))
        )
    current = await service.get_ledger(db_session, school.id, ledger.id)
    assert len(current.installments) == 2


async def test_delete_ledger_without_payments(db_session, school, ledger) -> None:
    await service.delete_ledger(db_session, school.id, ledger.id)
    with pytest.raises(LedgerNotFound):
        await service.get_ledger(db_session, school.id, ledger.id)


async def test_delete_ledger_with_payments_conflicts(db_session, school, ledger) -> None:
    await service.record_payment(db_session, school.id, ledger.id, payment("10"), collected_by=CASHIER)
    with pytest.raises(Conflict):
        await service.delete_ledger(db_session, school.id, ledger.id)
    assert (await service.get_ledger(db_session, school.id, ledger.id)).paid_amount == Decimal("10")


async def test_waiver_is_cleared_by_structural_edit(db_session, school, ledger) -> None:
    waived = await service.waive_ledger(
        db_session, school.id, ledger.id, WaiveRequest(reason="Hardship"), waived_by=CASHIER
    )
    assert waived.status == "waived"
    assert waived.is_waived is True

    updated = await service.update_structure(
        db_session, school.id, ledger.id, FeeLedgerUpdate(fee_structure=FeeStructureIn(tuition_fee=Decimal("900")))
    )
    assert updated.is_waived is False
    assert updated.status == "pending"


async def test_student_summary_totals(db_session, school, school_class, student, ledger) -> None:
    await service.create_ledger(
        db_session, school.id, ledger_payload(student, school_class, tuition="500", academic_year="2025-2026")
    )
    await service.record_payment(db_session, school.id, ledger.id, payment("250"), collected_by=CASHIER)

    summary = await service.get_student_summary(db_session, school.id, student.id)
    assert summary.ledger_count == 2
    assert summary.total_billed == Decimal("1500")
    assert summary.total_paid == Decimal("250")
    assert summary.total_due == Decimal("1250")

    this_year = await service.get_student_summary(db_session, school.id, student.id, academic_year=YEAR)
    assert this_year.ledger_count == 1


async def test_student_can_only_see_own_summary(db_session, school, student) -> None:
    own = CurrentUser(id=student.user_id, tenant_id=school.id, role="STUDENT")
    await service.authorize_student_access(db_session, own, student.id)

    stranger = CurrentUser(id=uuid4(), tenant_id=school.id, role="STUDENT")
    with pytest.raises(NotAuthorized):
        await service.authorize_student_access(db_session, stranger, student.id)

    parent = CurrentUser(id=uuid4(), tenant_id=school.id, role="PARENT", ward_ids=[student.id])
    await service.authorize_student_access(db_session, parent, student.id)
    with pytest.raises(NotAuthorized):
        await service.authorize_student_access(
            db_session, CurrentUser(id=uuid4(), tenant_id=school.id, role="PARENT"), student.id
        )


async def test_bill_class_skips_already_billed_students(db_session, school, school_class, student, ledger) -> None:
    newcomer = Student(
        tenant_id=school.id, class_id=school_class.id, admission_number="ADM-0002", full_name="Ravi Kumar"
    )
    left = Student(
        tenant_id=school.id, class_id=school_class.id, admission_number="ADM-0003", full_name="Old Student",
        status="LEFT",
    )
    db_session.add_all([newcomer, left])
    await db_session.commit()

    result = await service.bill_class(
        db_session,
        school.id,
        BillClassRequest(class_id=school_class.id, academic_year=YEAR, fee_structure=FeeStructureIn(tuition_fee=Decimal("1200"))),
    )
    assert [l.student_id for l in result.created] == [newcomer.id]
    assert result.created[0].total_amount == Decimal("1200")
    assert result.skipped_student_ids == [student.id]


async def test_list_and_dashboard(db_session, school, school_class, student, ledger) -> None:
    await service.create_ledger(
        db_session, school.id, ledger_payload(student, school_class, tuition="400", academic_year="2025-2026")
    )
    await service.record_payment(db_session, school.id, ledger.id, payment("1000"), collected_by=CASHIER)

    listed = await service.list_ledgers(db_session, school.id, status_filter="paid")
    assert listed.total == 1
    assert listed.data[0].id == ledger.id

    page = await service.list_ledgers(db_session, school.id, page=1, limit=1)
    assert page.count == 1
    assert page.total == 2
    assert page.pagination.pages == 2

    dashboard = await service.get_dashboard_summary(db_session, school.id)
    by_status = {row.status: row for row in dashboard.by_status}
    assert by_status["paid"].count == 1
    assert by_status["pending"].total_due == Decimal("400")
    assert sum(m.amount for m in dashboard.monthly) == Decimal("1000")


async def test_late_fee_sweep_charges_once_per_period(db_session, school, ledger) -> None:
    await service.schedule_installments(
        db_session, school.id, ledger.id,
        InstallmentScheduleRequest(count=1, first_due_date=date(2024, 5, 1)),
        as_of=date(2024, 4, 1),
    )

    first = await run_late_fee_sweep(db_session, school_id=school.id, as_of=date(2024, 5, 20))
    assert first.ledgers_checked == 1
    assert first.ledgers_charged == 1
    assert first.total_accrued == Decimal("50")

    again = await run_late_fee_sweep(db_session, school_id=school.id, as_of=date(2024, 5, 20))
    assert again.ledgers_charged == 0
    assert again.total_accrued == Decimal("0")

    current = await service.get_ledger(db_session, school.id, ledger.id)
    assert current.late_fees.total_late_fee == Decimal("50")
    assert current.total_amount == Decimal("1050")
    assert current.status == "overdue"
    assert current.installments[0].last_accrual_date == date(2024, 5, 20)


async def test_sweep_skips_ledger_settled_without_allocation(db_session, school, ledger) -> None:
    await service.schedule_installments(
        db_session, school.id, ledger.id,
        InstallmentScheduleRequest(count=2, first_due_date=date(2024, 5, 1)),
        as_of=date(2024, 4, 1),
    )
    paid = await service.record_payment(
        db_session, school.id, ledger.id, payment("1000"), collected_by=CASHIER, as_of=date(2024, 4, 2)
    )
    assert paid.ledger.status == "paid"

    result = await run_late_fee_sweep(db_session, school_id=school.id, as_of=date(2024, 6, 20))
    assert result.ledgers_charged == 0
    assert result.total_accrued == Decimal("0")

    current = await service.get_ledger(db_session, school.id, ledger.id)
    assert current.status == "paid"
    assert current.due_amount == Decimal("0")
    assert current.late_fees.total_late_fee == Decimal("0")


async def test_sweep_charges_only_what_the_ledger_still_owes(db_session, school, ledger) -> None:
    await service.schedule_installments(
        db_session, school.id, ledger.id,
        InstallmentScheduleRequest(count=1, first_due_date=date(2024, 5, 1)),
        as_of=date(2024, 4, 1),
    )
    await service.record_payment(
        db_session, school.id, ledger.id, payment("900"), collected_by=CASHIER, as_of=date(2024, 4, 2)
    )

    result = await run_late_fee_sweep(db_session, school_id=school.id, as_of=date(2024, 6, 1))
    assert result.total_accrued == Decimal("5")

    current = await service.get_ledger(db_session, school.id, ledger.id)
    assert current.total_amount == Decimal("1005")
    assert current.due_amount == Decimal("105")


async def test_sub_cent_payment_is_rejected(db_session, school, ledger) -> None:
    with pytest.raises(InvalidAmount) as exc:
        await service.record_payment(db_session, school.id, ledger.id, payment("0.005"), collected_by=CASHIER)
    assert exc.value.message == "Amount cannot have more than 2 decimal places"
    with pytest.raises(InvalidAmount):
        await service.record_payment(db_session, school.id, ledger.id, payment("12.345"), collected_by=CASHIER)

    current = await service.get_ledger(db_session, school.id, ledger.id)
    assert current.payments == []
    assert current.paid_amount == Decimal("0")


async def test_paid_amount_matches_payment_log_after_reload(db_session, school, ledger) -> None:
    for amount in ("0.01", "0.01", "333.33", "100.10"):
        await service.record_payment(db_session, school.id, ledger.id, payment(amount), collected_by=CASHIER)

    current = await service.get_ledger(db_session, school.id, ledger.id)
    assert current.paid_amount == sum(p.amount for p in current.payments)
    assert current.paid_amount == Decimal("433.45")
    assert current.due_amount == Decimal("566.55")


async def test_oversized_payment_is_rejected(db_session, school, ledger) -> None:
    with pytest.raises(InvalidAmount):
        await service.record_payment(
            db_session, school.id, ledger.id, payment("10000000000.00"), collected_by=CASHIER
        )
