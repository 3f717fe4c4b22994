"""Installment scheduler: split a ledger total into dated installments."""

from datetime import date, timedelta
from decimal import ROUND_DOWN, Decimal
from typing import List, Tuple

from app.core.exceptions import InvalidScheduleRequest, ScheduleConflict
from app.core.enums import InstallmentStatus
from app.core.models import FeeInstallment

from .computation import CENT, ZERO, to_decimal

MAX_INSTALLMENTS = 60
MAX_INTERVAL_DAYS = 366


def split_amount(total: Decimal, count: int) -> List[Decimal]:
    """Equal cent-rounded shares; the last share absorbs the remainder so the parts sum to total exactly."""
    total = to_decimal(total)
    share = (total / count).quantize(CENT, rounding=ROUND_DOWN)
    parts = [share] * (count - 1)
    parts.append(total - share * (count - 1))
    return parts


def due_dates(first_due_date: date, count: int, interval_days: int) -> List[date]:
    return [first_due_date + timedelta(days=k * interval_days) for k in range(count)]


def validate_schedule_request(ledger, count: int, interval_days: int) -> None:
    if count < 1:
        raise InvalidScheduleRequest("Installment count must be at least 1")
    if count > MAX_INSTALLMENTS:
        raise InvalidScheduleRequest(f"Installment count cannot exceed {MAX_INSTALLMENTS}")
    if interval_days > MAX_INTERVAL_DAYS:
        raise InvalidScheduleRequest(f"Interval between installments cannot exceed {MAX_INTERVAL_DAYS} days")
    if count > 1 and interval_days < 1:
        raise InvalidScheduleRequest("Interval between installments must be at least 1 day")
    if to_decimal(ledger.total_amount) <= ZERO:
        raise InvalidScheduleRequest("Cannot schedule installments for a ledger with no amount due")
    if any(to_decimal(i.paid_amount) > 0 for i in ledger.installments or []):
        raise ScheduleConflict("Installment plan already has payments recorded against it and cannot be rescheduled")


def build_installments(
    ledger,
    count: int,
    first_due_date: date,
    interval_days: int,
) -> List[FeeInstallment]:
    """New installment rows for the ledger's current total. Caller replaces the old plan and recomputes."""
    validate_schedule_request(ledger, count, interval_days)
    rows: List[Tuple[int, date, Decimal]] = list(
        zip(range(1, count + 1), due_dates(first_due_date, count, interval_days), split_amount(ledger.total_amount, count))
    )
    return [
        FeeInstallment(
            installment_number=number,
            due_date=due,
            amount=amount,
            paid_amount=ZERO,
            late_fee=ZERO,
            status=InstallmentStatus.pending.value,
        )
        for number, due, amount in rows
    ]
