"""
Ledger computation engine.

Pure functions over a FeeLedger (or any object exposing the same attributes). No I/O, no domain errors.
recompute() is the only writer of the derived fields: total_amount, paid_amount, due_amount, status and
each installment's paid_amount, paid_date and status. It never reads those fields as input, so running it
twice gives the same result as running it once.

Money is Decimal throughout. Percentages are rounded to the cent with ROUND_HALF_UP; sums are exact.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from app.core.enums import FeeComponentName, FeeLedgerStatus, InstallmentStatus

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")
# Largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")

FEE_COMPONENTS = tuple(c.value for c in FeeComponentName)
FLAT_DISCOUNTS = ("sibling_discount", "staff_ward_discount", "other_discount")


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def round_money(val: Decimal) -> Decimal:
    return to_decimal(val).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(amount, percentage) -> Decimal:
    return round_money(to_decimal(amount) * to_decimal(percentage) / HUNDRED)


# --- Amounts ---
def gross_fee_amount(ledger) -> Decimal:
    return sum((to_decimal(getattr(ledger, name, None)) for name in FEE_COMPONENTS), ZERO)


def scholarship_discount(ledger) -> Decimal:
    pct = to_decimal(ledger.scholarship_percentage)
    if pct <= 0:
        return ZERO
    return percentage_of(gross_fee_amount(ledger), pct)


def total_discount(ledger) -> Decimal:
    flat = sum((to_decimal(getattr(ledger, name, None)) for name in FLAT_DISCOUNTS), ZERO)
    return scholarship_discount(ledger) + flat


def total_amount(ledger) -> Decimal:
    total = gross_fee_amount(ledger) - total_discount(ledger) + to_decimal(ledger.total_late_fee)
    return max(ZERO, total)


def paid_amount(payments: Iterable) -> Decimal:
    return sum((to_decimal(p.amount) for p in payments), ZERO)


# --- Statuses ---
def installment_status(amount, paid, due_date: Optional[date], as_of: date) -> str:
    amount = to_decimal(amount)
    paid = to_decimal(paid)
    if paid >= amount:
        return InstallmentStatus.paid.value
    if due_date is not None and due_date < as_of:
        return InstallmentStatus.overdue.value
    if paid > 0:
        return InstallmentStatus.partial.value
    return InstallmentStatus.pending.value


def ledger_status(total, paid, installment_statuses: Iterable[str], is_waived: bool = False) -> str:
    if is_waived:
        return FeeLedgerStatus.waived.value
    total = to_decimal(total)
    paid = to_decimal(paid)
    if paid > 0 and paid >= total:
        return FeeLedgerStatus.paid.value
    if InstallmentStatus.overdue.value in installment_statuses:
        return FeeLedgerStatus.overdue.value
    if paid > 0:
        return FeeLedgerStatus.partial.value
    return FeeLedgerStatus.pending.value


def schedule_drift(ledger) -> Optional[Decimal]:
    """Difference between the ledger total and what the installment plan covers. None without a plan."""
    if not ledger.installments:
        return None
    planned = sum(
        (to_decimal(i.amount) + to_decimal(i.late_fee) for i in ledger.installments),
        ZERO,
    )
    return to_decimal(ledger.total_amount) - planned


# --- Recompute ---
def _comparable(value: datetime) -> datetime:
    """Naive UTC, so stored (naive) and freshly created (aware) timestamps can be ordered together."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def recompute(ledger, as_of: Optional[date] = None):
    """Derive every computed field of the ledger from its structure, discounts, late fees and payment log."""
    as_of = as_of or date.today()
    payments = list(ledger.payments or [])

    statuses = []
    for inst in ledger.installments or []:
        allocated = [p for p in payments if p.installment_number == inst.installment_number]
        inst.paid_amount = paid_amount(allocated)
        dates = [p.payment_date for p in allocated if p.payment_date is not None]
        inst.paid_date = max(dates, key=_comparable) if dates else None
        inst.status = installment_status(inst.amount, inst.paid_amount, inst.due_date, as_of)
        statuses.append(inst.status)

    ledger.total_amount = total_amount(ledger)
    ledger.paid_amount = paid_amount(payments)
    ledger.due_amount = max(ZERO, ledger.total_amount - ledger.paid_amount)
    ledger.status = ledger_status(
        ledger.total_amount,
        ledger.paid_amount,
        statuses,
        is_waived=bool(ledger.is_waived),
    )

    drift = schedule_drift(ledger)
    if drift:
        logger.warning(
            "Fee ledger %s installment plan drifts from total by %s",
            getattr(ledger, "id", None),
            drift,
        )
    return ledger


# --- Late fees ---
def late_fee_base(inst, ledger, as_of: date, accrual_period_days: int, cap: Optional[Decimal] = None) -> Decimal:
    """Unpaid amount of this installment that is chargeable for the accrual period containing as_of.
    Never more than cap, which defaults to what the whole ledger still owes."""
    if inst.status == InstallmentStatus.paid.value:
        return ZERO
    grace = timedelta(days=int(ledger.grace_period_days or 0))
    if as_of <= inst.due_date + grace:
        return ZERO
    last = inst.last_accrual_date
    if last is not None and as_of < last + timedelta(days=accrual_period_days):
        return ZERO
    if cap is None:
        cap = to_decimal(ledger.due_amount)
    outstanding = min(to_decimal(inst.amount) - to_decimal(inst.paid_amount), cap)
    return max(ZERO, outstanding)


def accrue_late_fees(ledger, as_of: Optional[date] = None, accrual_period_days: int = 30) -> Decimal:
    """
    Charge late fees on overdue installments, at most once per accrual period per installment.
    Returns the amount accrued; the ledger is recomputed afterwards.
    """
    as_of = as_of or date.today()
    if ledger.is_waived or ledger.is_active is False:
        return ZERO
    recompute(ledger, as_of)
    if to_decimal(ledger.due_amount) <= 0:
        return ZERO
    if to_decimal(ledger.late_fee_percentage) <= 0:
        return ZERO

    accrued = ZERO
    # Unallocated payments settle the ledger without settling installments
    remaining = to_decimal(ledger.due_amount)
    for inst in ledger.installments or []:
        base = late_fee_base(inst, ledger, as_of, accrual_period_days, remaining)
        charge = percentage_of(base, ledger.late_fee_percentage)
        if charge <= 0:
            continue
        remaining -= base
        inst.late_fee = to_decimal(inst.late_fee) + charge
        inst.last_accrual_date = as_of
        accrued += charge

    if accrued > 0:
        ledger.total_late_fee = to_decimal(ledger.total_late_fee) + accrued
        recompute(ledger, as_of)
    return accrued
