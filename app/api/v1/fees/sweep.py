"""Late-fee sweep: accrue late fees on every open ledger, one transaction per ledger."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.models import FeeLedger

from .computation import ZERO, accrue_late_fees
from .schemas import LateFeeSweepResult
from .service import _get_ledger, _ledger_transaction, _log_fee_audit

logger = logging.getLogger(__name__)


async def run_late_fee_sweep(
    db: AsyncSession,
    school_id: Optional[UUID] = None,
    as_of: Optional[date] = None,
    accrual_period_days: Optional[int] = None,
    changed_by: Optional[UUID] = None,
) -> LateFeeSweepResult:
    """
    Charge late fees as of the given date. Also refreshes overdue statuses on ledgers with nothing to charge.
    Running it twice for the same date charges nothing the second time.
    """
    as_of = as_of or date.today()
    period = accrual_period_days or settings.late_fee_accrual_period_days

    stmt = select(FeeLedger.id, FeeLedger.tenant_id).where(
        FeeLedger.is_active.is_(True),
        FeeLedger.is_waived.is_(False),
    )
    if school_id is not None:
        stmt = stmt.where(FeeLedger.tenant_id == school_id)
    targets = (await db.execute(stmt.order_by(FeeLedger.created_at))).all()

    charged = 0
    total: Decimal = ZERO
    for ledger_id, tenant_id in targets:
        async with _ledger_transaction(db, ledger_id):
            ledger = await _get_ledger(db, tenant_id, ledger_id, for_update=True)
            old_total = ledger.total_amount
            accrued = accrue_late_fees(ledger, as_of, period)
            if accrued > 0:
                await db.flush()
                await _log_fee_audit(
                    db, tenant_id, "fee_ledgers", ledger.id,
                    "LATE_FEE",
                    {"total_amount": str(old_total)},
                    {
                        "accrued": str(accrued),
                        "total_late_fee": str(ledger.total_late_fee),
                        "total_amount": str(ledger.total_amount),
                        "as_of": as_of.isoformat(),
                    },
                    changed_by,
                )
                charged += 1
                total += accrued
                logger.info("Accrued late fee %s on fee ledger %s", accrued, ledger_id)
            await db.commit()

    logger.info(
        "Late-fee sweep as of %s: %s ledgers checked, %s charged, %s accrued",
        as_of, len(targets), charged, total,
    )
    return LateFeeSweepResult(
        as_of=as_of,
        ledgers_checked=len(targets),
        ledgers_charged=charged,
        total_accrued=total,
    )
