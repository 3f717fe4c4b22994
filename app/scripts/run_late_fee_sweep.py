"""
Accrue late fees on every open fee ledger.

Idempotent per accrual period: re-running for the same date charges nothing new.
Usage: python -m app.scripts.run_late_fee_sweep [--school <tenant uuid>] [--as-of YYYY-MM-DD]
"""

import argparse
import asyncio
import sys
from datetime import date
from typing import Optional
from uuid import UUID

# Ensure all models are loaded so ORM relationships resolve
import app.core.models  # noqa: F401
from app.api.v1.fees.sweep import run_late_fee_sweep
from app.core.exceptions import ServiceError
from app.core.logging import configure_logging
from app.db.session import AsyncSessionLocal


async def sweep(school_id: Optional[UUID], as_of: Optional[date]) -> int:
    async with AsyncSessionLocal() as session:
        try:
            result = await run_late_fee_sweep(session, school_id=school_id, as_of=as_of)
        except ServiceError as e:
            print(f"Sweep stopped: {e.message}", file=sys.stderr)
            return 1
    print(
        f"Done. As of {result.as_of}: checked {result.ledgers_checked} ledger(s), "
        f"charged {result.ledgers_charged}, accrued {result.total_accrued}."
    )
    return 0


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Accrue late fees on overdue installments.")
    parser.add_argument("--school", type=UUID, default=None, help="Limit the sweep to one school (tenant id)")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Accrual date, defaults to today")
    args = parser.parse_args(argv)

    configure_logging()
    sys.exit(asyncio.run(sweep(args.school, args.as_of)))


if __name__ == "__main__":
    main()
