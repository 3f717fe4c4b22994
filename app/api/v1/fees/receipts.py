"""Receipt numbers: per-ledger monotonic sequence, collision-checked against the ledger's payment log."""

from typing import Iterable, Optional

from app.core.config import settings


def next_sequence(payments: Iterable) -> int:
    return max((p.sequence or 0 for p in payments), default=0) + 1


def generate_receipt_number(ledger, sequence: int, prefix: Optional[str] = None) -> str:
    """<prefix>-<first 8 hex chars of ledger id>-<sequence>, bumped past any number already on the ledger."""
    prefix = (prefix or settings.receipt_prefix).strip().upper()
    short_id = str(ledger.id).replace("-", "")[:8].upper()
    used = {p.receipt_number for p in ledger.payments or []}
    while True:
        candidate = f"{prefix}-{short_id}-{sequence:04d}"
        if candidate not in used:
            return candidate
        sequence += 1


def receipt_in_use(ledger, receipt_number: str) -> bool:
    return any(p.receipt_number == receipt_number for p in ledger.payments or [])
