"""
Duplicate detection across uploads.

Every parsed line gets a fingerprint of its economically identifying fields.
A line whose fingerprint already belongs to an IMPORTED line of the same
business starts out as DUPLICATE instead of PENDING; the reviewer can still
override it.
"""
import hashlib
import logging
import re
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import LineStatus, StatementLine, TransactionType

logger = logging.getLogger(__name__)

# SQLite caps bound parameters per statement; stay well under it.
_LOOKUP_CHUNK = 500

_WS_RE = re.compile(r"\s+")


def normalize_description(description: Optional[str]) -> str:
    """Case-fold, trim and collapse internal whitespace."""
    return _WS_RE.sub(" ", (description or "").strip()).casefold()


def _normalize_reference(reference: Optional[str]) -> str:
    return (reference or "").strip().casefold()


def compute_hash(
    transaction_date: date,
    amount_kobo: int,
    transaction_type: TransactionType | str,
    description: Optional[str],
    reference: Optional[str] = None,
) -> str:
    direction = transaction_type.value if isinstance(transaction_type, TransactionType) else str(transaction_type)
    canonical = "|".join((
        transaction_date.isoformat(),
        str(int(amount_kobo)),
        direction.upper(),
        _normalize_reference(reference),
        normalize_description(description),
    ))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def imported_hashes(db: Session, business_id: str, hashes: Iterable[str]) -> set[str]:
    """Return the subset of `hashes` already carried by an IMPORTED line of this business."""
    wanted = sorted(set(hashes))
    found: set[str] = set()
    for i in range(0, len(wanted), _LOOKUP_CHUNK):
        chunk = wanted[i:i + _LOOKUP_CHUNK]
        found.update(db.scalars(
            select(StatementLine.transaction_hash)
            .where(
                StatementLine.business_id == business_id,
                StatementLine.transaction_hash.in_(chunk),
                StatementLine.status == LineStatus.IMPORTED,
            )
            .distinct()
        ))
    return found


def detect_duplicates(db: Session, business_id: str, lines: list[StatementLine]) -> list[StatementLine]:
    """
    Annotate candidate lines in place: `is_duplicate` and the initial status.

    Repeats inside the same batch are not duplicates of each other; only
    history that has actually reached the ledger counts.
    """
    seen = imported_hashes(db, business_id, (ln.transaction_hash for ln in lines))
    for ln in lines:
        ln.is_duplicate = ln.transaction_hash in seen
        ln.status = LineStatus.DUPLICATE if ln.is_duplicate else LineStatus.PENDING
    dup_count = sum(1 for ln in lines if ln.is_duplicate)
    if dup_count:
        logger.info(f"Duplicate detector: {dup_count}/{len(lines)} lines already imported for business {business_id}")
    return lines
