"""
Overlap guard: warn when a statement period was already uploaded.

Advisory only. Statements legitimately overlap at period boundaries, so the
caller decides whether to go ahead.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import ValidationError
from models import StatementUpload, UploadStatus

_IGNORED_STATES = (UploadStatus.CANCELLED, UploadStatus.FAILED)


@dataclass
class OverlapResult:
    has_overlap: bool
    overlapping_count: int
    overlapping_uploads: list[StatementUpload] = field(default_factory=list)
    warning_message: Optional[str] = None


def _same_account(upload: StatementUpload, account_number: str) -> bool:
    return (upload.account_number or "").strip() == account_number.strip()


def check_overlap(
    db: Session,
    business_id: str,
    account_number: Optional[str],
    start_date: date,
    end_date: date,
    exclude_upload_id: Optional[str] = None,
) -> OverlapResult:
    """
    Prior uploads of this business whose [start, end] intersects the candidate
    range, inclusive on both ends. With an account number only uploads for the
    same account count; without one, every account does.
    """
    if start_date > end_date:
        raise ValidationError("startDate must be on or before endDate")

    q = (
        select(StatementUpload)
        .where(
            StatementUpload.business_id == business_id,
            StatementUpload.status.not_in(_IGNORED_STATES),
            StatementUpload.statement_start_date.is_not(None),
            StatementUpload.statement_end_date.is_not(None),
            StatementUpload.statement_start_date <= end_date,
            StatementUpload.statement_end_date >= start_date,
        )
        .order_by(StatementUpload.statement_start_date)
    )
    if exclude_upload_id:
        q = q.where(StatementUpload.id != exclude_upload_id)

    candidates = list(db.scalars(q))
    if account_number:
        candidates = [u for u in candidates if _same_account(u, account_number)]

    if not candidates:
        return OverlapResult(has_overlap=False, overlapping_count=0)

    periods = ", ".join(
        f"{u.statement_start_date.isoformat()} to {u.statement_end_date.isoformat()}"
        for u in candidates[:3]
    )
    more = f" and {len(candidates) - 3} more" if len(candidates) > 3 else ""
    noun = "statement" if len(candidates) == 1 else "statements"
    return OverlapResult(
        has_overlap=True,
        overlapping_count=len(candidates),
        overlapping_uploads=candidates,
        warning_message=(
            f"This period overlaps {len(candidates)} previously uploaded {noun} "
            f"({periods}{more}). Transactions already imported will be flagged as duplicates."
        ),
    )
