"""
Line review: the human decisions on each statement line.

Reviewers approve, skip or undo lines, pick a category or an explicit GL
account, and leave notes. IMPORTED and ERROR are set only by the importer.
A line flagged as a duplicate reaches APPROVED only through the explicit
DUPLICATE → APPROVED override, which is recorded on the line.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

import audit
from chart import get_category, get_gl_account, refresh_gl_preview
from errors import InvalidTransitionError, NotFoundError, StatementError, ValidationError
from lifecycle import recompute_counters
from models import LineStatus, StatementLine, StatementUpload, UploadStatus

logger = logging.getLogger(__name__)

# Marks an optional field the caller did not send (None means "clear it").
UNSET = object()

_LEGAL_MOVES = {
    (LineStatus.PENDING,   LineStatus.APPROVED),
    (LineStatus.PENDING,   LineStatus.SKIPPED),
    (LineStatus.DUPLICATE, LineStatus.APPROVED),
    (LineStatus.DUPLICATE, LineStatus.SKIPPED),
    (LineStatus.APPROVED,  LineStatus.PENDING),
    (LineStatus.SKIPPED,   LineStatus.PENDING),
}
_IMPORTER_ONLY = {LineStatus.IMPORTED, LineStatus.ERROR}


@dataclass
class LineError:
    line_id: str
    message: str


@dataclass
class BulkUpdateResult:
    lines: list[StatementLine] = field(default_factory=list)
    errors: list[LineError] = field(default_factory=list)


def _load_line(db: Session, business_id: str, line_id: str) -> StatementLine:
    line = db.scalar(
        select(StatementLine).where(StatementLine.id == line_id).with_for_update()
    )
    if not line or line.business_id != business_id:
        raise NotFoundError(f"Statement line not found: {line_id}")
    return line


def _target_status(line: StatementLine, requested: LineStatus) -> LineStatus:
    """Validate a requested status change and return the status to store."""
    if requested in _IMPORTER_ONLY:
        raise InvalidTransitionError(f"{requested.value} is set by the importer and cannot be requested")

    # Undo on a flagged duplicate goes back to DUPLICATE, never to a silently approvable PENDING
    if requested == LineStatus.DUPLICATE:
        if not line.is_duplicate:
            raise InvalidTransitionError("Only lines flagged as duplicates can be returned to DUPLICATE")
        requested = LineStatus.PENDING

    if (line.status, requested) not in _LEGAL_MOVES:
        raise InvalidTransitionError(
            f"Cannot move line {line.line_number} from {line.status.value} to {requested.value}"
        )
    if requested == LineStatus.PENDING and line.is_duplicate:
        return LineStatus.DUPLICATE
    return requested


def _check_editable(upload: StatementUpload, line: StatementLine, status_change: bool) -> None:
    if line.status == LineStatus.IMPORTED:
        raise InvalidTransitionError(f"Line {line.line_number} is already imported")
    if upload.status == UploadStatus.PARSED:
        return
    if upload.status == UploadStatus.COMPLETED and line.status == LineStatus.ERROR and not status_change:
        # Fixing a failed line before a retry import
        return
    raise InvalidTransitionError(
        f"Statement is {upload.status.value}; line {line.line_number} can no longer be changed"
    )


def _apply(
    db: Session,
    line: StatementLine,
    status: Optional[LineStatus],
    selected_category_id,
    manual_gl_account_id,
    user_notes,
) -> dict:
    """Validate then mutate one line. Returns the audit diff."""
    upload = line.upload
    status_change = status is not None and status != line.status
    _check_editable(upload, line, status_change)

    new_status = _target_status(line, status) if status_change else line.status

    category = gl_account = None
    if selected_category_id not in (UNSET, None, ""):
        category = get_category(db, line.business_id, selected_category_id)
        if category.flow not in ("BOTH", line.transaction_type.value):
            raise ValidationError(
                f"Category {category.name} is for {category.flow.lower()}s; "
                f"line {line.line_number} is an {line.transaction_type.value.lower()}"
            )
    if manual_gl_account_id not in (UNSET, None, ""):
        gl_account = get_gl_account(db, line.business_id, manual_gl_account_id)
        if not gl_account.is_active:
            raise ValidationError(f"GL account {gl_account.code} is inactive")

    old = {"status": line.status.value}
    new = {"status": new_status.value}

    if status_change:
        if line.status == LineStatus.DUPLICATE and new_status == LineStatus.APPROVED:
            line.duplicate_override = True
            new["duplicate_override"] = True
            logger.info(f"Line {line.id}: duplicate explicitly approved by reviewer")
        elif new_status == LineStatus.DUPLICATE:
            line.duplicate_override = False
        line.status = new_status

    mapping_changed = False
    if selected_category_id is not UNSET:
        old["selected_category_id"] = line.selected_category_id
        line.selected_category_id   = category.id if category else None
        line.selected_category_name = category.name if category else None
        line.selected_category_code = category.code if category else None
        new["selected_category_id"] = line.selected_category_id
        mapping_changed = True
    if manual_gl_account_id is not UNSET:
        old["manual_gl_account_id"] = line.manual_gl_account_id
        line.manual_gl_account_id   = gl_account.id if gl_account else None
        line.manual_gl_account_name = gl_account.name if gl_account else None
        line.manual_gl_account_code = gl_account.code if gl_account else None
        new["manual_gl_account_id"] = line.manual_gl_account_id
        mapping_changed = True
    if user_notes is not UNSET:
        line.user_notes = user_notes or None

    if mapping_changed:
        refresh_gl_preview(db, line)
    if status_change:
        recompute_counters(db, upload)

    return {"old": old, "new": new}


def update_line(
    db: Session,
    business_id: str,
    line_id: str,
    status: Optional[LineStatus] = None,
    selected_category_id=UNSET,
    manual_gl_account_id=UNSET,
    user_notes=UNSET,
) -> StatementLine:
    """Apply one review decision atomically (status, selection and GL preview together)."""
    try:
        line = _load_line(db, business_id, line_id)
        diff = _apply(db, line, status, selected_category_id, manual_gl_account_id, user_notes)
        audit.record(db, business_id, "statement_line", line.id, "review",
                     old_values=diff["old"], new_values=diff["new"])
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(line)
    return line


def bulk_update(
    db: Session,
    business_id: str,
    line_ids: list[str],
    status: LineStatus,
    category_id: Optional[str] = None,
    manual_gl_account_id: Optional[str] = None,
) -> BulkUpdateResult:
    """
    Apply the same decision to many lines, one transaction per line.

    A bad line fails on its own; the rest of the batch still goes through.
    """
    result = BulkUpdateResult()
    for line_id in dict.fromkeys(line_ids):
        try:
            line = update_line(
                db, business_id, line_id,
                status=status,
                selected_category_id=category_id if category_id else UNSET,
                manual_gl_account_id=manual_gl_account_id if manual_gl_account_id else UNSET,
            )
        except StatementError as e:
            result.errors.append(LineError(line_id=line_id, message=e.message))
            continue
        result.lines.append(line)
    if result.errors:
        logger.warning(f"Bulk update: {len(result.errors)}/{len(line_ids)} lines rejected")
    return result
