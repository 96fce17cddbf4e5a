"""
Upload lifecycle: the per-upload state machine and its aggregate counters.

    UPLOADING → PARSING → PARSED → IMPORTING → COMPLETED
    PARSING → FAILED, IMPORTING → FAILED
    UPLOADING | PARSING | PARSED → CANCELLED

Transitions are conditional UPDATEs on the current status, so two writers
racing on the same upload (cancel vs. parse, two imports) cannot both win.
"""
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

import audit
import config
from chart import ensure_chart
from errors import InvalidTransitionError, NotFoundError, ValidationError
from models import BankAccount, LineStatus, StatementLine, StatementUpload, UploadStatus

logger = logging.getLogger(__name__)

CANCELLABLE_STATES = {UploadStatus.UPLOADING, UploadStatus.PARSING, UploadStatus.PARSED}

_TRANSITIONS: dict[UploadStatus, set[UploadStatus]] = {
    UploadStatus.UPLOADING: {UploadStatus.PARSING, UploadStatus.CANCELLED},
    UploadStatus.PARSING:   {UploadStatus.PARSED, UploadStatus.FAILED, UploadStatus.CANCELLED},
    UploadStatus.PARSED:    {UploadStatus.IMPORTING, UploadStatus.CANCELLED},
    UploadStatus.IMPORTING: {UploadStatus.COMPLETED, UploadStatus.FAILED},
    UploadStatus.COMPLETED: set(),
    UploadStatus.FAILED:    set(),
    UploadStatus.CANCELLED: set(),
}

_COUNTER_FIELDS = {
    LineStatus.IMPORTED:  "lines_imported",
    LineStatus.SKIPPED:   "lines_skipped",
    LineStatus.DUPLICATE: "lines_duplicate",
    LineStatus.PENDING:   "lines_pending",
    LineStatus.APPROVED:  "lines_approved",
    LineStatus.ERROR:     "lines_error",
}


# ── Lookups ───────────────────────────────────────────────────────────────────

def get_upload(db: Session, business_id: str, upload_id: str) -> StatementUpload:
    upload = db.get(StatementUpload, upload_id)
    if not upload or upload.business_id != business_id:
        raise NotFoundError("Statement upload not found")
    return upload


def get_bank_account(db: Session, business_id: str, bank_account_id: str) -> BankAccount:
    account = db.get(BankAccount, bank_account_id)
    if not account or account.business_id != business_id:
        raise ValidationError(f"Unknown bank account: {bank_account_id}")
    return account


# ── State machine ─────────────────────────────────────────────────────────────

def can_transition(current: UploadStatus, new_status: UploadStatus) -> bool:
    return new_status in _TRANSITIONS[current]


def transition(
    db: Session,
    upload: StatementUpload,
    new_status: UploadStatus,
    error_message: Optional[str] = None,
) -> StatementUpload:
    """Move an upload to `new_status`. Does not commit."""
    current = upload.status
    if not can_transition(current, new_status):
        raise InvalidTransitionError(
            f"Cannot move statement upload from {current.value} to {new_status.value}"
        )

    values = {
        "status": new_status,
        "error_message": error_message if new_status == UploadStatus.FAILED else None,
        "updated_at": datetime.utcnow(),
    }
    result = db.execute(
        update(StatementUpload)
        .where(StatementUpload.id == upload.id, StatementUpload.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        actual = db.scalar(select(StatementUpload.status).where(StatementUpload.id == upload.id))
        set_committed_value(upload, "status", actual)
        raise InvalidTransitionError(
            f"Statement upload changed state concurrently (now {actual.value if actual else 'deleted'})"
        )
    # Mirror the row into the instance without marking it dirty
    for key, value in values.items():
        set_committed_value(upload, key, value)

    audit.record(
        db, upload.business_id, "statement_upload", upload.id, "status",
        old_values={"status": current.value},
        new_values={"status": new_status.value, "error_message": error_message},
    )
    logger.info(f"Upload {upload.id}: {current.value} → {new_status.value}")
    return upload


def recompute_counters(db: Session, upload: StatementUpload) -> StatementUpload:
    """Derive every counter from the line states. Does not commit."""
    db.flush()
    counts = dict(db.execute(
        select(StatementLine.status, func.count(StatementLine.id))
        .where(StatementLine.upload_id == upload.id)
        .group_by(StatementLine.status)
    ).all())
    for status, attr in _COUNTER_FIELDS.items():
        setattr(upload, attr, int(counts.get(status, 0)))
    upload.total_lines_parsed = int(sum(counts.values()))
    return upload


# ── Operations ────────────────────────────────────────────────────────────────

def _validate_file(filename: str, content_type: str, contents: bytes) -> str:
    """Return the file extension to store under, or raise ValidationError."""
    if not contents:
        raise ValidationError("Uploaded file is empty")
    if len(contents) > config.MAX_UPLOAD_BYTES:
        limit_mb = config.MAX_UPLOAD_BYTES / (1024 * 1024)
        raise ValidationError(f"File exceeds the {limit_mb:g} MB upload limit")

    ext = Path(filename or "").suffix.lower()
    ct = (content_type or "").split(";")[0].strip().lower()
    if ext in config.SUPPORTED_EXTENSIONS:
        return ext
    if ct in config.SUPPORTED_CONTENT_TYPES:
        return config.SUPPORTED_CONTENT_TYPES[ct]
    raise ValidationError(
        f"Unsupported file type: {content_type or ext or 'unknown'}. Upload a PDF, CSV or Excel statement."
    )


def start_upload(
    db: Session,
    business_id: str,
    filename: str,
    content_type: str,
    contents: bytes,
    bank_account_id: Optional[str] = None,
    bank_name: Optional[str] = None,
) -> StatementUpload:
    """
    Validate and store an uploaded statement, leaving it in PARSING.

    The caller schedules ingest.parse_upload for the returned id.
    """
    ext = _validate_file(filename, content_type, contents)
    if bank_account_id:
        get_bank_account(db, business_id, bank_account_id)
    ensure_chart(db, business_id)

    config.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    stored_path = config.UPLOAD_DIR / f"{uuid.uuid4().hex}{ext}"
    stored_path.write_bytes(contents)

    upload = StatementUpload(
        business_id=business_id,
        original_filename=filename or stored_path.name,
        file_size_bytes=len(contents),
        content_type=content_type or "",
        stored_path=str(stored_path),
        status=UploadStatus.UPLOADING,
        detected_bank_name=bank_name or None,
        bank_account_id=bank_account_id or None,
    )
    db.add(upload)
    db.flush()
    audit.record(
        db, business_id, "statement_upload", upload.id, "create",
        new_values={"filename": upload.original_filename, "size": upload.file_size_bytes},
    )
    transition(db, upload, UploadStatus.PARSING)
    db.commit()
    db.refresh(upload)
    logger.info(f"Upload {upload.id} stored ({upload.file_size_bytes} bytes) for business {business_id}")
    return upload


def cancel_upload(db: Session, business_id: str, upload_id: str) -> StatementUpload:
    upload = get_upload(db, business_id, upload_id)
    if upload.status == UploadStatus.IMPORTING:
        raise InvalidTransitionError(
            "Import has already started for this statement; wait for it to complete"
        )
    if upload.status not in CANCELLABLE_STATES:
        raise InvalidTransitionError(
            f"Cannot cancel a statement upload that is {upload.status.value}"
        )
    transition(db, upload, UploadStatus.CANCELLED)
    db.commit()
    db.refresh(upload)
    return upload


def mark_parsed(db: Session, upload: StatementUpload, lines: list[StatementLine]) -> StatementUpload:
    """
    Attach the detected lines and move PARSING → PARSED. Does not commit.

    Lines arrive already annotated by the duplicate detector (PENDING or
    DUPLICATE).
    """
    if not lines:
        raise ValidationError("A parsed statement must contain at least one line")
    for ln in lines:
        if ln.status not in (LineStatus.PENDING, LineStatus.DUPLICATE):
            raise ValidationError(f"Line {ln.line_number} must start PENDING or DUPLICATE")
        upload.lines.append(ln)
    transition(db, upload, UploadStatus.PARSED)
    recompute_counters(db, upload)
    return upload
