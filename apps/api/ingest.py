"""
Background parsing: stored file → parsed, de-duplicated, categorized lines.

Runs after the upload request has returned; callers poll the upload until it
leaves PARSING.
"""
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

import statement_parser
from categorizer import Categorizer
from chart import refresh_gl_preview
from database import SessionLocal
from duplicates import compute_hash, detect_duplicates
from errors import InvalidTransitionError, UnparsableDocumentError
from lifecycle import mark_parsed, transition
from models import BankAccount, StatementLine, StatementUpload, UploadStatus
from overlap import check_overlap

logger = logging.getLogger(__name__)


def _build_lines(upload: StatementUpload, parsed: statement_parser.ParsedStatement) -> list[StatementLine]:
    lines = []
    for number, raw in enumerate(parsed.lines, start=1):
        lines.append(StatementLine(
            business_id=upload.business_id,
            line_number=number,
            transaction_date=raw.transaction_date,
            value_date=raw.value_date,
            description=raw.description,
            reference=raw.reference,
            vendor=raw.vendor,
            transaction_type=raw.transaction_type,
            amount_kobo=raw.amount_kobo,
            balance_after_kobo=raw.balance_after_kobo,
            transaction_hash=compute_hash(
                raw.transaction_date, raw.amount_kobo, raw.transaction_type,
                raw.description, raw.reference,
            ),
        ))
    return lines


def _resolve_bank_account(db: Session, upload: StatementUpload) -> None:
    """Link the upload to a registered bank account by extracted account number."""
    if upload.bank_account_id or not upload.account_number_extracted:
        return
    account = db.scalar(
        select(BankAccount).where(
            BankAccount.business_id == upload.business_id,
            BankAccount.account_number == upload.account_number_extracted,
        )
    )
    if account:
        upload.bank_account_id = account.id
        logger.info(f"Upload {upload.id} linked to bank account {account.display_name}")


def _fail(db: Session, upload_id: str, message: str) -> None:
    db.rollback()
    upload = db.get(StatementUpload, upload_id)
    if upload is None or upload.status != UploadStatus.PARSING:
        return
    transition(db, upload, UploadStatus.FAILED, error_message=message)
    db.commit()


def process_upload(db: Session, upload_id: str) -> Optional[StatementUpload]:
    """Parse one upload that is in PARSING. Returns None when there was nothing to do."""
    upload = db.get(StatementUpload, upload_id)
    if upload is None:
        logger.warning(f"Parse requested for unknown upload {upload_id}")
        return None
    if upload.status != UploadStatus.PARSING:
        logger.info(f"Upload {upload_id} is {upload.status.value}; skipping parse")
        return upload

    try:
        contents = Path(upload.stored_path or "").read_bytes()
    except OSError as e:
        logger.error(f"Upload {upload_id}: stored file unreadable: {e}")
        _fail(db, upload_id, "The uploaded file could not be read")
        return db.get(StatementUpload, upload_id)

    try:
        parsed = statement_parser.parse(contents, upload.original_filename, upload.content_type)
    except UnparsableDocumentError as e:
        logger.warning(f"Upload {upload_id} unparsable: {e}")
        _fail(db, upload_id, e.message)
        return db.get(StatementUpload, upload_id)

    # The user's declared bank name wins over detection
    upload.detected_bank_name       = upload.detected_bank_name or parsed.bank_name
    upload.statement_start_date     = parsed.start_date
    upload.statement_end_date       = parsed.end_date
    upload.account_number_extracted = parsed.account_number
    upload.account_name_extracted   = parsed.account_name
    _resolve_bank_account(db, upload)
    db.flush()

    if upload.statement_start_date and upload.statement_end_date:
        overlap = check_overlap(
            db, upload.business_id, upload.account_number,
            upload.statement_start_date, upload.statement_end_date,
            exclude_upload_id=upload.id,
        )
        if overlap.has_overlap:
            logger.warning(f"Upload {upload_id}: {overlap.warning_message}")

    lines = _build_lines(upload, parsed)
    detect_duplicates(db, upload.business_id, lines)
    Categorizer(db, upload.business_id).annotate(lines)
    for ln in lines:
        refresh_gl_preview(db, ln)

    try:
        mark_parsed(db, upload, lines)
    except InvalidTransitionError:
        # Cancelled while we were parsing: drop the lines
        db.rollback()
        logger.info(f"Upload {upload_id} was cancelled during parsing; discarding lines")
        return db.get(StatementUpload, upload_id)

    db.commit()
    db.refresh(upload)
    logger.info(
        f"Upload {upload_id} parsed: {upload.total_lines_parsed} lines, "
        f"{upload.lines_duplicate} duplicates"
    )
    return upload


def parse_upload(upload_id: str) -> None:
    """Background-task entry point: owns its own session."""
    db = SessionLocal()
    try:
        process_upload(db, upload_id)
    except Exception:
        logger.exception(f"Parsing upload {upload_id} failed unexpectedly")
        _fail(db, upload_id, "Statement processing failed unexpectedly")
    finally:
        db.close()
