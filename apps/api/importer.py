"""
Import committer: posts reviewed statement lines into the ledger.

One ledger posting per line, each in its own savepoint and commit, so a
rejected line never rolls back the lines before it. Line outcomes are
accumulated into the summary; only whole-import failures raise.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

import audit
import config
from chart import resolve_gl_account
from errors import (
    ConcurrentImportError, InvalidTransitionError, LedgerUnavailableError,
    LedgerValidationError, StatementError, ValidationError,
)
from ledger import LedgerEngine
from lifecycle import get_bank_account, get_upload, recompute_counters, transition
from models import GlAccount, LineStatus, StatementLine, StatementUpload, UploadStatus

logger = logging.getLogger(__name__)

NO_CATEGORY_MESSAGE = "No category resolved for this line"


@dataclass
class ImportSummary:
    statement_upload_id: str
    total_lines: int
    lines_imported: int
    lines_skipped: int
    lines_duplicate: int
    lines_error: int
    message: str


# ── Serialization ─────────────────────────────────────────────────────────────

def _acquire(db: Session, upload_id: str) -> None:
    result = db.execute(
        update(StatementUpload)
        .where(StatementUpload.id == upload_id, StatementUpload.import_in_progress.is_(False))
        .values(import_in_progress=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConcurrentImportError("An import is already running for this statement")
    db.commit()


def _release(db: Session, upload_id: str) -> None:
    db.rollback()
    db.execute(
        update(StatementUpload)
        .where(StatementUpload.id == upload_id)
        .values(import_in_progress=False)
        .execution_options(synchronize_session=False)
    )
    db.commit()


# ── Per line ──────────────────────────────────────────────────────────────────

def _eligible_lines(db: Session, upload: StatementUpload, retry: bool, auto_approve_all: bool) -> list[StatementLine]:
    if retry:
        statuses = [LineStatus.ERROR]
    elif auto_approve_all:
        statuses = [LineStatus.APPROVED, LineStatus.PENDING]
    else:
        statuses = [LineStatus.APPROVED]
    q = (
        select(StatementLine)
        .where(StatementLine.upload_id == upload.id, StatementLine.status.in_(statuses))
        .order_by(StatementLine.line_number)
    )
    # PENDING lines are never duplicates, but a flagged line must only pass through an explicit override
    return [ln for ln in db.scalars(q) if not (ln.is_duplicate and not ln.duplicate_override)]


def _resolve_account(db: Session, line: StatementLine, auto_approve_all: bool) -> Optional[GlAccount]:
    if line.manual_gl_account_id:
        return resolve_gl_account(db, line.business_id, line.manual_gl_account_id, None)
    if line.selected_category_id:
        return resolve_gl_account(db, line.business_id, None, line.selected_category_id)
    if auto_approve_all and line.suggested_category_id:
        return resolve_gl_account(db, line.business_id, None, line.suggested_category_id)
    return None


def _mark_error(line: StatementLine, message: str) -> None:
    line.status = LineStatus.ERROR
    line.error_message = message


def _import_line(
    db: Session,
    ledger: LedgerEngine,
    line: StatementLine,
    bank_gl_code: str,
    auto_approve_all: bool,
) -> LineStatus:
    if line.imported_transaction_id:
        # Posted on an earlier run whose status write was lost
        line.status = LineStatus.IMPORTED
        line.error_message = None
        return line.status

    account = _resolve_account(db, line, auto_approve_all)
    if account is None:
        _mark_error(line, NO_CATEGORY_MESSAGE)
        return line.status

    try:
        with db.begin_nested():
            posting = ledger.post_entry(
                business_id=line.business_id,
                account_code=account.code,
                bank_account_code=bank_gl_code,
                amount_kobo=line.amount_kobo,
                direction=line.transaction_type,
                entry_date=line.transaction_date,
                description=line.description,
                reference_id=line.id,
            )
    except (LedgerValidationError, LedgerUnavailableError) as e:
        logger.warning(f"Line {line.id} (#{line.line_number}) rejected by ledger: {e.message}")
        _mark_error(line, e.message)
        return line.status
    except Exception as e:
        # The savepoint is already rolled back; the rest of the batch goes on
        logger.exception(f"Line {line.id} (#{line.line_number}) failed to post")
        detail = str(e).splitlines()[0] if str(e) else e.__class__.__name__
        _mark_error(line, f"Posting failed: {detail}")
        return line.status

    line.status                    = LineStatus.IMPORTED
    line.error_message             = None
    line.imported_transaction_id   = posting.transaction_id
    line.imported_journal_entry_id = posting.journal_entry_id
    line.imported_journal_number   = posting.journal_number
    line.imported_gl_account_code  = account.code
    line.imported_gl_account_name  = account.name
    return line.status


def _summary_message(imported: int, errors: int, attempted: int) -> str:
    if attempted == 0:
        return "No lines were eligible for import"
    msg = f"Imported {imported} of {attempted} lines"
    if errors:
        msg += f"; {errors} failed and can be retried"
    return msg


# ── Entry point ───────────────────────────────────────────────────────────────

def _post_lines(
    db: Session,
    business_id: str,
    upload: StatementUpload,
    ledger: LedgerEngine,
    eligible: list[StatementLine],
    retry: bool,
    auto_approve_all: bool,
) -> ImportSummary:
    ledger.ping()

    bank_gl_code = (upload.bank_account.gl_account_code if upload.bank_account else None) \
        or config.DEFAULT_BANK_GL_CODE

    imported = errors = 0
    for line in eligible:
        outcome = _import_line(db, ledger, line, bank_gl_code, auto_approve_all)
        if outcome == LineStatus.IMPORTED:
            imported += 1
        else:
            errors += 1
        db.commit()

    if not retry:
        # Nobody approved these; a completed upload has no open lines
        for line in db.scalars(
            select(StatementLine).where(
                StatementLine.upload_id == upload.id,
                StatementLine.status.in_([LineStatus.PENDING, LineStatus.APPROVED]),
            )
        ):
            line.status = LineStatus.SKIPPED
    recompute_counters(db, upload)
    if not retry:
        transition(db, upload, UploadStatus.COMPLETED)

    message = _summary_message(imported, errors, len(eligible))
    audit.record(
        db, business_id, "statement_upload", upload.id, "import",
        new_values={"imported": imported, "errors": errors, "retry": retry,
                    "auto_approve_all": auto_approve_all},
    )
    db.commit()
    db.refresh(upload)
    logger.info(f"Upload {upload.id}: {message}")

    return ImportSummary(
        statement_upload_id=upload.id,
        total_lines=upload.total_lines_parsed,
        lines_imported=imported,
        lines_skipped=upload.lines_skipped,
        lines_duplicate=upload.lines_duplicate,
        lines_error=errors,
        message=message,
    )


def _fail_import(db: Session, upload: StatementUpload, message: str) -> None:
    """IMPORTING → FAILED, keeping the line outcomes already committed."""
    db.rollback()
    try:
        recompute_counters(db, upload)
        transition(db, upload, UploadStatus.FAILED, error_message=message)
        db.commit()
    except Exception:
        logger.exception(f"Could not mark upload {upload.id} as FAILED")
        db.rollback()


def import_lines(
    db: Session,
    business_id: str,
    upload_id: str,
    ledger: LedgerEngine,
    bank_account_id: Optional[str] = None,
    auto_approve_all: bool = False,
) -> ImportSummary:
    """
    Post the eligible lines of one upload to the ledger.

    A PARSED upload goes through IMPORTING to COMPLETED, or to FAILED when
    the import cannot finish. On a COMPLETED upload only ERROR lines are
    retried and the state does not change, so repeating an import posts
    nothing new.
    """
    upload = get_upload(db, business_id, upload_id)
    _acquire(db, upload.id)
    try:
        db.refresh(upload)
        if upload.status == UploadStatus.COMPLETED:
            retry = True
        elif upload.status == UploadStatus.PARSED:
            retry = False
        else:
            raise InvalidTransitionError(
                f"Cannot import a statement upload that is {upload.status.value}"
            )

        if bank_account_id:
            upload.bank_account_id = get_bank_account(db, business_id, bank_account_id).id

        eligible = _eligible_lines(db, upload, retry, auto_approve_all)
        if not eligible and not retry:
            raise ValidationError("No approved lines to import")

        if not retry:
            transition(db, upload, UploadStatus.IMPORTING)
            db.commit()

        try:
            return _post_lines(db, business_id, upload, ledger, eligible, retry, auto_approve_all)
        except Exception as e:
            message = e.message if isinstance(e, StatementError) else f"Import failed: {e}"
            logger.exception(f"Import of upload {upload.id} aborted: {message}")
            if retry:
                db.rollback()
            else:
                _fail_import(db, upload, message)
            raise
    finally:
        _release(db, upload_id)
