"""
Bank statement import: upload → background parse → line review → ledger import.
"""
import logging
import math
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from sqlalchemy import func, select
from sqlalchemy.orm import Session

import ingest
import lifecycle
import review
from database import get_db
from deps import get_business_id, get_ledger_engine
from importer import import_lines
from ledger import LedgerEngine
from models import LineStatus, StatementLine, StatementUpload
from overlap import check_overlap
from schemas import (
    BulkUpdateRequest, BulkUpdateResponse, ImportRequest, ImportResponse, LineErrorOut,
    LineUpdateRequest, OverlapCheckResponse, OverlappingUploadOut, StatementLineOut,
    StatementUploadDetail, StatementUploadOut, StatementUploadPage,
)
from statement_parser import SUPPORTED_BANKS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/statements", tags=["statements"])


# ── Upload & lifecycle ────────────────────────────────────────────────────────

@router.post("/upload", response_model=StatementUploadDetail, status_code=202)
async def upload_statement(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    bank_account_id: Optional[str] = Form(None, alias="bankAccountId"),
    bank_name: Optional[str] = Form(None, alias="bankName"),
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    """Store the file and return at once; parsing runs in the background. Poll GET /statements/{id}."""
    contents = await file.read()
    upload = lifecycle.start_upload(
        db, business_id,
        filename=file.filename or "",
        content_type=file.content_type or "",
        contents=contents,
        bank_account_id=bank_account_id,
        bank_name=bank_name,
    )
    background_tasks.add_task(ingest.parse_upload, upload.id)
    return StatementUploadDetail.model_validate(upload)


@router.get("", response_model=StatementUploadPage)
def list_statements(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    total = db.scalar(
        select(func.count(StatementUpload.id)).where(StatementUpload.business_id == business_id)
    ) or 0
    uploads = db.scalars(
        select(StatementUpload)
        .where(StatementUpload.business_id == business_id)
        .order_by(StatementUpload.created_at.desc(), StatementUpload.id)
        .offset(page * size)
        .limit(size)
    ).all()
    return StatementUploadPage(
        content=[StatementUploadOut.model_validate(u) for u in uploads],
        page=page,
        size=size,
        total_elements=total,
        total_pages=math.ceil(total / size) if total else 0,
    )


@router.get("/supported-banks", response_model=list[str])
def supported_banks():
    return SUPPORTED_BANKS


@router.get("/check-overlap", response_model=OverlapCheckResponse)
def check_statement_overlap(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    account_number: Optional[str] = Query(None, alias="accountNumber"),
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    result = check_overlap(db, business_id, account_number, start_date, end_date)
    return OverlapCheckResponse(
        has_overlap=result.has_overlap,
        overlapping_count=result.overlapping_count,
        overlapping_uploads=[OverlappingUploadOut.model_validate(u) for u in result.overlapping_uploads],
        warning_message=result.warning_message,
    )


# ── Line review ───────────────────────────────────────────────────────────────

@router.patch("/lines/{line_id}", response_model=StatementLineOut)
def update_statement_line(
    line_id: str,
    body: LineUpdateRequest,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    sent = body.model_fields_set
    line = review.update_line(
        db, business_id, line_id,
        status=body.status,
        selected_category_id=body.selected_category_id if "selected_category_id" in sent else review.UNSET,
        manual_gl_account_id=body.manual_gl_account_id if "manual_gl_account_id" in sent else review.UNSET,
        user_notes=body.user_notes if "user_notes" in sent else review.UNSET,
    )
    return line


@router.post("/lines/bulk-update", response_model=BulkUpdateResponse)
def bulk_update_statement_lines(
    body: BulkUpdateRequest,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    result = review.bulk_update(
        db, business_id, body.line_ids, body.status,
        category_id=body.category_id,
        manual_gl_account_id=body.manual_gl_account_id,
    )
    return BulkUpdateResponse(
        lines=[StatementLineOut.model_validate(ln) for ln in result.lines],
        errors=[LineErrorOut(line_id=e.line_id, message=e.message) for e in result.errors],
    )


# ── Import ────────────────────────────────────────────────────────────────────

@router.post("/import", response_model=ImportResponse)
def import_statement(
    body: ImportRequest,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
    ledger: LedgerEngine = Depends(get_ledger_engine),
):
    summary = import_lines(
        db, business_id, body.statement_upload_id, ledger,
        bank_account_id=body.bank_account_id,
        auto_approve_all=body.auto_approve_all,
    )
    return ImportResponse(
        statement_upload_id=summary.statement_upload_id,
        total_lines=summary.total_lines,
        lines_imported=summary.lines_imported,
        lines_skipped=summary.lines_skipped,
        lines_duplicate=summary.lines_duplicate,
        lines_error=summary.lines_error,
        message=summary.message,
    )


# ── Per upload ────────────────────────────────────────────────────────────────

@router.get("/{upload_id}", response_model=StatementUploadDetail)
def get_statement(
    upload_id: str,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    return lifecycle.get_upload(db, business_id, upload_id)


@router.get("/{upload_id}/errors", response_model=list[StatementLineOut])
def get_statement_errors(
    upload_id: str,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    upload = lifecycle.get_upload(db, business_id, upload_id)
    return db.scalars(
        select(StatementLine)
        .where(StatementLine.upload_id == upload.id, StatementLine.status == LineStatus.ERROR)
        .order_by(StatementLine.line_number)
    ).all()


@router.delete("/{upload_id}", response_model=StatementUploadOut)
def cancel_statement(
    upload_id: str,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    return lifecycle.cancel_upload(db, business_id, upload_id)
