from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import AccountType, LineStatus, TransactionType, UploadStatus


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ── Statement uploads ─────────────────────────────────────────────────────────

class StatementUploadOut(CamelModel):
    id: str
    business_id: str
    original_filename: str
    file_size_bytes: int
    content_type: str
    status: UploadStatus
    detected_bank_name: Optional[str] = None
    statement_start_date: Optional[date] = None
    statement_end_date: Optional[date] = None
    account_number: Optional[str] = None
    account_name_extracted: Optional[str] = None
    bank_account_id: Optional[str] = None
    bank_account_name: Optional[str] = None
    total_lines_parsed: int = 0
    lines_imported: int = 0
    lines_skipped: int = 0
    lines_duplicate: int = 0
    lines_pending: int = 0
    lines_approved: int = 0
    lines_error: int = 0
    import_in_progress: bool = False
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class StatementLineOut(CamelModel):
    id: str
    upload_id: str
    line_number: int
    transaction_date: date
    value_date: Optional[date] = None
    description: str
    reference: Optional[str] = None
    vendor: Optional[str] = None
    transaction_type: TransactionType
    amount_kobo: int
    balance_after_kobo: Optional[int] = None
    status: LineStatus
    transaction_hash: str
    is_duplicate: bool
    duplicate_override: bool = False
    suggested_category_id: Optional[str] = None
    suggested_category_name: Optional[str] = None
    suggested_category_code: Optional[str] = None
    category_confidence: Optional[float] = None
    selected_category_id: Optional[str] = None
    selected_category_name: Optional[str] = None
    selected_category_code: Optional[str] = None
    manual_gl_account_id: Optional[str] = None
    manual_gl_account_name: Optional[str] = None
    manual_gl_account_code: Optional[str] = None
    suggested_gl_account_code: Optional[str] = None
    suggested_gl_account_name: Optional[str] = None
    suggested_gl_account_flow: Optional[str] = None
    user_notes: Optional[str] = None
    imported_transaction_id: Optional[str] = None
    imported_journal_entry_id: Optional[str] = None
    imported_journal_number: Optional[str] = None
    imported_gl_account_code: Optional[str] = None
    imported_gl_account_name: Optional[str] = None
    error_message: Optional[str] = None


class StatementUploadDetail(StatementUploadOut):
    lines: list[StatementLineOut] = []


class StatementUploadPage(CamelModel):
    content: list[StatementUploadOut]
    page: int
    size: int
    total_elements: int
    total_pages: int


# ── Review ────────────────────────────────────────────────────────────────────

class LineUpdateRequest(CamelModel):
    """Fields left out are unchanged; an explicit null clears a selection."""

    status: LineStatus
    selected_category_id: Optional[str] = None
    manual_gl_account_id: Optional[str] = None
    user_notes: Optional[str] = Field(None, max_length=2000)


class BulkUpdateRequest(CamelModel):
    line_ids: list[str] = Field(min_length=1)
    status: LineStatus
    category_id: Optional[str] = None
    manual_gl_account_id: Optional[str] = None


class LineErrorOut(CamelModel):
    line_id: str
    message: str


class BulkUpdateResponse(CamelModel):
    lines: list[StatementLineOut]
    errors: list[LineErrorOut]


# ── Import ────────────────────────────────────────────────────────────────────

class ImportRequest(CamelModel):
    statement_upload_id: str
    bank_account_id: Optional[str] = None
    auto_approve_all: bool = False


class ImportResponse(CamelModel):
    statement_upload_id: str
    total_lines: int
    lines_imported: int
    lines_skipped: int
    lines_duplicate: int
    lines_error: int
    message: str


# ── Overlap ───────────────────────────────────────────────────────────────────

class OverlappingUploadOut(CamelModel):
    id: str
    original_filename: str
    status: UploadStatus
    detected_bank_name: Optional[str] = None
    account_number: Optional[str] = None
    statement_start_date: Optional[date] = None
    statement_end_date: Optional[date] = None


class OverlapCheckResponse(CamelModel):
    has_overlap: bool
    overlapping_count: int
    overlapping_uploads: list[OverlappingUploadOut]
    warning_message: Optional[str] = None


# ── Chart of accounts ─────────────────────────────────────────────────────────

class GlAccountCreate(CamelModel):
    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=200)
    account_type: AccountType


class GlAccountUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    is_active: Optional[bool] = None


class GlAccountOut(CamelModel):
    id: str
    code: str
    name: str
    account_type: AccountType
    is_active: bool


class CategoryCreate(CamelModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=200)
    flow: Literal["INFLOW", "OUTFLOW", "BOTH"]
    gl_account_id: Optional[str] = None


class CategoryOut(CamelModel):
    id: str
    code: str
    name: str
    flow: str
    gl_account_id: Optional[str] = None


class RuleCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    keyword: str = Field(min_length=1, max_length=200)
    category_id: str
    priority: int = 0


class RuleOut(CamelModel):
    id: str
    name: str
    keyword: str
    category_id: str
    priority: int


# ── Audit Log ─────────────────────────────────────────────────────────────────

class AuditLogOut(CamelModel):
    id: int
    entity_type: str
    entity_id: str
    action: str
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    timestamp: datetime
