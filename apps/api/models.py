import enum
import uuid
from datetime import datetime, date
from typing import Optional
from sqlalchemy import (
    BigInteger, Boolean, Date, DateTime, Enum, Float, ForeignKey, Index, Integer,
    String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class UploadStatus(str, enum.Enum):
    UPLOADING = "UPLOADING"
    PARSING = "PARSING"
    PARSED = "PARSED"
    IMPORTING = "IMPORTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class LineStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    SKIPPED = "SKIPPED"
    IMPORTED = "IMPORTED"
    DUPLICATE = "DUPLICATE"
    ERROR = "ERROR"


class TransactionType(str, enum.Enum):
    INFLOW = "INFLOW"
    OUTFLOW = "OUTFLOW"


class AccountType(str, enum.Enum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


def _enum(cls):
    return Enum(cls, native_enum=False, length=20)


# ── Statements ────────────────────────────────────────────────────────────────

class StatementUpload(Base):
    __tablename__ = "statement_uploads"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    original_filename: Mapped[str] = mapped_column(String(255))
    file_size_bytes: Mapped[int] = mapped_column(BigInteger)
    content_type: Mapped[str] = mapped_column(String(100))
    stored_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[UploadStatus] = mapped_column(_enum(UploadStatus), default=UploadStatus.UPLOADING, index=True)

    # Detected by the parser
    detected_bank_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    statement_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    statement_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    account_number_extracted: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    account_name_extracted: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    bank_account_id: Mapped[Optional[str]] = mapped_column(String(32), ForeignKey("bank_accounts.id"), nullable=True)

    # Always derived from line states (lifecycle.recompute_counters)
    total_lines_parsed: Mapped[int] = mapped_column(Integer, default=0)
    lines_imported: Mapped[int] = mapped_column(Integer, default=0)
    lines_skipped: Mapped[int] = mapped_column(Integer, default=0)
    lines_duplicate: Mapped[int] = mapped_column(Integer, default=0)
    lines_pending: Mapped[int] = mapped_column(Integer, default=0)
    lines_approved: Mapped[int] = mapped_column(Integer, default=0)
    lines_error: Mapped[int] = mapped_column(Integer, default=0)

    import_in_progress: Mapped[bool] = mapped_column(Boolean, default=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    bank_account: Mapped[Optional["BankAccount"]] = relationship("BankAccount")
    lines: Mapped[list["StatementLine"]] = relationship(
        "StatementLine", back_populates="upload",
        cascade="all, delete-orphan", order_by="StatementLine.line_number",
    )

    @property
    def account_number(self) -> Optional[str]:
        if self.account_number_extracted:
            return self.account_number_extracted
        return self.bank_account.account_number if self.bank_account else None

    @property
    def bank_account_name(self) -> Optional[str]:
        return self.bank_account.display_name if self.bank_account else None


class StatementLine(Base):
    __tablename__ = "statement_lines"
    __table_args__ = (
        Index("ix_statement_lines_business_hash", "business_id", "transaction_hash"),
        UniqueConstraint("upload_id", "line_number", name="uq_statement_lines_upload_line"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    upload_id: Mapped[str] = mapped_column(String(32), ForeignKey("statement_uploads.id", ondelete="CASCADE"), index=True)
    business_id: Mapped[str] = mapped_column(String(64))

    # Parsed facts, never edited
    line_number: Mapped[int] = mapped_column(Integer)
    transaction_date: Mapped[date] = mapped_column(Date)
    value_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    description: Mapped[str] = mapped_column(String(500))
    reference: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    vendor: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    transaction_type: Mapped[TransactionType] = mapped_column(_enum(TransactionType))
    amount_kobo: Mapped[int] = mapped_column(BigInteger)
    balance_after_kobo: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    status: Mapped[LineStatus] = mapped_column(_enum(LineStatus), default=LineStatus.PENDING)

    transaction_hash: Mapped[str] = mapped_column(String(64))
    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False)
    duplicate_override: Mapped[bool] = mapped_column(Boolean, default=False)

    # Machine suggestion (advisory)
    suggested_category_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    suggested_category_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    suggested_category_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    category_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Human decision
    selected_category_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    selected_category_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    selected_category_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    manual_gl_account_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    manual_gl_account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    manual_gl_account_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    user_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # GL preview (chart.refresh_gl_preview)
    suggested_gl_account_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    suggested_gl_account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    suggested_gl_account_flow: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Written once by the importer
    imported_transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    imported_journal_entry_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    imported_journal_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    imported_gl_account_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    imported_gl_account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    upload: Mapped[StatementUpload] = relationship("StatementUpload", back_populates="lines")


# ── Chart of accounts ─────────────────────────────────────────────────────────

class GlAccount(Base):
    __tablename__ = "gl_accounts"
    __table_args__ = (UniqueConstraint("business_id", "code", name="uq_gl_accounts_business_code"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    code: Mapped[str] = mapped_column(String(20))
    name: Mapped[str] = mapped_column(String(200))
    account_type: Mapped[AccountType] = mapped_column(_enum(AccountType))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("business_id", "code", name="uq_categories_business_code"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    code: Mapped[str] = mapped_column(String(50))
    name: Mapped[str] = mapped_column(String(200))
    flow: Mapped[str] = mapped_column(String(10))  # INFLOW | OUTFLOW | BOTH
    gl_account_id: Mapped[Optional[str]] = mapped_column(String(32), ForeignKey("gl_accounts.id"), nullable=True)

    gl_account: Mapped[Optional[GlAccount]] = relationship("GlAccount")


class CategorizationRule(Base):
    __tablename__ = "categorization_rules"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(200))
    keyword: Mapped[str] = mapped_column(String(200))
    category_id: Mapped[str] = mapped_column(String(32), ForeignKey("categories.id", ondelete="CASCADE"))
    priority: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    category: Mapped[Category] = relationship("Category")


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    bank_name: Mapped[str] = mapped_column(String(200))
    account_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    gl_account_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    @property
    def display_name(self) -> str:
        if self.account_number:
            return f"{self.bank_name} ••{self.account_number[-4:]}"
        return self.bank_name


# ── Local ledger ──────────────────────────────────────────────────────────────

class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"
    __table_args__ = (UniqueConstraint("business_id", "reference_id", name="uq_ledger_transactions_reference"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    reference_id: Mapped[str] = mapped_column(String(64))
    transaction_type: Mapped[TransactionType] = mapped_column(_enum(TransactionType))
    amount_kobo: Mapped[int] = mapped_column(BigInteger)
    date: Mapped[date] = mapped_column(Date)
    description: Mapped[str] = mapped_column(String(500))
    gl_account_code: Mapped[str] = mapped_column(String(20))
    source: Mapped[str] = mapped_column(String(30), default="BANK_STATEMENT")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    journal_entry: Mapped[Optional["JournalEntry"]] = relationship("JournalEntry", back_populates="transaction", uselist=False)


class JournalEntry(Base):
    __tablename__ = "journal_entries"
    __table_args__ = (UniqueConstraint("business_id", "number", name="uq_journal_entries_number"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    number: Mapped[str] = mapped_column(String(20))
    transaction_id: Mapped[str] = mapped_column(String(32), ForeignKey("ledger_transactions.id"))
    date: Mapped[date] = mapped_column(Date)
    memo: Mapped[str] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    transaction: Mapped[LedgerTransaction] = relationship("LedgerTransaction", back_populates="journal_entry")
    lines: Mapped[list["JournalLine"]] = relationship("JournalLine", back_populates="entry", cascade="all, delete-orphan")


class JournalLine(Base):
    __tablename__ = "journal_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    entry_id: Mapped[str] = mapped_column(String(32), ForeignKey("journal_entries.id"))
    gl_account_code: Mapped[str] = mapped_column(String(20))
    debit_kobo: Mapped[int] = mapped_column(BigInteger, default=0)
    credit_kobo: Mapped[int] = mapped_column(BigInteger, default=0)

    entry: Mapped[JournalEntry] = relationship("JournalEntry", back_populates="lines")


class JournalSequence(Base):
    """Last journal number handed out per business."""
    __tablename__ = "journal_sequences"

    business_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_number: Mapped[int] = mapped_column(Integer, default=0)


class LedgerPeriodLock(Base):
    __tablename__ = "ledger_period_locks"

    business_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    locked_through: Mapped[date] = mapped_column(Date)


# ── Audit ─────────────────────────────────────────────────────────────────────

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    entity_type: Mapped[str] = mapped_column(String(50))
    entity_id: Mapped[str] = mapped_column(String(64))
    action: Mapped[str] = mapped_column(String(50))
    old_values: Mapped[Optional[str]] = mapped_column(Text, nullable=True)   # JSON
    new_values: Mapped[Optional[str]] = mapped_column(Text, nullable=True)   # JSON
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
