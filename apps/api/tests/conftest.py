import os
import tempfile
from datetime import date

_TMP = tempfile.mkdtemp(prefix="statement-import-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["LEDGER_URL"] = ""
os.environ["DEFAULT_BUSINESS_ID"] = "biz-test"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import select  # noqa: E402

from chart import ensure_chart  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from duplicates import compute_hash, detect_duplicates  # noqa: E402
from lifecycle import mark_parsed  # noqa: E402
from main import app  # noqa: E402
from models import Category, GlAccount, StatementLine, StatementUpload, TransactionType, UploadStatus  # noqa: E402

BUSINESS = "biz-test"


@pytest.fixture(autouse=True)
def _reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    session = SessionLocal()
    ensure_chart(session, BUSINESS)
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


def category(db, code: str, business_id: str = BUSINESS) -> Category:
    return db.scalar(select(Category).where(Category.business_id == business_id, Category.code == code))


def gl_account(db, code: str, business_id: str = BUSINESS) -> GlAccount:
    return db.scalar(select(GlAccount).where(GlAccount.business_id == business_id, GlAccount.code == code))


def make_parsed_upload(
    db,
    rows: list[tuple],
    business_id: str = BUSINESS,
    account_number: str = "0123456789",
    filename: str = "statement.csv",
) -> StatementUpload:
    """
    Build a PARSED upload straight from (date, signed_kobo, description) rows,
    running the same duplicate pass the background parser does.
    """
    upload = StatementUpload(
        business_id=business_id,
        original_filename=filename,
        file_size_bytes=100,
        content_type="text/csv",
        status=UploadStatus.PARSING,
        account_number_extracted=account_number,
        statement_start_date=min(r[0] for r in rows),
        statement_end_date=max(r[0] for r in rows),
    )
    db.add(upload)
    db.flush()

    lines = []
    for number, (tx_date, signed, desc) in enumerate(rows, start=1):
        tx_type = TransactionType.OUTFLOW if signed < 0 else TransactionType.INFLOW
        lines.append(StatementLine(
            business_id=business_id,
            line_number=number,
            transaction_date=tx_date,
            description=desc,
            transaction_type=tx_type,
            amount_kobo=abs(signed),
            transaction_hash=compute_hash(tx_date, abs(signed), tx_type, desc),
        ))
    detect_duplicates(db, business_id, lines)
    mark_parsed(db, upload, lines)
    db.commit()
    db.refresh(upload)
    return upload


def make_upload_in(db, status: UploadStatus, business_id: str = BUSINESS, **fields) -> StatementUpload:
    upload = StatementUpload(
        business_id=business_id,
        original_filename="statement.pdf",
        file_size_bytes=100,
        content_type="application/pdf",
        status=status,
        **fields,
    )
    db.add(upload)
    db.commit()
    db.refresh(upload)
    return upload

