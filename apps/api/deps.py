from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

import config
from database import get_db
from ledger import LedgerEngine, get_ledger


def get_business_id(x_business_id: Optional[str] = Header(None)) -> str:
    """Tenant for the request: X-Business-Id, else the configured default."""
    return (x_business_id or "").strip() or config.DEFAULT_BUSINESS_ID


def get_ledger_engine(db: Session = Depends(get_db)):
    ledger: LedgerEngine = get_ledger(db)
    try:
        yield ledger
    finally:
        ledger.close()
