"""
Bank account registry: the accounts statements are uploaded for, and the GL
account each one posts against.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.orm import Session

import audit
from chart import ensure_chart, find_gl_account_by_code
from database import get_db
from deps import get_business_id
from errors import NotFoundError, ValidationError
from models import BankAccount
from schemas import CamelModel

router = APIRouter(prefix="/bank-accounts", tags=["bank-accounts"])


class BankAccountCreate(CamelModel):
    bank_name: str = Field(min_length=1, max_length=200)
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    gl_account_code: Optional[str] = None


class BankAccountOut(CamelModel):
    id: str
    bank_name: str
    account_number: Optional[str]
    account_name: Optional[str]
    gl_account_code: Optional[str]
    display_name: str
    created_at: datetime


@router.get("", response_model=list[BankAccountOut])
def list_bank_accounts(business_id: str = Depends(get_business_id), db: Session = Depends(get_db)):
    return db.scalars(
        select(BankAccount).where(BankAccount.business_id == business_id).order_by(BankAccount.bank_name)
    ).all()


@router.post("", response_model=BankAccountOut, status_code=201)
def create_bank_account(
    body: BankAccountCreate,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    # Prevent exact duplicates (same name + number)
    existing = db.scalar(
        select(BankAccount).where(
            BankAccount.business_id == business_id,
            BankAccount.bank_name == body.bank_name,
            BankAccount.account_number == body.account_number,
        )
    )
    if existing:
        raise ValidationError("A bank account with this name and number already exists")
    if body.gl_account_code:
        ensure_chart(db, business_id)
        if find_gl_account_by_code(db, business_id, body.gl_account_code) is None:
            raise ValidationError(f"GL account {body.gl_account_code} does not exist")

    account = BankAccount(
        business_id=business_id,
        bank_name=body.bank_name,
        account_number=body.account_number,
        account_name=body.account_name,
        gl_account_code=body.gl_account_code,
    )
    db.add(account)
    db.flush()
    audit.record(db, business_id, "bank_account", account.id, "create",
                 new_values={"bank_name": account.bank_name, "account_number": account.account_number})
    db.commit()
    db.refresh(account)
    return account


@router.delete("/{account_id}", status_code=204)
def delete_bank_account(account_id: str, business_id: str = Depends(get_business_id), db: Session = Depends(get_db)):
    account = db.get(BankAccount, account_id)
    if not account or account.business_id != business_id:
        raise NotFoundError("Bank account not found")
    db.delete(account)
    db.commit()
