"""
Chart of accounts, categories and categorization rules for a business.
"""
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

import audit
from chart import ensure_chart, find_gl_account_by_code, get_category, get_gl_account
from database import get_db
from deps import get_business_id
from errors import NotFoundError, ValidationError
from models import CategorizationRule, Category, GlAccount
from schemas import (
    CategoryCreate, CategoryOut, GlAccountCreate, GlAccountOut, GlAccountUpdate, RuleCreate, RuleOut,
)

router = APIRouter(tags=["accounts"])


def _seeded(db: Session, business_id: str) -> None:
    ensure_chart(db, business_id)
    db.commit()


# ── GL accounts ───────────────────────────────────────────────────────────────

@router.get("/gl-accounts", response_model=list[GlAccountOut])
def list_gl_accounts(business_id: str = Depends(get_business_id), db: Session = Depends(get_db)):
    _seeded(db, business_id)
    return db.scalars(
        select(GlAccount).where(GlAccount.business_id == business_id).order_by(GlAccount.code)
    ).all()


@router.post("/gl-accounts", response_model=GlAccountOut, status_code=201)
def create_gl_account(
    body: GlAccountCreate,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    ensure_chart(db, business_id)
    if find_gl_account_by_code(db, business_id, body.code):
        raise ValidationError(f"GL account {body.code} already exists")
    acct = GlAccount(business_id=business_id, code=body.code, name=body.name, account_type=body.account_type)
    db.add(acct)
    db.flush()
    audit.record(db, business_id, "gl_account", acct.id, "create",
                 new_values={"code": acct.code, "name": acct.name})
    db.commit()
    db.refresh(acct)
    return acct


@router.patch("/gl-accounts/{account_id}", response_model=GlAccountOut)
def update_gl_account(
    account_id: str,
    body: GlAccountUpdate,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    try:
        acct = get_gl_account(db, business_id, account_id)
    except ValidationError as e:
        raise NotFoundError(e.message) from e
    old = {"name": acct.name, "is_active": acct.is_active}
    if body.name is not None:
        acct.name = body.name
    if body.is_active is not None:
        acct.is_active = body.is_active
    audit.record(db, business_id, "gl_account", acct.id, "update",
                 old_values=old, new_values={"name": acct.name, "is_active": acct.is_active})
    db.commit()
    db.refresh(acct)
    return acct


# ── Categories ────────────────────────────────────────────────────────────────

@router.get("/categories", response_model=list[CategoryOut])
def list_categories(business_id: str = Depends(get_business_id), db: Session = Depends(get_db)):
    _seeded(db, business_id)
    return db.scalars(
        select(Category).where(Category.business_id == business_id).order_by(Category.flow, Category.name)
    ).all()


@router.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(
    body: CategoryCreate,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    ensure_chart(db, business_id)
    code = body.code.strip().upper()
    exists = db.scalar(
        select(Category.id).where(Category.business_id == business_id, Category.code == code)
    )
    if exists:
        raise ValidationError(f"Category {code} already exists")
    if body.gl_account_id:
        get_gl_account(db, business_id, body.gl_account_id)
    cat = Category(
        business_id=business_id, code=code, name=body.name, flow=body.flow,
        gl_account_id=body.gl_account_id,
    )
    db.add(cat)
    db.commit()
    db.refresh(cat)
    return cat


# ── Categorization rules ──────────────────────────────────────────────────────

@router.get("/categorization-rules", response_model=list[RuleOut])
def list_rules(business_id: str = Depends(get_business_id), db: Session = Depends(get_db)):
    return db.scalars(
        select(CategorizationRule)
        .where(CategorizationRule.business_id == business_id)
        .order_by(CategorizationRule.priority.desc(), CategorizationRule.name)
    ).all()


@router.post("/categorization-rules", response_model=RuleOut, status_code=201)
def create_rule(
    body: RuleCreate,
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    get_category(db, business_id, body.category_id)
    rule = CategorizationRule(
        business_id=business_id, name=body.name, keyword=body.keyword.strip(),
        category_id=body.category_id, priority=body.priority,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


@router.delete("/categorization-rules/{rule_id}", status_code=204)
def delete_rule(rule_id: str, business_id: str = Depends(get_business_id), db: Session = Depends(get_db)):
    rule = db.get(CategorizationRule, rule_id)
    if not rule or rule.business_id != business_id:
        raise NotFoundError("Categorization rule not found")
    db.delete(rule)
    db.commit()
