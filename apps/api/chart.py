"""
Chart of accounts: default seed, category → GL account mapping, GL preview.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import ValidationError
from models import AccountType, Category, GlAccount, StatementLine, TransactionType

logger = logging.getLogger(__name__)


# ── Default chart ─────────────────────────────────────────────────────────────
# (code, name, type)

DEFAULT_GL_ACCOUNTS: list[tuple[str, str, AccountType]] = [
    ("1010", "Cash at Bank",               AccountType.ASSET),
    ("1900", "Internal Transfers Clearing", AccountType.ASSET),
    ("2100", "Loans Payable",              AccountType.LIABILITY),
    ("3000", "Owner's Capital",            AccountType.EQUITY),
    ("4000", "Sales Revenue",              AccountType.REVENUE),
    ("4100", "Service Revenue",            AccountType.REVENUE),
    ("4200", "Interest Income",            AccountType.REVENUE),
    ("4300", "Other Income",               AccountType.REVENUE),
    ("5000", "Inventory Purchases",        AccountType.EXPENSE),
    ("6000", "Salaries & Wages",           AccountType.EXPENSE),
    ("6100", "Rent Expense",               AccountType.EXPENSE),
    ("6200", "Utilities",                  AccountType.EXPENSE),
    ("6300", "Bank Charges",               AccountType.EXPENSE),
    ("6400", "Transport & Fuel",           AccountType.EXPENSE),
    ("6500", "Communication",              AccountType.EXPENSE),
    ("6600", "Professional Fees",          AccountType.EXPENSE),
    ("6700", "Software & Subscriptions",   AccountType.EXPENSE),
    ("6800", "Office Supplies",            AccountType.EXPENSE),
    ("6900", "Other Operating Expenses",   AccountType.EXPENSE),
    ("6950", "Taxes & Levies",             AccountType.EXPENSE),
]

# (code, display name, flow, gl code)
DEFAULT_CATEGORIES: list[tuple[str, str, str, str]] = [
    ("SALES",             "Sales Revenue",       "INFLOW",  "4000"),
    ("SERVICE_REVENUE",   "Service Revenue",     "INFLOW",  "4100"),
    ("INTEREST_INCOME",   "Interest Income",     "INFLOW",  "4200"),
    ("REFUND",            "Refund",              "INFLOW",  "4300"),
    ("LOAN",              "Loan",                "INFLOW",  "2100"),
    ("CAPITAL",           "Capital",             "INFLOW",  "3000"),
    ("TRANSFER_IN",       "Transfer In",         "INFLOW",  "1900"),
    ("OTHER_INFLOW",      "Other Inflow",        "INFLOW",  "4300"),
    ("SALARY",            "Salary",              "OUTFLOW", "6000"),
    ("RENT",              "Rent",                "OUTFLOW", "6100"),
    ("UTILITIES",         "Utilities",           "OUTFLOW", "6200"),
    ("BANK_CHARGES",      "Bank Charges",        "OUTFLOW", "6300"),
    ("TRANSPORT",         "Transport",           "OUTFLOW", "6400"),
    ("FUEL_VEHICLE",      "Fuel & Vehicle",      "OUTFLOW", "6400"),
    ("COMMUNICATION",     "Communication",       "OUTFLOW", "6500"),
    ("PROFESSIONAL_FEES", "Professional Fees",   "OUTFLOW", "6600"),
    ("SUBSCRIPTION",      "Subscription",        "OUTFLOW", "6700"),
    ("OFFICE_SUPPLIES",   "Office Supplies",     "OUTFLOW", "6800"),
    ("INVENTORY",         "Inventory",           "OUTFLOW", "5000"),
    ("TAX_PAYMENT",       "Tax Payment",         "OUTFLOW", "6950"),
    ("LOAN_REPAYMENT",    "Loan Repayment",      "OUTFLOW", "2100"),
    ("TRANSFER_OUT",      "Transfer Out",        "OUTFLOW", "1900"),
    ("OTHER_OUTFLOW",     "Other Outflow",       "OUTFLOW", "6900"),
]


def ensure_chart(db: Session, business_id: str) -> None:
    """Seed the default chart and categories the first time a business is seen."""
    exists = db.scalar(select(GlAccount.id).where(GlAccount.business_id == business_id).limit(1))
    if exists:
        return

    by_code: dict[str, GlAccount] = {}
    for code, name, acct_type in DEFAULT_GL_ACCOUNTS:
        acct = GlAccount(business_id=business_id, code=code, name=name, account_type=acct_type)
        db.add(acct)
        by_code[code] = acct
    db.flush()

    for code, name, flow, gl_code in DEFAULT_CATEGORIES:
        db.add(Category(
            business_id=business_id, code=code, name=name, flow=flow,
            gl_account_id=by_code[gl_code].id,
        ))
    db.flush()
    logger.info(f"Seeded default chart of accounts for business {business_id}")


# ── Lookups ───────────────────────────────────────────────────────────────────

def get_category(db: Session, business_id: str, category_id: str) -> Category:
    cat = db.get(Category, category_id)
    if not cat or cat.business_id != business_id:
        raise ValidationError(f"Unknown category: {category_id}")
    return cat


def get_gl_account(db: Session, business_id: str, gl_account_id: str) -> GlAccount:
    acct = db.get(GlAccount, gl_account_id)
    if not acct or acct.business_id != business_id:
        raise ValidationError(f"Unknown GL account: {gl_account_id}")
    return acct


def find_gl_account_by_code(db: Session, business_id: str, code: str) -> Optional[GlAccount]:
    return db.scalar(
        select(GlAccount).where(GlAccount.business_id == business_id, GlAccount.code == code)
    )


# ── Resolution ────────────────────────────────────────────────────────────────

def resolve_gl_account(
    db: Session,
    business_id: str,
    manual_gl_account_id: Optional[str],
    category_id: Optional[str],
) -> Optional[GlAccount]:
    """
    The account a line would be posted against.

    A manual override bypasses category mapping entirely; otherwise the
    category's mapped account is used. Returns None when neither resolves.
    """
    if manual_gl_account_id:
        acct = db.get(GlAccount, manual_gl_account_id)
        if acct and acct.business_id == business_id:
            return acct
        return None
    if category_id:
        cat = db.get(Category, category_id)
        if cat and cat.business_id == business_id:
            return cat.gl_account
    return None


def gl_flow(transaction_type: TransactionType) -> str:
    """Side of the entry the categorized account sits on."""
    return "DEBIT" if transaction_type == TransactionType.OUTFLOW else "CREDIT"


def refresh_gl_preview(db: Session, line: StatementLine) -> None:
    acct = resolve_gl_account(
        db, line.business_id,
        line.manual_gl_account_id,
        line.selected_category_id or line.suggested_category_id,
    )
    if acct is None:
        line.suggested_gl_account_code = None
        line.suggested_gl_account_name = None
        line.suggested_gl_account_flow = None
        return
    line.suggested_gl_account_code = acct.code
    line.suggested_gl_account_name = acct.name
    line.suggested_gl_account_flow = gl_flow(line.transaction_type)
