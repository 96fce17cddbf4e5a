"""
Category suggestions for statement lines.

Two tiers:
  1. Business-defined keyword rules (highest priority first)
  2. Built-in keyword tables tuned for Nigerian bank narrations

Suggestions are advisory only. They fill the `suggested_*` fields of a line
and are never copied into the reviewer's selection.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import CategorizationRule, Category, StatementLine, TransactionType

logger = logging.getLogger(__name__)

RULE_CONFIDENCE    = 0.95
KEYWORD_CONFIDENCE = 0.75


@dataclass
class CategorySuggestion:
    category_id: str
    category_name: str
    category_code: str
    confidence: float


# ── Keyword tables ────────────────────────────────────────────────────────────
#
# Maps category code → substrings to look for in the narration (case-insensitive).
# Order matters: the FIRST match wins, so transfers are checked before
# anything that might also mention "transfer".

_TRANSFER_KEYWORDS = [
    "auto-save to owealth", "auto save to owealth",
    "owealth withdrawal", "own account transfer", "own-account transfer",
    "inter-account", "internal transfer", "self transfer",
    "wallet to wallet", "wallet transfer",
]

_INFLOW_KEYWORD_MAP: list[tuple[str, list[str]]] = [
    ("INTEREST_INCOME", ["interest earn", "owealth interest", "savings interest",
                         "interest credit", "interest paid", "dividend"]),
    ("REFUND",          ["refund", "reversal", "chargeback", "return credit"]),
    ("LOAN",            ["loan disbursement", "loan credit", "facility disbursement"]),
    ("CAPITAL",         ["capital injection", "owner contribution", "equity contribution"]),
    ("SALES",           ["pos sale", "pos settlement", "sales proceed", "payment received",
                         "paystack", "flutterwave", "settlement credit", "web payment"]),
    ("SERVICE_REVENUE", ["consulting", "service fee received", "professional fee received"]),
]

_OUTFLOW_KEYWORD_MAP: list[tuple[str, list[str]]] = [
    ("BANK_CHARGES",      ["bank charge", "stamp duty", "sms alert", "card maintenance",
                           "maintenance fee", "commission", "transfer fee", "transaction fee",
                           "service charge", "account maintenance", "atm fee", "pos fee",
                           "vat on", "emtl", "electronic money transfer levy"]),
    ("SALARY",            ["salary", "salaries", "payroll", "wages", "staff pay", "remuneration"]),
    ("RENT",              ["rent payment", "office rent", "shop rent", "house rent", "landlord", "lease payment", "agency fee", "caution fee"]),
    ("UTILITIES",         ["electricity", "nepa", "phcn", "ikedc", "ekedc", "water bill",
                           "water rate", "power bill", "gas bill", "diesel supply"]),
    ("COMMUNICATION",     ["airtime", "data subscription", "data purchase", "recharge",
                           "internet", "broadband", "wifi", "mtn", "airtel", "glo", "9mobile"]),
    ("SUBSCRIPTION",      ["dstv", "gotv", "startimes", "netflix", "spotify", "google workspace",
                           "microsoft", "zoom", "subscription"]),
    ("FUEL_VEHICLE",      ["petrol", "fuel station", "filling station", "car wash", "vehicle repair"]),
    ("TRANSPORT",         ["uber", "bolt", "taxify", "transport", "bus fare", "logistics",
                           "dispatch", "gig logistics"]),
    ("PROFESSIONAL_FEES", ["legal fee", "audit fee", "consultancy", "professional fee", "accountant"]),
    ("TAX_PAYMENT",       ["firs", "lirs", "remita tax", "paye", "withholding tax", "vat remittance"]),
    ("LOAN_REPAYMENT",    ["loan repayment", "loan recovery", "facility repayment"]),
    ("OFFICE_SUPPLIES",   ["stationery", "office supplies", "printing", "toner"]),
    ("INVENTORY",         ["stock purchase", "goods purchase", "supplier payment", "restock"]),
]


def _keyword_code(description: str, transaction_type: TransactionType) -> Optional[str]:
    desc = description.lower()

    if any(p in desc for p in _TRANSFER_KEYWORDS):
        return "TRANSFER_IN" if transaction_type == TransactionType.INFLOW else "TRANSFER_OUT"

    table = _INFLOW_KEYWORD_MAP if transaction_type == TransactionType.INFLOW else _OUTFLOW_KEYWORD_MAP
    for code, patterns in table:
        if any(p in desc for p in patterns):
            return code
    return None


class Categorizer:
    """
    Suggests a category per line for one business.

    Rules and categories are loaded once per instance, so create one per
    batch rather than per line.
    """

    def __init__(self, db: Session, business_id: str):
        self.business_id = business_id
        self._categories = {
            c.code: c for c in db.scalars(select(Category).where(Category.business_id == business_id))
        }
        self._rules = list(db.scalars(
            select(CategorizationRule)
            .where(CategorizationRule.business_id == business_id)
            .order_by(CategorizationRule.priority.desc(), CategorizationRule.created_at)
        ))

    def _fits(self, category: Category, transaction_type: TransactionType) -> bool:
        return category.flow in ("BOTH", transaction_type.value)

    def suggest(self, line: StatementLine) -> Optional[CategorySuggestion]:
        desc = (line.description or "").lower()

        for rule in self._rules:
            kw = rule.keyword.strip().lower()
            if kw and kw in desc and self._fits(rule.category, line.transaction_type):
                c = rule.category
                return CategorySuggestion(c.id, c.name, c.code, RULE_CONFIDENCE)

        code = _keyword_code(desc, line.transaction_type)
        if code and code in self._categories:
            c = self._categories[code]
            return CategorySuggestion(c.id, c.name, c.code, KEYWORD_CONFIDENCE)
        return None

    def annotate(self, lines: list[StatementLine]) -> int:
        """Fill suggestion fields in place; returns how many lines got one."""
        hits = 0
        for ln in lines:
            s = self.suggest(ln)
            if s is None:
                continue
            ln.suggested_category_id   = s.category_id
            ln.suggested_category_name = s.category_name
            ln.suggested_category_code = s.category_code
            ln.category_confidence     = s.confidence
            hits += 1
        logger.info(f"Categorizer: {hits}/{len(lines)} lines have a suggestion")
        return hits
