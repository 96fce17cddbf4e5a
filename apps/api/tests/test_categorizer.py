from datetime import date

from categorizer import KEYWORD_CONFIDENCE, RULE_CONFIDENCE, Categorizer
from conftest import category
from models import CategorizationRule, StatementLine, TransactionType


def _line(description, tx_type=TransactionType.OUTFLOW):
    return StatementLine(
        business_id="biz-test",
        line_number=1,
        transaction_date=date(2024, 3, 5),
        description=description,
        transaction_type=tx_type,
        amount_kobo=1000,
        transaction_hash="x",
    )


def test_builtin_keywords(db):
    cat = Categorizer(db, "biz-test")

    assert cat.suggest(_line("POS SALE TERMINAL 4", TransactionType.INFLOW)).category_code == "SALES"
    assert cat.suggest(_line("SMS ALERT CHARGES MAR")).category_code == "BANK_CHARGES"
    assert cat.suggest(_line("IKEDC PREPAID TOKEN")).category_code == "UTILITIES"
    assert cat.suggest(_line("Office rent Q1")).category_code == "RENT"
    assert cat.suggest(_line("POS SALE TERMINAL 4")) is None


def test_current_account_is_not_rent(db):
    assert Categorizer(db, "biz-test").suggest(_line("Transfer to current account holder")) is None


def test_transfers_follow_direction(db):
    cat = Categorizer(db, "biz-test")
    assert cat.suggest(_line("Own account transfer", TransactionType.INFLOW)).category_code == "TRANSFER_IN"
    assert cat.suggest(_line("Own account transfer")).category_code == "TRANSFER_OUT"


def test_keyword_confidence(db):
    s = Categorizer(db, "biz-test").suggest(_line("stamp duty"))
    assert s.confidence == KEYWORD_CONFIDENCE
    assert s.category_name == "Bank Charges"


def test_business_rules_win(db):
    db.add(CategorizationRule(
        business_id="biz-test", name="Landlord", keyword="mr okafor",
        category_id=category(db, "RENT").id, priority=10,
    ))
    db.commit()

    s = Categorizer(db, "biz-test").suggest(_line("Transfer to MR OKAFOR airtime"))

    assert s.category_code == "RENT"
    assert s.confidence == RULE_CONFIDENCE


def test_rule_for_wrong_direction_is_ignored(db):
    db.add(CategorizationRule(
        business_id="biz-test", name="Ada", keyword="ada",
        category_id=category(db, "SALES").id,
    ))
    db.commit()

    assert Categorizer(db, "biz-test").suggest(_line("payment to ada")) is None


def test_annotate_fills_suggestions_only(db):
    lines = [_line("stamp duty"), _line("something unknown")]

    hits = Categorizer(db, "biz-test").annotate(lines)

    assert hits == 1
    assert lines[0].suggested_category_code == "BANK_CHARGES"
    assert lines[0].category_confidence == KEYWORD_CONFIDENCE
    assert lines[0].selected_category_id is None
    assert lines[1].suggested_category_id is None
