import io
from datetime import date

import pandas as pd
import pytest

import statement_parser
from errors import UnparsableDocumentError
from models import TransactionType
from statement_parser import detect_file_type, parse, parse_amount_kobo


@pytest.mark.parametrize("raw,expected", [
    ("10,000.00", 1000000),
    ("(1,234.56)", -123456),
    ("₦50,000", 5000000),
    ("500.00 DR", -50000),
    ("500.00CR", 50000),
    ("-20.5", -2050),
    ("0.10", 10),
    ("--", None),
    ("", None),
    (None, None),
    (float("nan"), None),
    ("n/a", None),
])
def test_parse_amount_kobo(raw, expected):
    assert parse_amount_kobo(raw) == expected


def test_amounts_are_exact_in_kobo():
    assert parse_amount_kobo("1234567.89") == 123456789
    assert parse_amount_kobo("0.29") == 29


def test_debit_credit_columns():
    csv = (
        b"Date,Description,Reference,Debit,Credit,Balance\n"
        b"2024-03-05,POS SALE SHOP 12,REF001,,5000.00,15000.00\n"
        b"2024-03-06,BANK CHARGE SMS ALERT,REF002,20.00,,14980.00\n"
    )
    parsed = parse(csv, "statement.csv", "text/csv")

    assert [(ln.transaction_type, ln.amount_kobo) for ln in parsed.lines] == [
        (TransactionType.INFLOW, 500000),
        (TransactionType.OUTFLOW, 2000),
    ]
    assert parsed.lines[0].reference == "REF001"
    assert parsed.lines[1].balance_after_kobo == 1498000
    assert (parsed.start_date, parsed.end_date) == (date(2024, 3, 5), date(2024, 3, 6))


def test_signed_amount_column_and_day_first_dates():
    csv = (
        b"Transaction Date,Narration,Amount,Balance\n"
        b'05/03/2024,POS SALE,"5,000.00",5000.00\n'
        b"06/03/2024,SMS ALERT CHARGE,-20.00,4980.00\n"
    )
    parsed = parse(csv, "statement.csv")

    assert [ln.transaction_date for ln in parsed.lines] == [date(2024, 3, 5), date(2024, 3, 6)]
    assert [(ln.transaction_type, ln.amount_kobo) for ln in parsed.lines] == [
        (TransactionType.INFLOW, 500000),
        (TransactionType.OUTFLOW, 2000),
    ]


def test_dr_suffix_marks_outflow():
    csv = b"Date,Details,Amount\n2024-03-05,Salary payment,250000.00 DR\n"
    line = parse(csv, "statement.csv").lines[0]
    assert (line.transaction_type, line.amount_kobo) == (TransactionType.OUTFLOW, 25000000)


def test_type_column_sets_direction():
    csv = (
        b"Date,Description,Amount,Type\n"
        b"2024-03-05,Transfer from ADA,1000.00,Credit\n"
        b"2024-03-06,Airtime purchase,100.00,Debit\n"
    )
    parsed = parse(csv, "statement.csv")
    assert [ln.transaction_type for ln in parsed.lines] == [TransactionType.INFLOW, TransactionType.OUTFLOW]


def test_moniepoint_reference_suffix_wins():
    csv = b"Date,Narration,Reference,Amount\n2024-03-05,Fee,MP123_DEBIT_1,50.00\n"
    line = parse(csv, "statement.csv").lines[0]
    assert line.transaction_type == TransactionType.OUTFLOW


def test_vendor_is_extracted():
    csv = b"Date,Description,Debit,Credit\n2024-03-07,Transfer to JOHN DOE,1500.50,\n"
    line = parse(csv, "statement.csv").lines[0]
    assert line.vendor == "JOHN DOE"
    assert line.amount_kobo == 150050


def test_preamble_metadata_is_detected():
    csv = (
        b"GTBank Statement,,,\n"
        b"Account Name: ADA STORES,,,\n"
        b"Account Number: 0123456789,,,\n"
        b"Date,Description,Debit,Credit\n"
        b"2024-03-05,POS SALE,,5000.00\n"
    )
    parsed = parse(csv, "statement.csv")

    assert parsed.bank_name == "GTBank"
    assert parsed.account_number == "0123456789"
    assert parsed.account_name == "ADA STORES"
    assert len(parsed.lines) == 1


def test_excel_statement():
    buf = io.BytesIO()
    pd.DataFrame({
        "Date": ["2024-03-05", "2024-03-06"],
        "Description": ["POS SALE", "BANK CHARGE"],
        "Debit": [None, "20.00"],
        "Credit": ["5000.00", None],
    }).to_excel(buf, index=False)

    parsed = parse(buf.getvalue(), "march.xlsx")

    assert [(ln.transaction_type, ln.amount_kobo) for ln in parsed.lines] == [
        (TransactionType.INFLOW, 500000),
        (TransactionType.OUTFLOW, 2000),
    ]


def test_rows_without_amounts_are_dropped():
    csv = (
        b"Date,Description,Debit,Credit\n"
        b"2024-03-05,Opening balance,,\n"
        b"2024-03-06,POS SALE,,100.00\n"
    )
    assert len(parse(csv, "statement.csv").lines) == 1


def test_garbage_is_unparsable():
    with pytest.raises(UnparsableDocumentError, match="No transactions were parsed"):
        parse(b"just some words\nand more words\n", "notes.csv")


def test_unreadable_pdf_is_unparsable():
    with pytest.raises(UnparsableDocumentError):
        parse(b"%PDF-1.4 not really a pdf", "statement.pdf", "application/pdf")


@pytest.mark.parametrize("content_type,filename,expected", [
    ("application/pdf", "", "pdf"),
    ("", "March.PDF", "pdf"),
    ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "", "excel"),
    ("", "march.xls", "excel"),
    ("text/csv", "", "csv"),
])
def test_detect_file_type(content_type, filename, expected):
    assert detect_file_type(content_type, filename) == expected


def test_supported_banks_list():
    assert "GTBank" in statement_parser.SUPPORTED_BANKS
