"""
Bank statement parser: CSV, Excel, PDF tables → raw statement lines.
Targets Nigerian bank exports (Moniepoint, OPay, Access, GTBank, etc.)

Amounts come out as integer kobo; nothing here uses floating point money.
"""
import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

import pandas as pd

from errors import UnparsableDocumentError
from models import TransactionType

logger = logging.getLogger(__name__)


SUPPORTED_BANKS = [
    "Access Bank", "Ecobank", "Fidelity Bank", "First Bank", "FCMB",
    "GTBank", "Kuda", "Moniepoint", "OPay", "PalmPay", "Polaris Bank",
    "Stanbic IBTC", "Sterling Bank", "UBA", "Union Bank", "Wema Bank",
    "Zenith Bank",
]

# Lower-cased marker → canonical bank name, for detection in header text
_BANK_MARKERS = {
    "access bank": "Access Bank", "ecobank": "Ecobank", "fidelity": "Fidelity Bank",
    "first bank": "First Bank", "firstbank": "First Bank", "fcmb": "FCMB",
    "gtbank": "GTBank", "guaranty trust": "GTBank", "kuda": "Kuda",
    "moniepoint": "Moniepoint", "opay": "OPay", "palmpay": "PalmPay",
    "polaris": "Polaris Bank", "stanbic": "Stanbic IBTC", "sterling": "Sterling Bank",
    "united bank for africa": "UBA", "uba": "UBA", "union bank": "Union Bank",
    "wema": "Wema Bank", "alat": "Wema Bank", "zenith": "Zenith Bank",
}


@dataclass
class RawLine:
    transaction_date: date
    description: str
    transaction_type: TransactionType
    amount_kobo: int
    value_date: Optional[date] = None
    reference: Optional[str] = None
    balance_after_kobo: Optional[int] = None
    vendor: Optional[str] = None


@dataclass
class ParsedStatement:
    lines: list[RawLine] = field(default_factory=list)
    bank_name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None


# ── Known column aliases ───────────────────────────────────────────────────────

_DATE_ALIASES   = {
    "date", "trans date", "transaction date", "txn date",
    "posting date", "booking date", "created at", "trans. date", "txndate",
}
_VALUE_DATE_ALIASES = {"value date", "val date", "value dt", "settlement date"}
_DESC_ALIASES   = {
    "narration", "description", "memo", "details", "particulars",
    "remarks", "narrative", "trans desc", "payment details",
    "transaction description", "payment narration", "narr", "desc",
}
_DEBIT_ALIASES  = {
    "debit", "debit(₦)", "debit(ngn)", "dr", "dr amount",
    "withdrawal", "withdrawals", "amount out", "paid out", "money out",
}
_CREDIT_ALIASES = {
    "credit", "credit(₦)", "credit(ngn)", "cr", "cr amount",
    "deposit", "deposits", "amount in", "paid in", "money in",
}
_AMOUNT_ALIASES = {"amount", "transaction amount", "txn amount", "net amount"}
_REF_ALIASES    = {
    "reference", "ref", "transaction ref", "txn ref",
    "transaction id", "txn id", "trace no", "session id",
}
_BALANCE_ALIASES = {
    "balance", "running balance", "ledger balance", "available balance",
    "bal", "closing balance", "balance after", "bal. after", "wallet balance",
}
_TYPE_ALIASES = {
    "type", "transaction type", "txn type", "dr/cr", "cr/dr",
    "direction", "flow", "trans type",
}

# Rows whose description matches this pattern are section headers, not transactions
_SEPARATOR_RE = re.compile(r'^-{2,}|^={2,}|^-//', re.IGNORECASE)

_HEADER_CELL_VALUES = _DATE_ALIASES | _VALUE_DATE_ALIASES

_MONIEPOINT_REF_RE = re.compile(r"_(CREDIT|DEBIT)_\d+$", re.IGNORECASE)
_NUBAN_RE = re.compile(r"(?<!\d)(\d{10})(?!\d)")
_ACCOUNT_NAME_RE = re.compile(r"account\s+name\s*[:\-]?\s*(.+)", re.IGNORECASE)
_ACCOUNT_NO_RE = re.compile(r"account\s+(?:number|no\.?)\s*[:\-]?\s*(\d{10})", re.IGNORECASE)


def _find_col(columns: list[str], aliases: set[str]) -> Optional[str]:
    """Return the first column name that matches any alias (case-insensitive)."""
    for col in columns:
        norm = col.lower().strip()
        if norm in aliases:
            return col
    for col in columns:
        norm = col.lower().strip()
        if any(a in norm for a in aliases if len(a) > 3):
            return col
    return None


# ── Amount parsing ────────────────────────────────────────────────────────────

def parse_amount_kobo(val: object) -> Optional[int]:
    """
    Parse a bank amount cell into signed kobo:
      '10,000.00'  → 1000000
      '(1,234.56)' → -123456   (bracket debit notation)
      '₦50,000'    → 5000000
      '500.00 DR'  → -50000
      '--' / ''    → None
    """
    if val is None or (isinstance(val, float) and pd.isna(val)):
        return None
    s = str(val).strip()
    if not s or s.lower() in ("--", "-", "—", "n/a", "nil", "nan", "none"):
        return None
    s = re.sub(r"[₦$€£\s]", "", s).replace(",", "")
    negative = False
    m = re.search(r"(DR|DB|CR)$", s, re.IGNORECASE)
    if m:
        negative = m.group(1).upper() in ("DR", "DB")
        s = s[:m.start()]
    if s.startswith("(") and s.endswith(")"):
        negative, s = True, s[1:-1]
    if s.startswith("-"):
        negative, s = True, s[1:]
    elif s.startswith("+"):
        s = s[1:]
    try:
        kobo = int((Decimal(s) * 100).quantize(Decimal("1")))
    except InvalidOperation:
        return None
    return -kobo if negative else kobo


def _parse_date(raw: object) -> Optional[date]:
    if raw is None or (isinstance(raw, float) and pd.isna(raw)):
        return None
    # Normalize multi-line PDF cells like "2026-01-02T18:\n35:21"
    s = re.sub(r"[\r\n]+", "", str(raw)).strip()
    if not s or s.lower() in _HEADER_CELL_VALUES:
        return None
    # Year-first strings must not be parsed day-first (swaps month/day)
    dayfirst = not re.match(r"\d{4}[-/]", s)
    ts = pd.to_datetime(s, dayfirst=dayfirst, errors="coerce")
    if pd.isna(ts):
        m = re.match(r"(\d{4}-\d{1,2}-\d{1,2})", s)
        if m:
            ts = pd.to_datetime(m.group(1), errors="coerce")
    if pd.isna(ts):
        return None
    return ts.date()


def _cell(row: pd.Series, col: Optional[str]) -> str:
    if not col:
        return ""
    val = row.get(col)
    if val is None or (isinstance(val, float) and pd.isna(val)):
        return ""
    return re.sub(r"[\r\n]+", " ", str(val)).strip()


_VENDOR_PATTERNS = [
    r"Transfer\s+to\s+([A-Z][A-Z\s]+?)(?:\s+\||$)",
    r"Payment\s+to\s+([A-Z][A-Z\s]+?)(?:\s+\||$)",
    r"Transfer\s+from\s+([A-Z][A-Z\s]+?)(?:\s+\||$)",
    r"Received\s+from\s+([A-Z][A-Z\s]+?)(?:\s+\||$)",
]


def _extract_vendor(description: str) -> Optional[str]:
    for pattern in _VENDOR_PATTERNS:
        m = re.search(pattern, description, re.IGNORECASE)
        if m:
            return re.sub(r"\s+[A-Z]$", "", m.group(1).strip()).strip() or None
    return None


# ── Core normalizer ───────────────────────────────────────────────────────────

def _normalize_df(df: pd.DataFrame) -> list[RawLine]:
    """
    Map DataFrame columns to roles by name, then extract transactions row by row.

    Direction, in increasing order of authority:
      1. sign / DR / CR suffix of a single amount column
      2. which of the debit / credit columns is populated
      3. a dedicated type column (OPay)
      4. the Moniepoint _CREDIT_N / _DEBIT_N reference suffix
    """
    if df.empty:
        return []

    cols = [str(c) for c in df.columns]
    df.columns = cols  # type: ignore[assignment]

    date_col       = _find_col(cols, _DATE_ALIASES)
    value_date_col = _find_col(cols, _VALUE_DATE_ALIASES)
    date_col       = date_col or value_date_col
    if value_date_col == date_col:
        value_date_col = None

    desc_col    = _find_col(cols, _DESC_ALIASES)
    debit_col   = _find_col(cols, _DEBIT_ALIASES)
    credit_col  = _find_col(cols, _CREDIT_ALIASES)
    amount_col  = _find_col(cols, _AMOUNT_ALIASES)
    ref_col     = _find_col(cols, _REF_ALIASES)
    balance_col = _find_col(cols, _BALANCE_ALIASES)
    type_col    = _find_col(cols, _TYPE_ALIASES)

    if type_col in (debit_col, credit_col, amount_col, date_col):
        type_col = None
    # Never treat the running-balance column as a money column
    if balance_col:
        debit_col  = None if debit_col == balance_col else debit_col
        credit_col = None if credit_col == balance_col else credit_col
        amount_col = None if amount_col == balance_col else amount_col

    logger.info(
        f"Column map → date={date_col!r}, value_date={value_date_col!r}, desc={desc_col!r}, "
        f"debit={debit_col!r}, credit={credit_col!r}, amount={amount_col!r}, "
        f"ref={ref_col!r}, balance={balance_col!r}, type={type_col!r}"
    )

    if not date_col or not (amount_col or debit_col or credit_col):
        return []

    rows: list[RawLine] = []

    for _, row in df.iterrows():
        tx_date = _parse_date(row.get(date_col))
        if tx_date is None:
            continue

        description = _cell(row, desc_col)
        if _SEPARATOR_RE.match(description):
            continue
        reference = _cell(row, ref_col) or None

        # Narration cells that are purely numeric are session IDs, not descriptions
        if re.match(r"^\d[\d\s\-]{9,}$", description):
            reference = reference or re.sub(r"[\s\-]", "", description)
            description = ""

        # ── Amount & direction ────────────────────────────────────
        if debit_col or credit_col:
            debit  = parse_amount_kobo(row.get(debit_col)) if debit_col else None
            credit = parse_amount_kobo(row.get(credit_col)) if credit_col else None
            debit, credit = abs(debit or 0), abs(credit or 0)
            if credit > 0 and debit == 0:
                amount, tx_type = credit, TransactionType.INFLOW
            elif debit > 0:
                amount, tx_type = debit, TransactionType.OUTFLOW
            else:
                continue  # both zero → header or total row
        else:
            signed = parse_amount_kobo(row.get(amount_col))
            if not signed:
                continue
            amount = abs(signed)
            tx_type = TransactionType.OUTFLOW if signed < 0 else TransactionType.INFLOW

        if type_col:
            type_val = _cell(row, type_col).lower()
            if any(k in type_val for k in ("credit", "money in", "deposit", "inflow", "received")) or type_val == "cr":
                tx_type = TransactionType.INFLOW
            elif any(k in type_val for k in ("debit", "money out", "withdrawal", "outflow", "charge")) or type_val == "dr":
                tx_type = TransactionType.OUTFLOW

        if reference:
            m = _MONIEPOINT_REF_RE.search(reference)
            if m:
                tx_type = TransactionType.INFLOW if m.group(1).upper() == "CREDIT" else TransactionType.OUTFLOW

        balance = parse_amount_kobo(row.get(balance_col)) if balance_col else None

        # OPay uses single-letter codes like "T" (Transfer) as the narration
        if len(description) <= 2 and reference:
            description = f"{description}: {reference}" if description else reference
        elif not description:
            description = "Credit transaction" if tx_type == TransactionType.INFLOW else "Debit transaction"

        rows.append(RawLine(
            transaction_date=tx_date,
            value_date=_parse_date(row.get(value_date_col)) if value_date_col else None,
            description=description[:500],
            reference=reference[:200] if reference else None,
            transaction_type=tx_type,
            amount_kobo=amount,
            balance_after_kobo=balance,
            vendor=_extract_vendor(description),
        ))

    return rows


# ── Header row scanner ─────────────────────────────────────────────────────────

def _find_header_row_idx(df: pd.DataFrame) -> Optional[int]:
    """
    Find the first row that looks like a column header.
    Requires at least one date-like keyword AND one amount/narration keyword.
    """
    date_kws   = _DATE_ALIASES | _VALUE_DATE_ALIASES
    amount_kws = _DEBIT_ALIASES | _CREDIT_ALIASES | _AMOUNT_ALIASES | _DESC_ALIASES
    for pos, (_, row) in enumerate(df.iterrows()):
        cells = {
            str(c).lower().strip()
            for c in row
            if c is not None and str(c).strip() not in ("", "nan", "none")
        }
        if cells & date_kws and cells & amount_kws:
            return pos
    return None


def _clean_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Replace blank/NaN column names with _col_N placeholders."""
    new_cols = []
    for i, c in enumerate(df.columns):
        s = str(c).strip()
        if s.lower() in ("nan", "none", "") or s.startswith("Unnamed"):
            new_cols.append(f"_col_{i}")
        else:
            new_cols.append(s)
    df = df.copy()
    df.columns = new_cols  # type: ignore[assignment]
    return df


def _header_text(df: pd.DataFrame, upto: Optional[int]) -> str:
    """Free text from the preamble rows above the header (account name, number...)."""
    if not upto:
        return ""
    cells = []
    for _, row in df.iloc[:upto].iterrows():
        cells.extend(str(c) for c in row if c is not None and str(c).strip() not in ("", "nan", "None"))
    return "\n".join(cells)


def _parse_dataframe(df_raw: pd.DataFrame) -> tuple[list[RawLine], str]:
    """
    Try to parse with the existing column names.
    If that yields nothing, scan for the actual header row first.
    Returns the lines and any preamble text found above the header.
    """
    rows = _normalize_df(_clean_columns(df_raw))
    if rows:
        return rows, ""

    header_idx = _find_header_row_idx(df_raw)
    if header_idx is None:
        logger.warning("Could not locate a header row in DataFrame")
        return [], ""

    new_df = df_raw.iloc[header_idx + 1:].copy()
    new_df.columns = [str(v) for v in df_raw.iloc[header_idx]]
    return _normalize_df(_clean_columns(new_df)), _header_text(df_raw, header_idx)


# ── File type detection ───────────────────────────────────────────────────────

def detect_file_type(content_type: str, filename: str) -> str:
    ct = (content_type or "").lower()
    fn = (filename or "").lower()
    if "pdf" in ct or fn.endswith(".pdf"):
        return "pdf"
    if "excel" in ct or "spreadsheet" in ct or fn.endswith((".xlsx", ".xls")):
        return "excel"
    return "csv"


def _fix_xlsx_xml(contents: bytes) -> bytes:
    """
    Patch invalid XML enum values that openpyxl rejects
    (e.g. vertical="Top" must be vertical="top").
    """
    try:
        buf_in  = io.BytesIO(contents)
        buf_out = io.BytesIO()
        with zipfile.ZipFile(buf_in, "r") as zin, \
             zipfile.ZipFile(buf_out, "w", zipfile.ZIP_DEFLATED) as zout:
            for item in zin.infolist():
                data = zin.read(item.filename)
                if item.filename == "xl/styles.xml":
                    text = data.decode("utf-8", errors="replace")
                    for bad, good in [
                        ('vertical="Top"',      'vertical="top"'),
                        ('vertical="Center"',   'vertical="center"'),
                        ('vertical="Bottom"',   'vertical="bottom"'),
                        ('horizontal="Left"',   'horizontal="left"'),
                        ('horizontal="Center"', 'horizontal="center"'),
                        ('horizontal="Right"',  'horizontal="right"'),
                    ]:
                        text = text.replace(bad, good)
                    data = text.encode("utf-8")
                zout.writestr(item, data)
        return buf_out.getvalue()
    except zipfile.BadZipFile:
        # Legacy .xls is not a zip archive
        return contents


# ── Format readers ────────────────────────────────────────────────────────────

def _parse_csv(contents: bytes) -> tuple[list[RawLine], str]:
    """Try multiple encodings and separators."""
    for enc in ("utf-8", "latin-1", "cp1252"):
        for sep in (",", ";", "\t", "|"):
            try:
                df = pd.read_csv(
                    io.BytesIO(contents), encoding=enc, sep=sep,
                    engine="python", header=None, dtype=str,
                )
            except (UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError):
                continue
            if len(df.columns) < 2:
                continue
            # Header scan first so preamble rows (account name, number) are kept
            rows, preamble = _parse_dataframe(df)
            if rows:
                logger.info(f"CSV parsed ({enc}, sep={sep!r}): {len(rows)} rows")
                return rows, preamble
            # Header names the scanner does not know exactly: trust the first row
            framed = df.iloc[1:].copy()
            framed.columns = [str(v) for v in df.iloc[0]]
            rows, _ = _parse_dataframe(framed)
            if rows:
                logger.info(f"CSV parsed with first-row header ({enc}, sep={sep!r}): {len(rows)} rows")
                return rows, ""
    return [], ""


def _parse_excel(contents: bytes) -> tuple[list[RawLine], str]:
    contents = _fix_xlsx_xml(contents)
    try:
        xl = pd.ExcelFile(io.BytesIO(contents))
    except (ValueError, zipfile.BadZipFile, OSError) as e:
        logger.warning(f"ExcelFile open failed: {e}")
        return [], ""

    for sheet in xl.sheet_names:
        df_raw = xl.parse(sheet, header=None, dtype=str)
        rows, preamble = _parse_dataframe(df_raw)
        if rows:
            logger.info(f"Excel sheet {sheet!r}: {len(rows)} rows")
            return rows, preamble
    return [], ""


def _parse_pdf(contents: bytes) -> tuple[list[RawLine], str]:
    """
    pdfplumber tables → DataFrames → normalizer.

    Continuation pages often repeat the table without its header; those reuse
    the header from the previous page. Scanned PDFs (no text layer) yield
    nothing and are reported as unparsable.
    """
    import pdfplumber

    all_rows: list[RawLine] = []
    last_good_columns: Optional[list] = None
    preamble_parts: list[str] = []

    with pdfplumber.open(io.BytesIO(contents)) as pdf:
        if pdf.pages:
            preamble_parts.append(pdf.pages[0].extract_text() or "")
        for page in pdf.pages:
            for table in (page.extract_tables() or []):
                if not table or len(table) < 2:
                    continue

                df = pd.DataFrame(table[1:], columns=[str(c) for c in table[0]])
                rows, _ = _parse_dataframe(df)

                if not rows and last_good_columns and len(table[0]) == len(last_good_columns):
                    rows, _ = _parse_dataframe(pd.DataFrame(table, columns=last_good_columns))

                if not rows:
                    rows, _ = _parse_dataframe(pd.DataFrame(table))

                if rows:
                    if last_good_columns is None:
                        last_good_columns = [str(c) for c in table[0]]
                    all_rows.extend(rows)

    logger.info(f"PDF table parser: {len(all_rows)} rows")
    return all_rows, "\n".join(preamble_parts)


# ── Metadata ──────────────────────────────────────────────────────────────────

def _detect_metadata(parsed: ParsedStatement, text: str, filename: str) -> None:
    haystack = f"{text}\n{filename}".lower()
    for marker, bank in _BANK_MARKERS.items():
        if marker in haystack:
            parsed.bank_name = bank
            break

    m = _ACCOUNT_NO_RE.search(text) or _NUBAN_RE.search(text)
    if m:
        parsed.account_number = m.group(1)

    m = _ACCOUNT_NAME_RE.search(text)
    if m:
        name = re.split(r"\s{2,}|\n|account\s+n", m.group(1), flags=re.IGNORECASE)[0].strip(" :-")
        parsed.account_name = name[:200] or None


def parse(contents: bytes, filename: str = "", content_type: str = "") -> ParsedStatement:
    """
    Parse a statement file.

    Raises UnparsableDocumentError when the file is not a recognizable
    statement or contains no transaction rows.
    """
    file_type = detect_file_type(content_type, filename)
    try:
        if file_type == "pdf":
            rows, text = _parse_pdf(contents)
        elif file_type == "excel":
            rows, text = _parse_excel(contents)
        else:
            rows, text = _parse_csv(contents)
    except UnparsableDocumentError:
        raise
    except Exception as e:
        logger.warning(f"{file_type.upper()} parser failed on {filename!r}: {e}")
        raise UnparsableDocumentError(f"Could not read {file_type.upper()} statement: {e}") from e

    if not rows:
        raise UnparsableDocumentError(
            "No transactions were parsed from this file. "
            "Check that the file is a valid bank statement with Date, "
            "Description and Amount/Debit/Credit columns."
        )

    parsed = ParsedStatement(lines=rows)
    parsed.start_date = min(r.transaction_date for r in rows)
    parsed.end_date   = max(r.transaction_date for r in rows)
    _detect_metadata(parsed, text, filename)
    logger.info(
        f"Parsed {len(rows)} lines from {filename!r} "
        f"({parsed.start_date} → {parsed.end_date}, bank={parsed.bank_name!r})"
    )
    return parsed
