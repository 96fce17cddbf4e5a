"""
Ledger / journal engine the importer posts into.

  LocalLedger       → writes LedgerTransaction + balanced JournalEntry rows in this database
  HttpLedgerClient  → remote ledger service (used when LEDGER_URL is set)

Both are idempotent on `reference_id` (the statement line id): posting the
same reference twice returns the first posting instead of creating another.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

import httpx
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import config
from errors import LedgerUnavailableError, LedgerValidationError
from models import (
    GlAccount, JournalEntry, JournalLine, JournalSequence, LedgerPeriodLock, LedgerTransaction,
    TransactionType,
)

logger = logging.getLogger(__name__)


@dataclass
class PostingResult:
    transaction_id: str
    journal_entry_id: str
    journal_number: str


class LedgerEngine:
    """Interface. Implementations raise LedgerValidationError / LedgerUnavailableError."""

    def ping(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None

    def post_entry(
        self,
        business_id: str,
        account_code: str,
        bank_account_code: str,
        amount_kobo: int,
        direction: TransactionType,
        entry_date: date,
        description: str,
        reference_id: str,
    ) -> PostingResult:
        raise NotImplementedError


# ── Local ledger ──────────────────────────────────────────────────────────────

class LocalLedger(LedgerEngine):
    """
    Posts into the ledger tables through the caller's session.

    The caller owns the transaction: run each post inside a savepoint so a
    rejected posting leaves nothing behind.
    """

    def __init__(self, db: Session):
        self.db = db

    def ping(self) -> None:
        return None

    def _active_account(self, business_id: str, code: str) -> GlAccount:
        acct = self.db.scalar(
            select(GlAccount).where(GlAccount.business_id == business_id, GlAccount.code == code)
        )
        if acct is None:
            raise LedgerValidationError(f"GL account {code} does not exist")
        if not acct.is_active:
            raise LedgerValidationError(f"GL account {code} ({acct.name}) is inactive")
        return acct

    def _next_journal_number(self, business_id: str) -> str:
        """
        Bump the business's counter row in place.

        The UPDATE holds the row (the database, on SQLite) until the caller
        commits, so concurrent imports for one business get distinct numbers.
        """
        bump = (
            update(JournalSequence)
            .where(JournalSequence.business_id == business_id)
            .values(last_number=JournalSequence.last_number + 1)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(bump).rowcount != 1:
            try:
                with self.db.begin_nested():
                    self.db.add(JournalSequence(business_id=business_id, last_number=1))
            except IntegrityError:
                # Another importer created the row first
                self.db.execute(bump)
        number = self.db.scalar(
            select(JournalSequence.last_number)
            .where(JournalSequence.business_id == business_id)
        )
        return f"JE-{number:06d}"

    def post_entry(
        self,
        business_id: str,
        account_code: str,
        bank_account_code: str,
        amount_kobo: int,
        direction: TransactionType,
        entry_date: date,
        description: str,
        reference_id: str,
    ) -> PostingResult:
        existing = self.db.scalar(
            select(LedgerTransaction).where(
                LedgerTransaction.business_id == business_id,
                LedgerTransaction.reference_id == reference_id,
            )
        )
        if existing is not None and existing.journal_entry is not None:
            logger.info(f"Ledger: reference {reference_id} already posted as {existing.journal_entry.number}")
            return PostingResult(existing.id, existing.journal_entry.id, existing.journal_entry.number)

        if amount_kobo <= 0:
            raise LedgerValidationError("Amount must be greater than zero")

        lock = self.db.get(LedgerPeriodLock, business_id)
        if lock is not None and entry_date <= lock.locked_through:
            raise LedgerValidationError(
                f"Accounting period is closed through {lock.locked_through.isoformat()}"
            )

        if account_code == bank_account_code:
            raise LedgerValidationError("Posting account and bank account must differ")
        acct = self._active_account(business_id, account_code)
        bank = self._active_account(business_id, bank_account_code)

        tx = LedgerTransaction(
            business_id=business_id,
            reference_id=reference_id,
            transaction_type=direction,
            amount_kobo=amount_kobo,
            date=entry_date,
            description=description[:500],
            gl_account_code=acct.code,
        )
        self.db.add(tx)
        self.db.flush()

        # Outflow: expense (or asset/liability) debited, bank credited. Inflow: the reverse.
        if direction == TransactionType.OUTFLOW:
            debit_code, credit_code = acct.code, bank.code
        else:
            debit_code, credit_code = bank.code, acct.code

        entry = JournalEntry(
            business_id=business_id,
            number=self._next_journal_number(business_id),
            transaction=tx,
            date=entry_date,
            memo=description[:500],
        )
        entry.lines = [
            JournalLine(gl_account_code=debit_code, debit_kobo=amount_kobo, credit_kobo=0),
            JournalLine(gl_account_code=credit_code, debit_kobo=0, credit_kobo=amount_kobo),
        ]
        self.db.add(entry)
        self.db.flush()

        return PostingResult(tx.id, entry.id, entry.number)


# ── Remote ledger ─────────────────────────────────────────────────────────────

class HttpLedgerClient(LedgerEngine):
    """
    JSON client for a remote ledger service.

      GET  /health   → 2xx when the service can take postings
      POST /entries  → {"transactionId", "journalEntryId", "journalNumber"}

    400/409/422 responses reject a single posting; transport errors and 5xx
    mean the ledger is unavailable.
    """

    _REJECT_STATUSES = {400, 409, 422}

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout, transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def ping(self) -> None:
        try:
            resp = self._client.get("/health")
        except httpx.HTTPError as e:
            raise LedgerUnavailableError(f"Ledger service unreachable: {e}") from e
        if resp.status_code >= 400:
            raise LedgerUnavailableError(f"Ledger service unhealthy (HTTP {resp.status_code})")

    def post_entry(
        self,
        business_id: str,
        account_code: str,
        bank_account_code: str,
        amount_kobo: int,
        direction: TransactionType,
        entry_date: date,
        description: str,
        reference_id: str,
    ) -> PostingResult:
        payload = {
            "businessId": business_id,
            "accountCode": account_code,
            "bankAccountCode": bank_account_code,
            "amountKobo": amount_kobo,
            "direction": direction.value,
            "date": entry_date.isoformat(),
            "description": description,
            "referenceId": reference_id,
        }
        try:
            resp = self._client.post("/entries", json=payload, headers={"Idempotency-Key": reference_id})
        except httpx.HTTPError as e:
            raise LedgerUnavailableError(f"Ledger service unreachable: {e}") from e

        if resp.status_code in self._REJECT_STATUSES:
            raise LedgerValidationError(self._error_detail(resp))
        if resp.status_code >= 400:
            raise LedgerUnavailableError(f"Ledger service error (HTTP {resp.status_code})")

        try:
            data = resp.json()
            return PostingResult(
                transaction_id=str(data["transactionId"]),
                journal_entry_id=str(data["journalEntryId"]),
                journal_number=str(data.get("journalNumber") or ""),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise LedgerUnavailableError(f"Malformed ledger response: {e}") from e

    @staticmethod
    def _error_detail(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text or f"Ledger rejected the entry (HTTP {resp.status_code})"
        if isinstance(body, dict):
            return str(body.get("message") or body.get("detail") or body)
        return str(body)


def get_ledger(db: Session) -> LedgerEngine:
    if config.LEDGER_URL:
        return HttpLedgerClient(config.LEDGER_URL, config.LEDGER_API_KEY, config.LEDGER_TIMEOUT)
    return LocalLedger(db)
