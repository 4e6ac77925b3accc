"""Current statement report plus the undo stack of full report snapshots."""
import logging
from datetime import date
from typing import Optional

from pydantic import ValidationError

from statement_ledger.exceptions import LedgerError
from statement_ledger.models.schemas import (
    AddPayload,
    FieldUpdate,
    NumericFieldUpdate,
    Reconciliation,
    StatementReport,
    Transaction,
)
from statement_ledger.services.reconciliation import reconcile

logger = logging.getLogger("ledger")

NEW_TRANSACTION_DESCRIPTION = "Giao dịch mới"

_TEXT_ATTRS = {"transactionCode": "transaction_code", "date": "date", "description": "description"}


def today_str() -> str:
    return date.today().strftime("%d/%m/%Y")


def new_transaction(payload: Optional[AddPayload]) -> Transaction:
    """Fill the gaps of a partial transaction; empty values take the defaults too."""
    payload = payload or AddPayload()
    try:
        return Transaction(
            transaction_code=payload.transaction_code or "",
            date=payload.date or today_str(),
            description=payload.description or NEW_TRANSACTION_DESCRIPTION,
            debit=payload.debit or 0,
            credit=payload.credit or 0,
            fee=payload.fee or 0,
            vat=payload.vat or 0,
        )
    except ValidationError as e:
        raise LedgerError(f"Invalid transaction: {e}") from e


class Ledger:
    """
    Empty until the first report is loaded. Every mutation pushes the current report onto
    the history before replacing it with a mutated copy, so undo restores the exact
    pre-mutation state. The first snapshot of a load is never popped.
    """

    def __init__(self):
        self._current: Optional[StatementReport] = None
        self._history: list[StatementReport] = []

    @property
    def current(self) -> Optional[StatementReport]:
        return self._current

    @property
    def is_loaded(self) -> bool:
        return self._current is not None

    @property
    def history_length(self) -> int:
        return len(self._history)

    def load(self, report: StatementReport) -> None:
        self._current = report.model_copy(deep=True)
        self._history = [self._current.model_copy(deep=True)]
        logger.info("load: %d transactions, history reset", len(report.transactions))

    def reset(self) -> None:
        """Back to Empty: no report, no history."""
        self._current = None
        self._history = []

    def _require_report(self) -> StatementReport:
        if self._current is None:
            raise LedgerError("No statement report loaded.")
        return self._current

    def _commit(self, updated: StatementReport) -> StatementReport:
        self._history.append(self._current)
        self._current = updated
        return updated

    def apply_update(self, update: FieldUpdate) -> StatementReport:
        report = self._require_report()
        if update.index >= len(report.transactions):
            raise LedgerError(f"Transaction index {update.index} out of range ({len(report.transactions)} rows).")
        updated = report.model_copy(deep=True)
        tx = updated.transactions[update.index]
        if isinstance(update, NumericFieldUpdate):
            setattr(tx, update.field, float(update.value))
        else:
            setattr(tx, _TEXT_ATTRS[update.field], update.value)
        logger.info("apply_update: row %d %s", update.index, update.field)
        return self._commit(updated)

    def set_opening_balance(self, value: float) -> StatementReport:
        updated = self._require_report().model_copy(deep=True)
        updated.opening_balance = float(value)
        return self._commit(updated)

    def add_transaction(self, payload: Optional[AddPayload] = None) -> StatementReport:
        updated = self._require_report().model_copy(deep=True)
        updated.transactions.append(new_transaction(payload))
        logger.info("add_transaction: now %d rows", len(updated.transactions))
        return self._commit(updated)

    def undo(self) -> bool:
        """Pop the most recent snapshot back into place. No-op on a single snapshot."""
        if len(self._history) <= 1:
            return False
        self._current = self._history.pop()
        logger.info("undo: history length %d", len(self._history))
        return True

    def reconciliation(self) -> Reconciliation:
        return reconcile(self._require_report())
