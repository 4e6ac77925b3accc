"""Running balances and the ending-balance cross-check, recomputed from the opening balance on every call."""
from typing import Optional, Sequence

from statement_ledger.models.schemas import (
    BalanceMismatch,
    LedgerRow,
    LedgerTotals,
    Reconciliation,
    StatementReport,
    Transaction,
)

# Differences up to one currency unit (1 VND) are not reported.
BALANCE_TOLERANCE = 1.0


def format_currency(value: float) -> str:
    """vi-VN grouping: 1200000 -> 1.200.000, 1234.5 -> 1.234,5"""
    text = f"{abs(value):,.3f}".rstrip("0").rstrip(".")
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    if value < 0 and text != "0":
        return f"-{text}"
    return text


def net_change(tx: Transaction) -> float:
    return tx.debit - tx.credit - tx.fee - tx.vat


def running_balances(opening_balance: float, transactions: Sequence[Transaction]) -> list[float]:
    """Balance after each transaction, in order (balance[1..n] of the recurrence)."""
    balances = []
    balance = opening_balance
    for tx in transactions:
        balance = balance + net_change(tx)
        balances.append(balance)
    return balances


def compute_ending_balance(opening_balance: float, transactions: Sequence[Transaction]) -> float:
    balances = running_balances(opening_balance, transactions)
    return balances[-1] if balances else opening_balance


def _mismatch(computed: float, claimed: float) -> Optional[BalanceMismatch]:
    if not claimed:
        return None
    if abs(computed - claimed) <= BALANCE_TOLERANCE:
        return None
    difference = computed - claimed
    return BalanceMismatch(
        computed=computed,
        claimed=claimed,
        difference=difference,
        message=(
            f"Computed ending balance ({format_currency(computed)}) does not match the ending balance "
            f"on the statement ({format_currency(claimed)}). Difference: {format_currency(difference)}. "
            "Please review the transactions."
        ),
    )


def check_balance(report: StatementReport) -> Optional[BalanceMismatch]:
    """Mismatch warning, or None when balances agree or the statement has no ending balance."""
    computed = compute_ending_balance(report.opening_balance, report.transactions)
    return _mismatch(computed, report.ending_balance)


def reconcile(report: StatementReport) -> Reconciliation:
    balances = running_balances(report.opening_balance, report.transactions)
    totals = LedgerTotals()
    for tx in report.transactions:
        totals.debit += tx.debit
        totals.credit += tx.credit
        totals.fee += tx.fee
        totals.vat += tx.vat
    computed = balances[-1] if balances else report.opening_balance
    return Reconciliation(
        opening_balance=report.opening_balance,
        rows=[
            LedgerRow(index=i, transaction=tx, balance=balance)
            for i, (tx, balance) in enumerate(zip(report.transactions, balances))
        ],
        totals=totals,
        computed_ending_balance=computed,
        mismatch=_mismatch(computed, report.ending_balance),
    )
