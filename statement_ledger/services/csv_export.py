"""Turn a reconciled ledger into a CSV string."""
import csv
import io

from statement_ledger.models.schemas import Reconciliation, StatementReport

CSV_HEADERS = ["Transaction code", "Value date", "Description", "Debit", "Credit", "Fee", "VAT", "Balance"]


def _number(value: float):
    return int(value) if float(value).is_integer() else value


def ledger_to_csv(report: StatementReport, reconciliation: Reconciliation) -> str:
    """Account info block, then opening balance row, one row per transaction, and the totals row."""
    info = report.account_info
    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["Account name:", info.account_name or "N/A"])
    writer.writerow(["Account number:", info.account_number or "N/A"])
    writer.writerow(["Bank:", info.bank_name or "N/A"])
    writer.writerow(["Branch:", info.branch or "N/A"])
    writer.writerow([])
    writer.writerow(CSV_HEADERS)
    writer.writerow(["", "", "Opening balance", "", "", "", "", _number(reconciliation.opening_balance)])
    for row in reconciliation.rows:
        tx = row.transaction
        writer.writerow(
            [
                tx.transaction_code,
                tx.date,
                tx.description,
                _number(tx.debit),
                _number(tx.credit),
                _number(tx.fee),
                _number(tx.vat),
                _number(row.balance),
            ]
        )
    totals = reconciliation.totals
    writer.writerow(
        [
            "",
            "",
            "Total",
            _number(totals.debit),
            _number(totals.credit),
            _number(totals.fee),
            _number(totals.vat),
            _number(reconciliation.computed_ending_balance),
        ]
    )
    return out.getvalue()
