"""
Pytest configuration and fixtures.
"""
import json
from unittest.mock import AsyncMock

import pytest

from statement_ledger.models.schemas import AccountInfo, StatementReport, Transaction


class FakePrimary:
    """Stands in for DeepSeekClient: `complete` is an AsyncMock."""

    name = "DeepSeek"

    def __init__(self, reply=None, error=None):
        self.complete = AsyncMock(return_value=reply, side_effect=error)


class FakeFallback:
    """Stands in for GeminiClient: `generate` is an AsyncMock."""

    name = "Gemini"

    def __init__(self, reply=None, error=None):
        self.generate = AsyncMock(return_value=reply, side_effect=error)


@pytest.fixture
def sample_report() -> StatementReport:
    return StatementReport(
        opening_balance=1_000_000,
        ending_balance=1_089_000,
        account_info=AccountInfo(
            account_name="NGUYEN VAN A",
            account_number="0123456789",
            bank_name="Vietcombank",
            branch="Ha Noi",
        ),
        transactions=[
            Transaction(transaction_code="FT001", date="01/03/2025", description="Salary", debit=200_000),
            Transaction(
                transaction_code="FT002",
                date="02/03/2025",
                description="Transfer out",
                credit=100_000,
                fee=10_000,
                vat=1_000,
            ),
        ],
    )


@pytest.fixture
def sample_report_json(sample_report) -> str:
    return json.dumps(sample_report.model_dump(by_alias=True), ensure_ascii=False)
