"""
Tests for statement analysis and page-image OCR.
"""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from statement_ledger.exceptions import MissingCredentialError, ParseError, ProviderHTTPError, StatementLedgerError
from statement_ledger.models.schemas import ImagePart
from statement_ledger.services.providers import GeminiClient
from statement_ledger.services.statement_agent import (
    FALLBACK_SYSTEM_PROMPT,
    OCR_PROMPT,
    STATEMENT_REPORT_SCHEMA,
    StatementAgent,
)
from tests.conftest import FakeFallback, FakePrimary

STATEMENT_TEXT = "SAO KE TAI KHOAN\n01/03/2025 FT001 Luong C 200.000"


class TestAnalyzeStatement:
    """Tests for primary analysis with one fallback attempt."""

    @pytest.mark.asyncio
    async def test_fenced_primary_output_is_parsed_without_fallback(self, sample_report_json, sample_report):
        primary = FakePrimary(reply=f"```json\n{sample_report_json}\n```")
        fallback = FakeFallback()
        agent = StatementAgent(primary, fallback)

        report = await agent.analyze_statement(STATEMENT_TEXT)

        assert report == sample_report
        fallback.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_primary_receives_system_and_user_messages(self, sample_report_json):
        primary = FakePrimary(reply=sample_report_json)
        await StatementAgent(primary, FakeFallback()).analyze_statement(STATEMENT_TEXT)

        messages = primary.complete.call_args.args[0]
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "openingBalance" in messages[0]["content"]
        assert STATEMENT_TEXT in messages[1]["content"]
        assert primary.complete.call_args.kwargs["json_mode"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "primary",
        [
            FakePrimary(error=MissingCredentialError("no key")),
            FakePrimary(error=ProviderHTTPError("DeepSeek", 503, "overloaded")),
            FakePrimary(reply=""),
            FakePrimary(reply='{"transactions": [{"debit": "two hundred"}]}'),
            FakePrimary(reply="I could not read this statement."),
        ],
    )
    async def test_any_primary_failure_falls_back_once(self, primary, sample_report_json, sample_report):
        fallback = FakeFallback(reply=sample_report_json)

        report = await StatementAgent(primary, fallback).analyze_statement(STATEMENT_TEXT)

        assert report == sample_report
        assert fallback.generate.await_count == 1
        kwargs = fallback.generate.call_args.kwargs
        assert kwargs["system_instruction"] == FALLBACK_SYSTEM_PROMPT
        assert kwargs["response_schema"] == STATEMENT_REPORT_SCHEMA
        assert STATEMENT_TEXT in fallback.generate.call_args.args[0]

    @pytest.mark.asyncio
    async def test_fallback_failure_propagates(self):
        primary = FakePrimary(error=MissingCredentialError("no key"))
        fallback = FakeFallback(reply="not json")

        with pytest.raises(ParseError):
            await StatementAgent(primary, fallback).analyze_statement(STATEMENT_TEXT)
        assert fallback.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_fallback_credential_error_propagates(self):
        primary = FakePrimary(error=ProviderHTTPError("DeepSeek", 500, "boom"))
        fallback = FakeFallback(error=MissingCredentialError("no gemini key"))

        with pytest.raises(MissingCredentialError):
            await StatementAgent(primary, fallback).analyze_statement(STATEMENT_TEXT)

    @pytest.mark.asyncio
    async def test_fallback_network_error_propagates_as_provider_error(self):
        genai_client = MagicMock()
        genai_client.aio.models.generate_content = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        agent = StatementAgent(FakePrimary(error=RuntimeError("primary down")), GeminiClient("key", client=genai_client))

        with pytest.raises(StatementLedgerError) as exc_info:
            await agent.analyze_statement(STATEMENT_TEXT)
        assert isinstance(exc_info.value, ProviderHTTPError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   \n "])
    async def test_empty_text_is_rejected(self, text):
        primary = FakePrimary()
        with pytest.raises(ValueError):
            await StatementAgent(primary, FakeFallback()).analyze_statement(text)
        primary.complete.assert_not_called()


class TestRecognizeText:
    """Tests for the single vision OCR call."""

    @pytest.mark.asyncio
    async def test_no_images_makes_no_call(self):
        fallback = FakeFallback(reply="unused")
        assert await StatementAgent(FakePrimary(), fallback).recognize_text([]) == ""
        fallback.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_all_images_go_in_one_call(self):
        fallback = FakeFallback(reply="  page one\npage two \n")
        images = [ImagePart(mime_type="image/png", data="AAAA"), ImagePart(mime_type="image/png", data="BBBB")]

        text = await StatementAgent(FakePrimary(), fallback).recognize_text(images)

        assert text == "page one\npage two"
        assert fallback.generate.await_count == 1
        assert fallback.generate.call_args.args[0] == OCR_PROMPT
        assert fallback.generate.call_args.kwargs["images"] == images
