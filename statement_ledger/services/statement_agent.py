"""Statement agent: read page images with the vision model, then turn statement text into a ledger."""
import logging
import time
from typing import Sequence

from google.genai import types
from langchain_core.messages import SystemMessage, convert_to_openai_messages
from langchain_core.prompts import ChatPromptTemplate

from statement_ledger.models.schemas import ImagePart, StatementReport
from statement_ledger.services.providers import DeepSeekClient, GeminiClient, parse_model

logger = logging.getLogger("statement_agent")

OCR_PROMPT = (
    "You are a financial OCR tool. Task: extract ALL text from these bank statement images.\n"
    "RULES:\n"
    "1. Keep number formatting exactly as printed (dots and commas).\n"
    "2. Never drop a zero (3,000,000 is three million, not three hundred thousand).\n"
    "3. Return raw text only: no markdown, no introduction, no commentary."
)

LEDGER_RULES = """BUSINESS RULES (IMPORTANT):
1. Split fee and VAT: if a transaction line carries a fee and/or VAT, separate them from the principal amount.
   Example: principal 10,000,000, charges 11,000 (10,000 fee + 1,000 VAT)
   -> credit 10000000, fee 10000, vat 1000, debit 0.
2. Number format: Vietnamese statements use "." or "," as thousands separator and "," as decimal separator.
   Convert every amount to a plain number.
3. Invert debit/credit for the ledger:
   - Statement "C" (credit, money in) -> ledger debit (balance increases).
   - Statement "D" (debit, money out) -> ledger credit (balance decreases), principal only, without fee/VAT.
4. Absolute accuracy: never round, never drop a digit or a zero.
5. Dates as DD/MM/YYYY. Opening and ending balance: search carefully, use 0 when absent."""

LEDGER_SCHEMA_TEXT = """REQUIRED JSON STRUCTURE:
{
  "openingBalance": number,
  "endingBalance": number,
  "accountInfo": {
    "accountName": string,
    "accountNumber": string,
    "bankName": string,
    "branch": string
  },
  "transactions": [
    {
      "transactionCode": string,
      "date": string,
      "description": string,
      "debit": number,
      "credit": number,
      "fee": number,
      "vat": number
    }
  ]
}
debit = money in; credit = principal money out WITHOUT fee/VAT; fee and vat = separated charges."""

_ROLE = "You are a senior chartered accountant. Task: convert raw bank statement text into a structured ledger"

ANALYSIS_SYSTEM_PROMPT = f"{_ROLE} as JSON.\n\n{LEDGER_SCHEMA_TEXT}\n\n{LEDGER_RULES}"
# Fallback provider gets the schema as a response schema, so the prose only carries the rules.
FALLBACK_SYSTEM_PROMPT = f"{_ROLE}.\n\n{LEDGER_RULES}"

ANALYSIS_HUMAN = "Analyze the following statement content and return JSON:\n\n{text}"

ANALYSIS_PROMPT = ChatPromptTemplate.from_messages(
    [
        SystemMessage(content=ANALYSIS_SYSTEM_PROMPT),
        ("human", ANALYSIS_HUMAN),
    ]
)

_STRING = types.Schema(type=types.Type.STRING)
_AMOUNT = types.Schema(type=types.Type.NUMBER)

TRANSACTION_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "transactionCode": _STRING,
        "date": types.Schema(type=types.Type.STRING, description="DD/MM/YYYY"),
        "description": _STRING,
        "debit": types.Schema(type=types.Type.NUMBER, description="Money in (statement C)"),
        "credit": types.Schema(type=types.Type.NUMBER, description="Principal money out (statement D), no fee/VAT"),
        "fee": _AMOUNT,
        "vat": _AMOUNT,
    },
    required=["date", "description", "debit", "credit", "fee", "vat"],
)

ACCOUNT_INFO_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "accountName": _STRING,
        "accountNumber": _STRING,
        "bankName": _STRING,
        "branch": _STRING,
    },
)

STATEMENT_REPORT_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "openingBalance": _AMOUNT,
        "endingBalance": _AMOUNT,
        "accountInfo": ACCOUNT_INFO_SCHEMA,
        "transactions": types.Schema(type=types.Type.ARRAY, items=TRANSACTION_SCHEMA),
    },
    required=["openingBalance", "endingBalance", "accountInfo", "transactions"],
)


class StatementAgent:
    """Vision OCR through the fallback provider; analysis on the primary with one fallback attempt."""

    def __init__(self, primary: DeepSeekClient, fallback: GeminiClient):
        self.primary = primary
        self.fallback = fallback

    async def recognize_text(self, images: Sequence[ImagePart]) -> str:
        """One vision call for every image of the batch; no call at all without images."""
        if not images:
            return ""
        t0 = time.perf_counter()
        text = await self.fallback.generate(OCR_PROMPT, images=images, temperature=0)
        logger.info("recognize_text: %d images -> %d chars (%.2f s)", len(images), len(text), time.perf_counter() - t0)
        return text.strip()

    async def analyze_statement(self, text: str) -> StatementReport:
        """
        Convert statement text into a validated StatementReport.
        Any primary failure (credentials, HTTP, empty or malformed output) gets exactly one
        fallback attempt; a fallback failure propagates.
        """
        if not text or not text.strip():
            raise ValueError("No statement content to analyze.")
        t0 = time.perf_counter()
        logger.info("analyze_statement: start, text len=%d", len(text))
        try:
            report = await self._analyze_primary(text)
            source = self.primary.name
        except Exception as e:
            logger.warning("analyze_statement: %s failed (%s), falling back to %s", self.primary.name, e, self.fallback.name)
            report = await self._analyze_fallback(text)
            source = self.fallback.name
        logger.info(
            "analyze_statement: done via %s, %d transactions (%.2f s)",
            source, len(report.transactions), time.perf_counter() - t0,
        )
        return report

    async def _analyze_primary(self, text: str) -> StatementReport:
        messages = convert_to_openai_messages(ANALYSIS_PROMPT.format_messages(text=text))
        out = await self.primary.complete(messages, json_mode=True)
        return parse_model(out, StatementReport)

    async def _analyze_fallback(self, text: str) -> StatementReport:
        out = await self.fallback.generate(
            ANALYSIS_HUMAN.format(text=text),
            system_instruction=FALLBACK_SYSTEM_PROMPT,
            response_schema=STATEMENT_REPORT_SCHEMA,
            temperature=0.1,
        )
        return parse_model(out, StatementReport)
