"""Chat service: turn a user message into a ledger directive, and apply confirmed directives."""
import json
import logging
import time
from typing import Optional, Sequence

from google.genai import types
from langchain_core.messages import convert_to_openai_messages
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from statement_ledger.exceptions import DirectiveError
from statement_ledger.models.schemas import (
    NUMERIC_FIELDS,
    ChatMessage,
    ChatMutationDirective,
    ImagePart,
    NumericFieldUpdate,
    StatementReport,
)
from statement_ledger.services.ledger import Ledger
from statement_ledger.services.providers import DeepSeekClient, GeminiClient, parse_model
from statement_ledger.services.statement_agent import TRANSACTION_SCHEMA

logger = logging.getLogger("chat_service")

BUSY_REPLY = "The assistant is busy right now, please try again shortly."

CHAT_RULES = """You are the accounting assistant for a bank statement ledger.
1. Answer in the language the user writes in, briefly and only from the ledger data.
2. To change an amount: action "update" with the row index (0-based), the field
   (debit, credit, fee or vat) and the new number; set confirmationRequired to true.
3. To add a transaction: action "add" with the transaction; set confirmationRequired to true.
4. To revert the last change: action "undo".
5. Questions only: action "query", confirmationRequired false, no update/add."""

CHAT_SCHEMA_TEXT = """Always reply with JSON (never plain text):
{
  "responseText": string,
  "action": "update" | "undo" | "add" | "query",
  "update": {"index": number, "field": string, "newValue": number} | null,
  "add": {"transactionCode": string, "date": string, "description": string,
          "debit": number, "credit": number, "fee": number, "vat": number} | null,
  "confirmationRequired": boolean
}"""


def _escape_braces(text: str) -> str:
    return text.replace("{", "{{").replace("}", "}}")


CHAT_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _escape_braces(f"{CHAT_RULES}\n\n{CHAT_SCHEMA_TEXT}") + "\n\nCurrent ledger data: {report_json}"),
        MessagesPlaceholder("history"),
        ("human", "{message}"),
    ]
)

DIRECTIVE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "responseText": types.Schema(type=types.Type.STRING),
        "action": types.Schema(type=types.Type.STRING, enum=["update", "undo", "add", "query"]),
        "update": types.Schema(
            type=types.Type.OBJECT,
            nullable=True,
            properties={
                "index": types.Schema(type=types.Type.INTEGER),
                "field": types.Schema(type=types.Type.STRING, enum=list(NUMERIC_FIELDS)),
                "newValue": types.Schema(type=types.Type.NUMBER),
            },
            required=["index", "field", "newValue"],
        ),
        "add": types.Schema(
            type=types.Type.OBJECT,
            nullable=True,
            properties=TRANSACTION_SCHEMA.properties,
        ),
        "confirmationRequired": types.Schema(type=types.Type.BOOLEAN),
    },
    required=["responseText", "action", "confirmationRequired"],
)


def busy_directive() -> ChatMutationDirective:
    return ChatMutationDirective(response_text=BUSY_REPLY, action="query")


def _report_json(report: Optional[StatementReport]) -> str:
    if report is None:
        return "null"
    return json.dumps(report.model_dump(by_alias=True), ensure_ascii=False)


def _history_tuples(history: Sequence[ChatMessage]) -> list[tuple[str, str]]:
    return [("ai" if m.role == "model" else "human", m.content) for m in history]


def _transcript(history: Sequence[ChatMessage], message: str) -> str:
    lines = [f"{'Assistant' if m.role == 'model' else 'User'}: {m.content}" for m in history]
    lines.append(f"User: {message}")
    return "\n".join(lines)


class ChatAssistant:
    """Primary provider for text chat; the vision-capable fallback for images and failures."""

    def __init__(self, primary: DeepSeekClient, fallback: GeminiClient):
        self.primary = primary
        self.fallback = fallback

    async def get_reply(
        self,
        message: str,
        report: Optional[StatementReport],
        history: Sequence[ChatMessage] = (),
        image: Optional[ImagePart] = None,
    ) -> ChatMutationDirective:
        """
        Never raises: when both providers fail the caller gets a canned "query" directive.
        The primary cannot read images, so a request with an image goes straight to the fallback.
        """
        t0 = time.perf_counter()
        if image is None:
            try:
                directive = await self._reply_primary(message, report, history)
                logger.info("get_reply: %s -> %s (%.2f s)", self.primary.name, directive.action, time.perf_counter() - t0)
                return directive
            except Exception as e:
                logger.warning("get_reply: %s failed (%s), falling back to %s", self.primary.name, e, self.fallback.name)
        try:
            directive = await self._reply_fallback(message, report, history, image)
        except Exception as e:
            logger.error("get_reply: %s failed too (%s), returning busy reply", self.fallback.name, e)
            return busy_directive()
        logger.info("get_reply: %s -> %s (%.2f s)", self.fallback.name, directive.action, time.perf_counter() - t0)
        return directive

    async def _reply_primary(self, message, report, history) -> ChatMutationDirective:
        prompt_messages = CHAT_PROMPT.format_messages(
            report_json=_report_json(report),
            history=_history_tuples(history),
            message=message,
        )
        out = await self.primary.complete(convert_to_openai_messages(prompt_messages), json_mode=True)
        return parse_model(out, ChatMutationDirective)

    async def _reply_fallback(self, message, report, history, image) -> ChatMutationDirective:
        out = await self.fallback.generate(
            _transcript(history, message),
            images=[image] if image is not None else (),
            system_instruction=f"{CHAT_RULES}\n\nCurrent ledger data: {_report_json(report)}",
            response_schema=DIRECTIVE_SCHEMA,
            temperature=0.1,
        )
        return parse_model(out, ChatMutationDirective)


def requires_confirmation(directive: ChatMutationDirective) -> bool:
    """update/add must be approved by the user before they reach the ledger."""
    return directive.action in ("update", "add")


def to_field_update(directive: ChatMutationDirective) -> NumericFieldUpdate:
    if directive.update is None:
        raise DirectiveError("Update directive has no update payload.")
    payload = directive.update
    if payload.field not in NUMERIC_FIELDS:
        raise DirectiveError(f"Chat updates can only change amounts, not {payload.field!r}.")
    if payload.new_value < 0:
        raise DirectiveError("Amounts cannot be negative.")
    return NumericFieldUpdate(index=payload.index, field=payload.field, value=payload.new_value)


def apply_directive(ledger: Ledger, directive: ChatMutationDirective) -> bool:
    """Route a directive into the ledger. Returns whether the ledger changed."""
    if directive.action == "query":
        return False
    if directive.action == "undo":
        return ledger.undo()
    if directive.action == "update":
        ledger.apply_update(to_field_update(directive))
        return True
    if directive.add is None:
        raise DirectiveError("Add directive has no transaction payload.")
    ledger.add_transaction(directive.add)
    return True
