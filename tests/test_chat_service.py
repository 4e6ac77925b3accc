"""
Tests for the chat assistant and directive handling.
"""
import json

import pytest

from statement_ledger.exceptions import DirectiveError, MissingCredentialError, ProviderHTTPError
from statement_ledger.models.schemas import ChatMessage, ChatMutationDirective, ImagePart
from statement_ledger.services.chat_service import (
    BUSY_REPLY,
    DIRECTIVE_SCHEMA,
    ChatAssistant,
    apply_directive,
    requires_confirmation,
    to_field_update,
)
from statement_ledger.services.ledger import NEW_TRANSACTION_DESCRIPTION, Ledger
from tests.conftest import FakeFallback, FakePrimary


def _directive_json(**fields) -> str:
    body = {"responseText": "ok", "action": "query", "confirmationRequired": False}
    body.update(fields)
    return json.dumps(body)


@pytest.fixture
def ledger(sample_report) -> Ledger:
    ledger = Ledger()
    ledger.load(sample_report)
    return ledger


class TestGetReply:
    """Tests for provider routing and the busy fallback."""

    @pytest.mark.asyncio
    async def test_text_message_uses_primary(self, sample_report):
        primary = FakePrimary(reply=_directive_json(responseText="Two transactions."))
        fallback = FakeFallback()

        directive = await ChatAssistant(primary, fallback).get_reply("How many?", sample_report)

        assert directive.response_text == "Two transactions."
        assert directive.action == "query"
        fallback.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_primary_sees_ledger_and_history(self, sample_report):
        primary = FakePrimary(reply=_directive_json())
        history = [ChatMessage(role="user", content="hello"), ChatMessage(role="model", content="hi there")]

        await ChatAssistant(primary, FakeFallback()).get_reply("and now?", sample_report, history)

        messages = primary.complete.call_args.args[0]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert '"openingBalance": 1000000.0' in messages[0]["content"]
        assert messages[1]["content"] == "hello"
        assert messages[2]["content"] == "hi there"
        assert messages[3]["content"] == "and now?"

    @pytest.mark.asyncio
    async def test_image_goes_straight_to_fallback(self, sample_report):
        primary = FakePrimary(reply=_directive_json())
        fallback = FakeFallback(reply=_directive_json(action="add", add={"description": "Receipt", "credit": 50_000}))
        image = ImagePart(mime_type="image/jpeg", data="AAAA")

        directive = await ChatAssistant(primary, fallback).get_reply("Add this receipt", sample_report, image=image)

        assert directive.action == "add"
        assert directive.add.credit == 50_000
        primary.complete.assert_not_called()
        kwargs = fallback.generate.call_args.kwargs
        assert kwargs["images"] == [image]
        assert kwargs["response_schema"] == DIRECTIVE_SCHEMA

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [MissingCredentialError("no key"), ProviderHTTPError("DeepSeek", 429, "rate limited")],
    )
    async def test_primary_failure_falls_back(self, error, sample_report):
        fallback = FakeFallback(reply=_directive_json(action="undo"))

        directive = await ChatAssistant(FakePrimary(error=error), fallback).get_reply("undo that", sample_report)

        assert directive.action == "undo"
        assert fallback.generate.call_args.kwargs["images"] == ()
        assert "User: undo that" in fallback.generate.call_args.args[0]

    @pytest.mark.asyncio
    async def test_both_failing_returns_busy_query(self, sample_report):
        primary = FakePrimary(reply="not json at all")
        fallback = FakeFallback(error=ProviderHTTPError("Gemini", 500, "boom"))

        directive = await ChatAssistant(primary, fallback).get_reply("change row 1", sample_report)

        assert directive.action == "query"
        assert directive.response_text == BUSY_REPLY
        assert directive.confirmation_required is None
        assert directive.update is None
        assert directive.add is None

    @pytest.mark.asyncio
    async def test_works_without_report(self):
        primary = FakePrimary(reply=_directive_json(responseText="Upload a statement first."))
        directive = await ChatAssistant(primary, FakeFallback()).get_reply("hi", None)

        assert directive.response_text == "Upload a statement first."
        assert "Current ledger data: null" in primary.complete.call_args.args[0][0]["content"]


class TestDirectives:
    """Tests for confirmation and ledger application of directives."""

    def test_requires_confirmation(self):
        assert requires_confirmation(ChatMutationDirective(action="update"))
        assert requires_confirmation(ChatMutationDirective(action="add"))
        assert not requires_confirmation(ChatMutationDirective(action="undo"))
        assert not requires_confirmation(ChatMutationDirective(action="query"))

    def test_update_directive_changes_one_field(self, ledger):
        directive = ChatMutationDirective.model_validate(
            {
                "responseText": "Updating",
                "action": "update",
                "update": {"index": 1, "field": "fee", "newValue": 22_000},
                "confirmationRequired": True,
            }
        )
        before = ledger.current.model_copy(deep=True)

        assert apply_directive(ledger, directive) is True

        assert ledger.current.transactions[1].fee == 22_000
        assert ledger.current.transactions[0] == before.transactions[0]
        assert ledger.current.transactions[1].credit == before.transactions[1].credit
        assert ledger.history_length == 2

    def test_add_directive_uses_defaults(self, ledger):
        directive = ChatMutationDirective.model_validate(
            {"action": "add", "add": {"description": "", "debit": 0, "credit": 0}, "confirmationRequired": True}
        )

        assert apply_directive(ledger, directive) is True

        added = ledger.current.transactions[-1]
        assert len(ledger.current.transactions) == 3
        assert added.description == NEW_TRANSACTION_DESCRIPTION
        assert added.debit == 0
        assert added.credit == 0
        assert added.fee == 0
        assert added.vat == 0

    def test_query_leaves_ledger_untouched(self, ledger):
        assert apply_directive(ledger, ChatMutationDirective(action="query")) is False
        assert ledger.history_length == 1

    def test_undo_directive(self, ledger):
        apply_directive(ledger, ChatMutationDirective.model_validate(
            {"action": "update", "update": {"index": 0, "field": "debit", "newValue": 5}}
        ))
        assert apply_directive(ledger, ChatMutationDirective(action="undo")) is True
        assert ledger.current.transactions[0].debit == 200_000
        assert apply_directive(ledger, ChatMutationDirective(action="undo")) is False

    def test_missing_payloads_raise(self, ledger):
        with pytest.raises(DirectiveError):
            apply_directive(ledger, ChatMutationDirective(action="update"))
        with pytest.raises(DirectiveError):
            apply_directive(ledger, ChatMutationDirective(action="add"))
        assert ledger.history_length == 1

    @pytest.mark.parametrize(
        "update",
        [
            {"index": 0, "field": "description", "newValue": 1},
            {"index": 0, "field": "balance", "newValue": 1},
            {"index": 0, "field": "debit", "newValue": -1},
        ],
    )
    def test_to_field_update_rejects_bad_payload(self, update):
        with pytest.raises(DirectiveError):
            to_field_update(ChatMutationDirective.model_validate({"action": "update", "update": update}))

    def test_to_field_update(self):
        directive = ChatMutationDirective.model_validate(
            {"action": "update", "update": {"index": 3, "field": "vat", "newValue": 1_100}}
        )
        update = to_field_update(directive)
        assert (update.index, update.field, update.value) == (3, "vat", 1_100)
