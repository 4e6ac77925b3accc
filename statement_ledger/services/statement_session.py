"""One user's working session: raw statement text, the ledger, and the chat around it."""
import logging
import time
from typing import Optional

from statement_ledger.config import Settings
from statement_ledger.exceptions import DirectiveError
from statement_ledger.models.schemas import (
    ChatMessage,
    ChatMutationDirective,
    ExtractedContent,
    FieldUpdate,
    FileBlob,
    ImagePart,
    Reconciliation,
)
from statement_ledger.services.chat_service import ChatAssistant, apply_directive, requires_confirmation
from statement_ledger.services.content_extractor import ContentExtractor
from statement_ledger.services.ledger import Ledger
from statement_ledger.services.providers import DeepSeekClient, GeminiClient
from statement_ledger.services.speech_input import SpeechInputPort, capture_voice_update
from statement_ledger.services.statement_agent import StatementAgent
from statement_ledger.store import FILE_NAME_KEY, RAW_TEXT_KEY, KeyValueStore

logger = logging.getLogger("statement_session")


def display_name(filenames: list[str]) -> str:
    if len(filenames) <= 3:
        return ", ".join(filenames)
    return f"{len(filenames)} files selected"


class StatementSession:
    """
    Raw text and file name are loaded from the store on construction and saved on every change.
    Overlapping requests are not serialized here: whichever finishes last owns the ledger.
    """

    def __init__(
        self,
        agent: StatementAgent,
        assistant: ChatAssistant,
        store: KeyValueStore,
        extractor: Optional[ContentExtractor] = None,
    ):
        self.agent = agent
        self.assistant = assistant
        self.store = store
        self.extractor = extractor or ContentExtractor()
        self.ledger = Ledger()
        self.chat_history: list[ChatMessage] = []
        self.pending: Optional[ChatMutationDirective] = None
        self._raw_text = store.get(RAW_TEXT_KEY) or ""
        self._file_name = store.get(FILE_NAME_KEY) or ""

    @property
    def raw_text(self) -> str:
        return self._raw_text

    @raw_text.setter
    def raw_text(self, value: str) -> None:
        self._raw_text = value
        self.store.set(RAW_TEXT_KEY, value)

    @property
    def file_name(self) -> str:
        return self._file_name

    @file_name.setter
    def file_name(self, value: str) -> None:
        self._file_name = value
        self.store.set(FILE_NAME_KEY, value)

    async def extract(self, files: list[FileBlob]) -> ExtractedContent:
        """
        Extract every file, OCR the images, and keep the combined text for review.
        New files drop the previous statement's ledger and pending change before anything runs;
        text and file name are only stored once extraction and OCR both succeed.
        """
        t0 = time.perf_counter()
        self._clear_ledger()
        content = await self.extractor.extract_batch(files)
        combined = content.text or ""
        if content.images:
            combined += "\n\n" + await self.agent.recognize_text(content.images)
        self.raw_text = combined.strip()
        self.file_name = display_name([f.filename for f in files])
        logger.info("extract: %s -> %d chars (%.2f s)", self.file_name, len(self.raw_text), time.perf_counter() - t0)
        return content

    def _clear_ledger(self) -> None:
        self.ledger.reset()
        self.pending = None

    def reset(self) -> None:
        """Start over: no ledger, no pending change, no chat, empty raw text and file name."""
        self._clear_ledger()
        self.chat_history = []
        self.raw_text = ""
        self.file_name = ""
        logger.info("reset: session cleared")

    async def submit(self, text: Optional[str] = None) -> Reconciliation:
        """Analyze the raw text into a fresh ledger; history restarts from the new report."""
        if text is not None:
            self.raw_text = text
        if not self.raw_text.strip():
            raise ValueError("No statement content to process. Extract a file or paste the statement text first.")
        report = await self.agent.analyze_statement(self.raw_text)
        self.ledger.load(report)
        self.pending = None
        result = self.ledger.reconciliation()
        if result.mismatch:
            logger.warning("submit: %s", result.mismatch.message)
        return result

    def reconciliation(self) -> Reconciliation:
        return self.ledger.reconciliation()

    def edit(self, update: FieldUpdate) -> Reconciliation:
        self.ledger.apply_update(update)
        return self.ledger.reconciliation()

    def set_opening_balance(self, value: float) -> Reconciliation:
        self.ledger.set_opening_balance(value)
        return self.ledger.reconciliation()

    def undo(self) -> bool:
        return self.ledger.undo()

    def apply_voice_input(self, port: SpeechInputPort, index: int, field: str) -> bool:
        update = capture_voice_update(port, index, field)
        if update is None:
            return False
        self.ledger.apply_update(update)
        return True

    async def chat(self, message: str, image: Optional[ImagePart] = None) -> ChatMutationDirective:
        """
        undo is applied right away; update/add are held as pending until confirm_pending(),
        whatever the model put in confirmationRequired.
        """
        directive = await self.assistant.get_reply(message, self.ledger.current, self.chat_history, image)
        self.chat_history.append(ChatMessage(role="user", content=message))
        self.chat_history.append(ChatMessage(role="model", content=directive.response_text))
        if directive.action == "undo":
            self.pending = None
            apply_directive(self.ledger, directive)
        elif requires_confirmation(directive):
            if not directive.confirmation_required:
                logger.warning("chat: %s directive without confirmationRequired, holding it for confirmation", directive.action)
            self.pending = directive
        return directive

    def confirm_pending(self) -> bool:
        if self.pending is None:
            raise DirectiveError("There is no pending change to confirm.")
        directive, self.pending = self.pending, None
        return apply_directive(self.ledger, directive)

    def reject_pending(self) -> None:
        self.pending = None


def build_session(settings: Settings, store: KeyValueStore) -> StatementSession:
    primary = DeepSeekClient(
        settings.deepseek_api_key,
        model=settings.deepseek_model,
        base_url=settings.deepseek_base_url,
        timeout=settings.provider_timeout_seconds,
    )
    fallback = GeminiClient(settings.gemini_api_key, model=settings.gemini_model)
    return StatementSession(StatementAgent(primary, fallback), ChatAssistant(primary, fallback), store)
