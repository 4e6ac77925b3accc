import logging
import time
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

from statement_ledger.config import get_settings

settings = get_settings()
logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger("statement_ledger_app")

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from statement_ledger.exceptions import DirectiveError, ExtractionError, LedgerError, StatementLedgerError
from statement_ledger.models.schemas import (
    ChatRequest,
    ChatResponse,
    ExtractResponse,
    FieldUpdateRequest,
    FileBlob,
    LedgerResponse,
    OpeningBalanceRequest,
    RawTextRequest,
    SessionResponse,
)
from statement_ledger.services.csv_export import ledger_to_csv
from statement_ledger.services.statement_session import StatementSession, build_session
from statement_ledger.store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    create_session_id,
    get_session,
    set_session,
)

app = FastAPI(title="Bank Statement Ledger")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


def _session_store(session_id: str) -> KeyValueStore:
    if settings.store_dir:
        return JsonFileKeyValueStore(Path(settings.store_dir) / f"{session_id}.json")
    return InMemoryKeyValueStore()


def _get_session(session_id: str) -> StatementSession:
    session = get_session(session_id)
    if session is None:
        raise HTTPException(404, "Session not found")
    return session


def _ledger_response(session: StatementSession) -> LedgerResponse:
    if not session.ledger.is_loaded:
        raise HTTPException(404, "No statement has been processed in this session yet")
    return LedgerResponse(
        report=session.ledger.current,
        reconciliation=session.reconciliation(),
        history_length=session.ledger.history_length,
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/sessions", response_model=SessionResponse)
def create_session():
    session_id = create_session_id()
    set_session(session_id, build_session(settings, _session_store(session_id)))
    logger.info("create_session: session_id=%s", session_id)
    return SessionResponse(session_id=session_id)


@app.post("/api/sessions/{session_id}/extract", response_model=ExtractResponse)
async def extract(session_id: str, files: list[UploadFile] = File(...)):
    session = _get_session(session_id)
    t0 = time.perf_counter()
    blobs = []
    for upload in files:
        content = await upload.read()
        if len(content) > settings.max_file_size:
            raise HTTPException(400, f"File too large: {upload.filename}")
        blobs.append(FileBlob(filename=upload.filename or "statement", media_type=upload.content_type or "", content=content))
    logger.info("extract: %d files read (%.2f s)", len(blobs), time.perf_counter() - t0)
    try:
        content = await session.extract(blobs)
    except ExtractionError as e:
        raise HTTPException(422, f"Extraction failed: {e}")
    except StatementLedgerError as e:
        raise HTTPException(502, f"Text recognition failed: {e}")
    logger.info("extract: session_id=%s done, total=%.2f s", session_id, time.perf_counter() - t0)
    return ExtractResponse(raw_text=session.raw_text, file_name=session.file_name, image_count=len(content.images))


@app.put("/api/sessions/{session_id}/raw-text", response_model=ExtractResponse)
def replace_raw_text(session_id: str, body: RawTextRequest):
    session = _get_session(session_id)
    session.raw_text = body.text
    if body.file_name is not None:
        session.file_name = body.file_name
    return ExtractResponse(raw_text=session.raw_text, file_name=session.file_name, image_count=0)


@app.post("/api/sessions/{session_id}/reset", response_model=ExtractResponse)
def reset_session(session_id: str):
    session = _get_session(session_id)
    session.reset()
    return ExtractResponse(raw_text=session.raw_text, file_name=session.file_name, image_count=0)


@app.post("/api/sessions/{session_id}/process", response_model=LedgerResponse)
async def process(session_id: str, body: Optional[RawTextRequest] = None):
    session = _get_session(session_id)
    t0 = time.perf_counter()
    try:
        await session.submit(body.text if body else None)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except StatementLedgerError as e:
        raise HTTPException(502, f"Failed to process statement with AI: {e}")
    logger.info("process: session_id=%s, total=%.2f s", session_id, time.perf_counter() - t0)
    return _ledger_response(session)


@app.get("/api/sessions/{session_id}/ledger", response_model=LedgerResponse)
def get_ledger(session_id: str):
    return _ledger_response(_get_session(session_id))


@app.patch("/api/sessions/{session_id}/transactions", response_model=LedgerResponse)
def update_transaction(session_id: str, body: FieldUpdateRequest):
    session = _get_session(session_id)
    try:
        session.edit(body.update)
    except LedgerError as e:
        raise HTTPException(400, str(e))
    return _ledger_response(session)


@app.put("/api/sessions/{session_id}/opening-balance", response_model=LedgerResponse)
def update_opening_balance(session_id: str, body: OpeningBalanceRequest):
    session = _get_session(session_id)
    try:
        session.set_opening_balance(body.value)
    except LedgerError as e:
        raise HTTPException(400, str(e))
    return _ledger_response(session)


@app.post("/api/sessions/{session_id}/undo", response_model=LedgerResponse)
def undo(session_id: str):
    session = _get_session(session_id)
    session.undo()
    return _ledger_response(session)


@app.post("/api/sessions/{session_id}/chat", response_model=ChatResponse)
async def chat(session_id: str, body: ChatRequest):
    session = _get_session(session_id)
    t0 = time.perf_counter()
    directive = await session.chat(body.message, body.image)
    logger.info("chat: session_id=%s, action=%s (%.2f s)", session_id, directive.action, time.perf_counter() - t0)
    return ChatResponse(
        directive=directive,
        pending=session.pending is not None,
        ledger=_ledger_response(session) if session.ledger.is_loaded else None,
    )


@app.post("/api/sessions/{session_id}/chat/confirm", response_model=LedgerResponse)
def confirm_chat_change(session_id: str):
    session = _get_session(session_id)
    try:
        session.confirm_pending()
    except (DirectiveError, LedgerError) as e:
        raise HTTPException(400, str(e))
    return _ledger_response(session)


@app.post("/api/sessions/{session_id}/chat/reject")
def reject_chat_change(session_id: str):
    _get_session(session_id).reject_pending()
    return {"pending": False}


@app.get("/api/sessions/{session_id}/csv")
def download_csv(session_id: str):
    session = _get_session(session_id)
    view = _ledger_response(session)
    return Response(
        content=ledger_to_csv(view.report, view.reconciliation),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="ledger.csv"'},
    )
