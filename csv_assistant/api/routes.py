import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional
from fastapi import APIRouter, UploadFile, File, HTTPException, Request
from pydantic import BaseModel, Field
from slowapi.errors import RateLimitExceeded
from csv_assistant.core.cache import SimpleCache
from csv_assistant.core.config import get_settings
from csv_assistant.core.errors import (
    AIUnavailableError, AssistantError, CardNotFoundError, ErrorCodes, SessionNotFoundError, TransportError,
    get_error_response,
)
from csv_assistant.core.sanitization import sanitize_filename, sanitize_for_logging
from csv_assistant.core.schemas import ClarificationOption, SessionSnapshot
from csv_assistant.core.storage import get_session_store
from csv_assistant.services.aggregation import display_rows
from csv_assistant.services.orchestrator import ChatOrchestrator
from csv_assistant.services.parser import parse_file

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS = {
    SessionNotFoundError: 404,
    CardNotFoundError: 404,
    AIUnavailableError: 503,
    TransportError: 502,
}


class LiveSession(NamedTuple):
    orchestrator: ChatOrchestrator
    lock: asyncio.Lock


# Bounded LRU of live orchestrators; evicted sessions are restored from the store
_live: Optional[SimpleCache] = None


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)


class FilterRequest(BaseModel):
    query: str = Field(min_length=1, max_length=1000)


def live_sessions() -> SimpleCache:
    global _live
    if _live is None:
        settings = get_settings()
        _live = SimpleCache(default_ttl=settings.session_ttl_seconds, max_entries=settings.max_live_sessions)
    return _live


def reset_sessions() -> None:
    """Forget live orchestrators (for testing)."""
    global _live
    _live = None


def _track(orchestrator: ChatOrchestrator) -> LiveSession:
    live = LiveSession(orchestrator, asyncio.Lock())
    live_sessions().set(orchestrator.session_id, live)
    return live


def _live_session(session_id: str) -> LiveSession:
    """
    Return the live session, restoring it from the store.

    Raises:
        SessionNotFoundError: unknown or expired session
    """
    live = live_sessions().get(session_id)
    if live is not None:
        return live

    payload = get_session_store().get(session_id)
    if payload is None:
        raise SessionNotFoundError(f"Session {session_id} not found")
    live = _track(ChatOrchestrator.restore(SessionSnapshot.model_validate(payload)))
    logger.info(f"Restored session {session_id} from store")
    return live


def get_orchestrator(session_id: str) -> ChatOrchestrator:
    return _live_session(session_id).orchestrator


def _http_error(request: Request, error: AssistantError) -> HTTPException:
    correlation_id = getattr(request.state, 'correlation_id', 'unknown')
    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(error, cls)), 422)
    error_info = get_error_response(error.code, str(error))
    error_info['correlation_id'] = correlation_id
    return HTTPException(status_code=status_code, detail=error_info)


def session_payload(orchestrator: ChatOrchestrator) -> Dict[str, Any]:
    """Snapshot plus transient UI events, which are drained on read."""
    events, orchestrator.ui_events = orchestrator.ui_events, []
    return {
        'session': orchestrator.snapshot().model_dump(mode='json', exclude={'rows', 'memory_documents'}),
        'row_count': len(orchestrator.state.rows),
        'events': events,
    }


async def _rate_limited(request: Request, handler: Callable[[], Awaitable[Any]]) -> Any:
    """Apply the per-IP limit configured on the app to one call of handler."""
    limiter = request.app.state.limiter
    app_settings = request.app.state.settings

    @limiter.limit(f"{app_settings.rate_limit_per_minute}/minute")
    async def _rate_limited_handler(request: Request):
        return await handler()

    return await _rate_limited_handler(request)


@router.get("/health")
async def health_check():
    return {"status": "ok"}


async def _check_file_size_streaming(file: UploadFile) -> int:
    """Read the upload in chunks, stopping early once it exceeds the limit."""
    limit = get_settings().max_file_size_bytes
    file_size = 0
    chunk_size = 1024 * 1024

    await file.seek(0)
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        file_size += len(chunk)
        if file_size > limit:
            break

    await file.seek(0)
    return file_size


async def _create_session(file: UploadFile, request: Request) -> Dict[str, Any]:
    settings = get_settings()
    safe_filename = sanitize_filename(file.filename) if file.filename else 'unknown'

    file_size = await _check_file_size_streaming(file)
    if file_size > settings.max_file_size_bytes:
        error_info = get_error_response(
            ErrorCodes.FILE_TOO_LARGE, f"Maximum allowed size is {settings.max_file_size_mb}MB."
        )
        raise HTTPException(status_code=413, detail=error_info)

    rows = await parse_file(file)
    live = _track(ChatOrchestrator())
    orchestrator = live.orchestrator
    logger.info(f"Created session {orchestrator.session_id} for {sanitize_for_logging(safe_filename)}")

    async with live.lock:
        try:
            await orchestrator.load_dataset(rows, filename=safe_filename)
        except AssistantError as e:
            raise _http_error(request, e)
    return session_payload(orchestrator)


@router.post("/sessions")
async def create_session(request: Request, file: UploadFile = File(...)):
    """
    Upload a CSV or Excel file and run the initial analysis.

    Rate limited per IP address (configurable).
    """
    try:
        return await _rate_limited(request, lambda: _create_session(file, request))
    except (HTTPException, RateLimitExceeded):
        raise
    except Exception as e:
        correlation_id = getattr(request.state, 'correlation_id', 'unknown')
        logger.error(f"Unexpected error creating session: {e}", exc_info=True)
        error_info = get_error_response(ErrorCodes.UNKNOWN_ERROR)
        error_info['correlation_id'] = correlation_id
        raise HTTPException(status_code=500, detail=error_info)


@router.get("/sessions/{session_id}")
async def get_session(request: Request, session_id: str):
    try:
        return session_payload(get_orchestrator(session_id))
    except AssistantError as e:
        raise _http_error(request, e)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    live_sessions().delete(session_id)
    deleted = get_session_store().delete(session_id)
    return {"deleted": deleted}


@router.get("/sessions/{session_id}/rows")
async def get_rows(request: Request, session_id: str):
    try:
        orchestrator = get_orchestrator(session_id)
        rows = orchestrator.filtered_rows()
    except AssistantError as e:
        raise _http_error(request, e)
    return {"rows": rows, "total": len(orchestrator.state.rows), "filtered": len(rows)}


@router.get("/sessions/{session_id}/cards/{card_id}")
async def get_card(request: Request, session_id: str, card_id: str):
    """A card with the rows it renders after its filter and Top-N settings."""
    try:
        card = get_orchestrator(session_id).find_card(card_id)
        if card is None:
            raise CardNotFoundError(f"Card {card_id} not found")
    except AssistantError as e:
        raise _http_error(request, e)
    return {"card": card.model_dump(mode='json'), "display_data": display_rows(card)}


@router.post("/sessions/{session_id}/chat")
async def chat(request: Request, session_id: str, body: ChatRequest):
    """Run one ReAct turn for the message. Turns in a session are serialized."""
    async def _turn():
        live = _live_session(session_id)
        async with live.lock:
            result = await live.orchestrator.submit_user_message(body.message)
        return {'result': result.model_dump(), **session_payload(live.orchestrator)}

    try:
        return await _rate_limited(request, _turn)
    except AssistantError as e:
        raise _http_error(request, e)


@router.post("/sessions/{session_id}/clarification")
async def answer_clarification(request: Request, session_id: str, option: ClarificationOption):
    try:
        live = _live_session(session_id)
    except AssistantError as e:
        raise _http_error(request, e)

    async with live.lock:
        result = await live.orchestrator.submit_clarification_response(option)
    return {'result': result.model_dump(), **session_payload(live.orchestrator)}


@router.post("/sessions/{session_id}/filter")
async def apply_filter(request: Request, session_id: str, body: FilterRequest):
    try:
        live = _live_session(session_id)
    except AssistantError as e:
        raise _http_error(request, e)

    async with live.lock:
        spreadsheet_filter = await live.orchestrator.handle_natural_language_query(body.query)
    return {
        'filter': spreadsheet_filter.model_dump(by_alias=True) if spreadsheet_filter else None,
        **session_payload(live.orchestrator),
    }


@router.delete("/sessions/{session_id}/filter")
async def clear_filter(request: Request, session_id: str):
    try:
        live = _live_session(session_id)
    except AssistantError as e:
        raise _http_error(request, e)

    async with live.lock:
        live.orchestrator.clear_ai_filter()
    return session_payload(live.orchestrator)
