import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from chatrelay.chat.assistant import ChatAssistant, TurnResult, get_assistant
from chatrelay.chat.sse import sse_events, sse_single
from chatrelay.config import RELAY_CONFIG, SERVER_CONFIG
from chatrelay.utils.models import ChatRequest, ChatResponse, HistoryResponse, TranscriptData
from chatrelay.visitors.identity import read_visitor_token

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _require_prompt(prompt: Optional[str]) -> str:
    if not prompt or not prompt.strip():
        raise HTTPException(status_code=400, detail="Falta prompt")
    return prompt


def _resolve_session(request: Request, session_id: Optional[str]) -> Optional[str]:
    """Explicit session id, else the visitor id from the identity cookie."""
    if session_id:
        return session_id
    return read_visitor_token(request.cookies.get(SERVER_CONFIG["VISITOR_COOKIE_NAME"]))


def _stream_response(result: TurnResult) -> StreamingResponse:
    if result.is_streaming:
        body = sse_events(result.stream, heartbeat_interval=RELAY_CONFIG["HEARTBEAT_INTERVAL"])
    else:
        body = sse_single(result.reply)
    return StreamingResponse(body, media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/chat", response_model=ChatResponse)
async def chat(request: Request, body: ChatRequest, assistant: ChatAssistant = Depends(get_assistant)):
    """Answer a prompt in one JSON response."""
    prompt = _require_prompt(body.prompt)
    session_id = _resolve_session(request, body.session_id)
    logger.info("🟢 POST /chat from session %s", session_id or "anonymous")

    result = await run_in_threadpool(assistant.reply, prompt, session_id)
    return ChatResponse(reply=result.reply, source=result.source)


@router.post("/chat/stream")
async def chat_stream_post(request: Request, body: ChatRequest, assistant: ChatAssistant = Depends(get_assistant)):
    prompt = _require_prompt(body.prompt)
    session_id = _resolve_session(request, body.session_id)
    logger.info("📡 SSE (POST) from session %s", session_id or "anonymous")

    result = await run_in_threadpool(assistant.route, prompt, session_id)
    return _stream_response(result)


@router.get("/chat-stream")
async def chat_stream(
    request: Request,
    prompt: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    assistant: ChatAssistant = Depends(get_assistant),
):
    """Answer a prompt as an SSE stream ending with ``data: [END]``."""
    prompt = _require_prompt(prompt)
    session_id = _resolve_session(request, session_id)
    logger.info("📡 SSE started for session %s", session_id or "anonymous")

    result = await run_in_threadpool(assistant.route, prompt, session_id)
    return _stream_response(result)


@router.get("/history", response_model=HistoryResponse, response_model_by_alias=True)
async def get_history(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    assistant: ChatAssistant = Depends(get_assistant),
):
    """Stored transcripts, newest first, optionally for one session."""
    try:
        rows = await run_in_threadpool(assistant.transcripts.query_transcripts, session_id, limit, offset)
    except Exception as e:
        logger.exception("❌ Error fetching chat history")
        raise HTTPException(status_code=500, detail=f"Error fetching chat history: {e}")

    chats = [TranscriptData(**row) for row in rows]
    return HistoryResponse(chats=chats, count=len(chats))
