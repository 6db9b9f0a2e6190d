# apps/api/main.py

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from chatrelay.core.errors import ChatValidationError, UnknownWorkspaceError
from chatrelay.core.logging import configure_logging, request_logging_middleware
from chatrelay.core.settings import get_settings
from chatrelay.history.formatter import to_display_history
from chatrelay.history.records import ChatRecord
from chatrelay.orchestration.completion import CompletionOrchestrator, WorkspaceChatRequest, split_openai_messages
from chatrelay.orchestration.event_log import EventLogger
from chatrelay.relay.events import abort_event
from chatrelay.relay.transport import SSE_HEADERS, SSETransport
from chatrelay.storage import repo
from chatrelay.storage.models import User, Workspace, WorkspaceThread

settings = get_settings()
configure_logging(level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request/response logging middleware
app.middleware("http")(request_logging_middleware)


@app.exception_handler(UnknownWorkspaceError)
async def unknown_workspace_handler(request: Request, exc: UnknownWorkspaceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

EVENT_LOGGER = EventLogger(settings.event_log_path)
ORCHESTRATOR = CompletionOrchestrator(settings, EVENT_LOGGER)

# In-memory active streams registry; keeps orchestrator tasks referenced until done
ACTIVE_STREAMS: dict[str, asyncio.Task] = {}


class OpenAIChatRequest(BaseModel):
    model: str
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    temperature: Optional[float] = None
    stream: bool = False


class StreamChatIn(BaseModel):
    message: str = ""
    attachments: List[Dict[str, Any]] = Field(default_factory=list)


class FeedbackIn(BaseModel):
    feedback: Optional[float] = None


def _abort_body(message: str) -> Dict[str, Any]:
    return abort_event(message).to_wire()


def _require_api_key(request: Request) -> None:
    keys = settings.api_key_list
    if not keys:
        return
    auth = request.headers.get("authorization", "")
    token = auth[len("Bearer "):].strip() if auth.startswith("Bearer ") else ""
    if token not in keys:
        raise HTTPException(status_code=403, detail="Invalid API Key")


def _resolve_user(request: Request) -> Optional[User]:
    """Caller identity in multi-user mode (X-User-Id header); None otherwise."""
    if not settings.multi_user_mode:
        return None
    raw = request.headers.get("x-user-id")
    try:
        user = repo.get_user(int(raw)) if raw else None
    except ValueError:
        user = None
    if user is None or user.suspended:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def _workspace(slug: str) -> Workspace:
    ws = repo.get_workspace(slug)
    if ws is None:
        raise UnknownWorkspaceError(slug)
    return ws


def _thread_or_404(workspace: Workspace, thread_slug: str, user: Optional[User]) -> WorkspaceThread:
    th = repo.get_thread(workspace.id, thread_slug, user.id if user else None)
    if th is None:
        raise HTTPException(status_code=404, detail=f"Thread {thread_slug!r} does not exist.")
    return th


def _launch(coro_factory) -> StreamingResponse:
    """Run a producer against a fresh SSE transport and stream what it writes."""
    transport = SSETransport()
    stream_id = uuid4().hex
    task = asyncio.create_task(coro_factory(transport))
    ACTIVE_STREAMS[stream_id] = task
    task.add_done_callback(lambda _t: ACTIVE_STREAMS.pop(stream_id, None))
    return StreamingResponse(transport.frames(), headers=SSE_HEADERS, media_type="text/event-stream")


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/config")
async def config() -> JSONResponse:
    safe_config = {
        "app_name": settings.app_name,
        "env": settings.app_env,
        "db_dialect": settings.db_dialect,
        "log_level": settings.log_level,
        "provider": {
            "name": settings.llm_provider,
            "base_url": str(settings.llm_base_url) if settings.llm_base_url else None,
            "default_model": settings.default_chat_model,
        },
        "chat": {
            "default_temperature": settings.default_temperature,
            "default_history_count": settings.default_history_count,
            "thread_name_max_chars": settings.thread_name_max_chars,
            "usage_completion_policy": settings.usage_completion_policy,
        },
        "multi_user_mode": settings.multi_user_mode,
        "api_keys_required": bool(settings.api_key_list),
    }
    return JSONResponse(content=safe_config)


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# OpenAI-compatible API

@app.get("/v1/openai/models")
async def openai_models(request: Request) -> JSONResponse:
    _require_api_key(request)
    data = [
        {
            "name": ws.name,
            "model": ws.slug,
            "llm": {
                "provider": ws.chat_provider or settings.llm_provider,
                "model": ws.chat_model or settings.default_chat_model,
            },
        }
        for ws in repo.list_workspaces()
    ]
    return JSONResponse(content={"models": data})


@app.post("/v1/openai/chat/completions")
async def openai_chat_completions(request: Request, req: OpenAIChatRequest):
    _require_api_key(request)
    try:
        workspace = _workspace(req.model)
    except UnknownWorkspaceError as exc:
        # external OpenAI contract: unknown model slug is an auth failure
        return JSONResponse(
            status_code=401,
            content=_abort_body(f"{exc.slug} is not a valid workspace model slug."),
        )
    try:
        split_openai_messages(req.messages)
    except ChatValidationError as exc:
        return JSONResponse(status_code=exc.status_code, content=_abort_body(str(exc)))

    body = req.model_dump()
    if not req.stream:
        try:
            result = await ORCHESTRATOR.chat_sync(workspace, req.messages, req.temperature, body)
        except Exception:  # noqa: BLE001
            return Response(status_code=500)
        return JSONResponse(content=result)

    return _launch(
        lambda transport: ORCHESTRATOR.stream_openai(workspace, req.messages, transport, req.temperature, body)
    )


# Workspace chat API

def _stream_chat(request: Request, slug: str, payload: StreamChatIn, thread_slug: Optional[str] = None):
    user = _resolve_user(request)
    workspace = _workspace(slug)
    thread = _thread_or_404(workspace, thread_slug, user) if thread_slug else None
    if not payload.message.strip():
        return JSONResponse(status_code=400, content=_abort_body("Message is empty."))

    chat = WorkspaceChatRequest(
        workspace=workspace,
        message=payload.message,
        user=user,
        thread=thread,
        attachments=payload.attachments,
    )
    body = payload.model_dump()
    return _launch(lambda transport: ORCHESTRATOR.stream_workspace_chat(chat, transport, body))


@app.post("/workspace/{slug}/stream-chat")
async def workspace_stream_chat(request: Request, slug: str, payload: StreamChatIn):
    return _stream_chat(request, slug, payload)


@app.post("/workspace/{slug}/thread/{thread_slug}/stream-chat")
async def thread_stream_chat(request: Request, slug: str, thread_slug: str, payload: StreamChatIn):
    return _stream_chat(request, slug, payload, thread_slug)


def _history(request: Request, slug: str, thread_slug: Optional[str] = None) -> JSONResponse:
    user = _resolve_user(request)
    workspace = _workspace(slug)
    thread = _thread_or_404(workspace, thread_slug, user) if thread_slug else None
    rows = repo.recent_chats(
        workspace.id,
        thread_id=thread.id if thread else None,
        user_id=user.id if user else None,
        limit=None,
    )
    history = to_display_history(ChatRecord.from_row(r) for r in rows)
    return JSONResponse(content={"history": history})


@app.get("/workspace/{slug}/chats")
async def workspace_chats(request: Request, slug: str) -> JSONResponse:
    return _history(request, slug)


@app.get("/workspace/{slug}/thread/{thread_slug}/chats")
async def thread_chats(request: Request, slug: str, thread_slug: str) -> JSONResponse:
    return _history(request, slug, thread_slug)


@app.post("/workspace/{slug}/chat-feedback/{chat_id}")
async def chat_feedback(request: Request, slug: str, chat_id: int, payload: FeedbackIn) -> JSONResponse:
    _resolve_user(request)
    workspace = _workspace(slug)
    if not repo.update_feedback(chat_id, payload.feedback, workspace_id=workspace.id):
        raise HTTPException(status_code=404, detail="chat not found")
    return JSONResponse(content={"success": True})
