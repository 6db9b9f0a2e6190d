# chatrelay/orchestration/completion.py
from __future__ import annotations

import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from chatrelay.core.errors import ChatValidationError, QuotaExceededError, TransportClosedError
from chatrelay.core.metrics import CHATS_SENT
from chatrelay.core.settings import AppSettings
from chatrelay.history.formatter import to_prompt_history
from chatrelay.history.records import ChatRecord
from chatrelay.orchestration.event_log import EventLogger
from chatrelay.orchestration.thread_naming import auto_rename_thread
from chatrelay.providers.base import ChatArgs, ChatProvider, Completion
from chatrelay.providers.openai_compatible import get_llm_provider
from chatrelay.relay.events import abort_event, rename_thread_event
from chatrelay.relay.monitor import StreamMeasurement
from chatrelay.relay.stream_relay import StreamRelay
from chatrelay.relay.transport import Transport
from chatrelay.relay.writer import write_response_chunk
from chatrelay.storage import repo
from chatrelay.storage.models import User, Workspace, WorkspaceThread
from chatrelay.utils.text import truncate
from chatrelay.utils.tokens import approx_tokens, approx_tokens_messages

log = logging.getLogger("app.chat")

ProviderFactory = Callable[[Optional[str], Optional[str]], ChatProvider]


@dataclass
class WorkspaceChatRequest:
    workspace: Workspace
    message: str
    user: Optional[User] = None
    thread: Optional[WorkspaceThread] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)


def split_openai_messages(messages: List[Dict[str, Any]]) -> Tuple[Optional[str], List[Dict[str, str]], str]:
    """OpenAI-style message list -> (system prompt, prior history, current prompt).

    The last message is the prompt; system messages are not part of history.
    """
    if not messages:
        raise ChatValidationError("Message is empty.")
    *earlier, last = messages
    prompt = last.get("content") if isinstance(last, dict) else None
    if not isinstance(prompt, str) or not prompt.strip():
        raise ChatValidationError("Message is empty.")
    system_prompt = next(
        (m.get("content") for m in earlier if m.get("role") == "system" and isinstance(m.get("content"), str)),
        None,
    )
    history = [
        {"role": m["role"], "content": m["content"]}
        for m in earlier
        if m.get("role") in ("user", "assistant") and isinstance(m.get("content"), str)
    ]
    return system_prompt, history, prompt


class CompletionOrchestrator:
    """Binds one chat request to a provider and the surrounding collaborators.

    Collaborators are injected: settings, the event logger and a provider
    factory `(provider_name, model) -> ChatProvider`.
    """

    def __init__(
        self,
        settings: AppSettings,
        event_logger: EventLogger,
        provider_factory: ProviderFactory = get_llm_provider,
    ) -> None:
        self.settings = settings
        self.event_logger = event_logger
        self.provider_factory = provider_factory

    # helpers

    def provider_for(self, workspace: Workspace) -> ChatProvider:
        return self.provider_factory(workspace.chat_provider, workspace.chat_model)

    def system_prompt_for(self, workspace: Workspace) -> str:
        return workspace.system_prompt or self.settings.default_system_prompt

    def temperature_for(self, workspace: Workspace, requested: Optional[float] = None) -> float:
        if requested is not None:
            return float(requested)
        if workspace.temperature is not None:
            return float(workspace.temperature)
        return self.settings.default_temperature

    def _history_for(self, workspace: Workspace, thread: Optional[WorkspaceThread], user: Optional[User]) -> List[Dict[str, str]]:
        rows = repo.recent_chats(
            workspace.id,
            thread_id=thread.id if thread else None,
            user_id=user.id if user else None,
            limit=workspace.history_count or self.settings.default_history_count,
        )
        return to_prompt_history(ChatRecord.from_row(r) for r in rows)

    async def _abort(self, transport: Transport, message: str) -> None:
        if transport.closed:
            return
        with contextlib.suppress(TransportClosedError):
            await write_response_chunk(transport, abort_event(message))

    async def _relay(self, provider: ChatProvider, args: ChatArgs, transport: Transport) -> StreamRelay:
        relay = StreamRelay(
            transport,
            measurement=StreamMeasurement(provider.name, provider.model),
            event_sink=self.event_logger,
            usage_policy=self.settings.usage_completion_policy,
            prompt_tokens=approx_tokens_messages(args.messages()),
        )
        await relay.run(provider.stream_chat(args), sources=[])
        return relay

    def _count_chat(self, endpoint: str, provider: str, attachments: List[Dict[str, Any]]) -> None:
        CHATS_SENT.labels(
            endpoint=endpoint,
            multi_user_mode=str(self.settings.multi_user_mode).lower(),
            llm_provider=provider,
            multimodal=str(bool(attachments)).lower(),
        ).inc()

    # sync mode

    async def chat_sync(
        self,
        workspace: Workspace,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        request_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        system_prompt, history, prompt = split_openai_messages(messages)
        provider = self.provider_for(workspace)
        args = ChatArgs(
            prompt=prompt,
            system_prompt=system_prompt or self.system_prompt_for(workspace),
            history=history,
            temperature=self.temperature_for(workspace, temperature),
        )
        await self.event_logger.log_event(
            "llm_request",
            {"provider": provider.name, "model": provider.model, "workspace": workspace.name, "history": len(history)},
        )
        try:
            completion = await provider.chat_sync(args)
        except Exception as exc:
            log.error("chat_sync failed: %s", exc)
            await self.event_logger.log_event(
                "error", {"errorMessage": str(exc), "kind": exc.__class__.__name__, "input": request_body}
            )
            raise

        usage = self._completion_usage(args, completion)
        await self.event_logger.log_event(
            "llm_response",
            {"provider": provider.name, "model": provider.model, "output": completion.text, "tokensUsed": usage},
        )
        repo.new_chat(workspace.id, prompt, {"text": completion.text, "sources": [], "type": "chat", "metrics": usage})
        self._count_chat("openai", provider.name, [])
        return {
            "id": f"chatcmpl-{uuid4().hex}",
            "object": "chat.completion",
            "created": int(time.time()),
            "model": workspace.slug,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": completion.text},
                    "finish_reason": completion.finish_reason,
                }
            ],
            "usage": usage,
        }

    def _completion_usage(self, args: ChatArgs, completion: Completion) -> Dict[str, int]:
        report = completion.usage
        prompt = report.prompt_tokens if report and report.prompt_tokens is not None else approx_tokens_messages(args.messages())
        output = (
            report.completion_tokens
            if report and report.completion_tokens is not None
            else approx_tokens(completion.text)
        )
        return {"prompt_tokens": prompt, "completion_tokens": output, "total_tokens": prompt + output}

    # streaming mode

    async def stream_openai(
        self,
        workspace: Workspace,
        messages: List[Dict[str, Any]],
        transport: Transport,
        temperature: Optional[float] = None,
        request_body: Optional[Dict[str, Any]] = None,
    ) -> None:
        relay: Optional[StreamRelay] = None
        try:
            system_prompt, history, prompt = split_openai_messages(messages)
            provider = self.provider_for(workspace)
            args = ChatArgs(
                prompt=prompt,
                system_prompt=system_prompt or self.system_prompt_for(workspace),
                history=history,
                temperature=self.temperature_for(workspace, temperature),
            )
            await self.event_logger.log_event("stream_start", {"provider": provider.name, "model": provider.model})
            relay = await self._relay(provider, args, transport)
            if relay.full_text:
                repo.new_chat(
                    workspace.id,
                    prompt,
                    {"text": relay.full_text, "sources": [], "type": "chat", "metrics": relay.metrics},
                )
            self._count_chat("openai", provider.name, [])
            await self.event_logger.log_event(
                "stream_complete",
                {
                    "provider": provider.name,
                    "model": provider.model,
                    "state": relay.state.value,
                    "finalResponse": relay.full_text,
                    "usage": relay.metrics,
                },
            )
        except Exception as exc:  # noqa: BLE001
            await self._stream_failed(exc, transport, request_body, relay)
        finally:
            transport.close()

    async def stream_workspace_chat(
        self,
        req: WorkspaceChatRequest,
        transport: Transport,
        request_body: Optional[Dict[str, Any]] = None,
    ) -> None:
        workspace, user, thread = req.workspace, req.user, req.thread
        relay: Optional[StreamRelay] = None
        try:
            if self.settings.multi_user_mode and not repo.can_send_chat(user):
                raise QuotaExceededError(user.daily_message_limit if user else None)

            provider = self.provider_for(workspace)
            system_prompt = self.system_prompt_for(workspace)
            args = ChatArgs(
                prompt=req.message,
                system_prompt=system_prompt,
                history=self._history_for(workspace, thread, user),
                temperature=self.temperature_for(workspace),
                attachments=req.attachments,
            )
            relay = await self._relay(provider, args, transport)

            if relay.full_text:
                repo.new_chat(
                    workspace.id,
                    req.message,
                    {
                        "text": relay.full_text,
                        "sources": [],
                        "type": "chat",
                        "attachments": req.attachments,
                        "metrics": relay.metrics,
                    },
                    user_id=user.id if user else None,
                    thread_id=thread.id if thread else None,
                )

            if thread is not None:
                async def _announce(updated: WorkspaceThread) -> None:
                    if not transport.closed:
                        with contextlib.suppress(TransportClosedError):
                            await write_response_chunk(transport, rename_thread_event(updated.slug, updated.name))

                await auto_rename_thread(
                    thread,
                    new_name=truncate(req.message, self.settings.thread_name_max_chars),
                    on_rename=_announce,
                )

            self._count_chat("workspace", provider.name, req.attachments)
            details: Dict[str, Any] = {
                "workspaceName": workspace.name,
                "chatModel": workspace.chat_model or "System Default",
                "input": {"message": req.message, "attachments": len(req.attachments)},
                "output": "Chat sent successfully." if relay.state.value == "completed" else relay.state.value,
                "systemPrompt": system_prompt,
            }
            if thread is not None:
                details["thread"] = thread.name
            await self.event_logger.log_event("sent_chat", details, user.id if user else None)
        except QuotaExceededError as exc:
            log.info("chat quota exhausted", extra={"user_id": user.id if user else None})
            await self._abort(transport, str(exc))
        except Exception as exc:  # noqa: BLE001
            await self._stream_failed(exc, transport, request_body, relay)
        finally:
            transport.close()

    async def _stream_failed(
        self,
        exc: Exception,
        transport: Transport,
        request_body: Optional[Dict[str, Any]],
        relay: Optional[StreamRelay] = None,
    ) -> None:
        log.exception("stream chat failed: %s", exc)
        # at most one close=true event per stream
        if relay is None or not relay.done:
            await self._abort(transport, str(exc) or exc.__class__.__name__)
        await self.event_logger.log_event("error", {"errorMessage": str(exc), "input": request_body})
