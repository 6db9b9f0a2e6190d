# chatrelay/providers/openai_compatible.py
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from chatrelay.core.errors import ProviderError
from chatrelay.core.settings import get_settings
from chatrelay.providers.base import ChatArgs, Completion, content_text
from chatrelay.relay.chunks import StreamChunk

log = logging.getLogger("app.provider")


def describe_http_error(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code if exc.response is not None else 0
        try:
            detail = exc.response.text if exc.response is not None else str(exc)
        except httpx.ResponseNotRead:
            detail = str(exc)
        return f"LLM provider error {status}: {detail}"
    if isinstance(exc, httpx.RequestError):
        return f"Failed to reach LLM provider: {exc}"
    return str(exc)


def _parse_sse_line(line: str) -> Optional[str]:
    if line.startswith("data: "):
        return line[len("data: "):]
    if line.startswith("data:"):
        return line[len("data:"):].lstrip()
    return None


class OpenAICompatibleProvider:
    """Chat provider speaking the OpenAI HTTP API (OpenAI, LM Studio, vLLM, ...).

    Tries /v1/chat/completions and falls back to /v1/completions when the
    server answers 404 for the chat route.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        name: str = "openai",
        api_key: Optional[str] = None,
        timeout: float = 60.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.name = name
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    def _payloads(self, args: ChatArgs, stream: bool) -> tuple[Dict[str, Any], Dict[str, Any]]:
        messages = args.messages()
        chat: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": args.temperature,
        }
        comp: Dict[str, Any] = {
            "model": self.model,
            "prompt": "\n".join(content_text(m["content"]) for m in messages),
            "temperature": args.temperature,
        }
        if stream:
            chat["stream"] = True
            chat["stream_options"] = {"include_usage": True}
            comp["stream"] = True
        return chat, comp

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers()) as client:
            return await client.post(url, json=payload)

    async def chat_sync(self, args: ChatArgs) -> Completion:
        payload_chat, payload_comp = self._payloads(args, stream=False)
        log.info("provider.chat_sync start: model=%s", self.model)
        try:
            resp = await self._post_json(f"{self.base_url}/v1/chat/completions", payload_chat)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            if e.response is None or e.response.status_code != 404:
                raise ProviderError(describe_http_error(e)) from e
            try:
                resp = await self._post_json(f"{self.base_url}/v1/completions", payload_comp)
                resp.raise_for_status()
                data = resp.json()
            except httpx.HTTPError as e2:
                raise ProviderError(describe_http_error(e2)) from e2
        except httpx.RequestError as e:
            raise ProviderError(describe_http_error(e)) from e
        return Completion.from_payload(data)

    async def _stream_lines(self, url: str, payload: Dict[str, Any]) -> AsyncIterator[StreamChunk]:
        async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers()) as client:
            async with client.stream("POST", url, json=payload) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    if not line:
                        continue
                    data_str = _parse_sse_line(line)
                    if data_str is None:
                        continue
                    if data_str.strip() == "[DONE]":
                        break
                    try:
                        obj = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(obj, dict):
                        continue
                    chunk = StreamChunk.from_payload(obj)
                    if chunk.content is None and chunk.finish_reason is None and chunk.usage is None:
                        continue
                    yield chunk

    async def stream_chat(self, args: ChatArgs) -> AsyncIterator[StreamChunk]:
        payload_chat, payload_comp = self._payloads(args, stream=True)
        log.info("provider.stream_chat start: model=%s", self.model)
        try:
            async for chunk in self._stream_lines(f"{self.base_url}/v1/chat/completions", payload_chat):
                yield chunk
        except httpx.HTTPStatusError as e:
            if e.response is None or e.response.status_code != 404:
                raise ProviderError(describe_http_error(e)) from e
            try:
                async for chunk in self._stream_lines(f"{self.base_url}/v1/completions", payload_comp):
                    yield chunk
            except httpx.HTTPError as e2:
                raise ProviderError(describe_http_error(e2)) from e2
        except httpx.RequestError as e:
            raise ProviderError(describe_http_error(e)) from e


def get_llm_provider(provider: Optional[str] = None, model: Optional[str] = None) -> OpenAICompatibleProvider:
    settings = get_settings()
    if not settings.llm_base_url:
        raise RuntimeError("LLM_BASE_URL is not configured")
    return OpenAICompatibleProvider(
        base_url=str(settings.llm_base_url),
        model=model or settings.default_chat_model,
        name=provider or settings.llm_provider,
        api_key=settings.llm_api_key,
        timeout=settings.llm_timeout_sec,
    )
