# tests/test_provider_openai.py
from __future__ import annotations

import json

import httpx
import pytest
import respx
from httpx import Response

from chatrelay.core.errors import ProviderError
from chatrelay.providers.base import ChatArgs, Completion
from chatrelay.providers.openai_compatible import OpenAICompatibleProvider, get_llm_provider
from chatrelay.relay.chunks import UsageReport
from conftest import delta, sse_body

BASE = "http://llm.test"


def _provider(**kw) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(BASE, "test-model", **kw)


async def _drain(provider, args):
    return [c async for c in provider.stream_chat(args)]


@pytest.mark.asyncio
@respx.mock
async def test_stream_chat_normalizes_sse_payloads() -> None:
    route = respx.post(f"{BASE}/v1/chat/completions").mock(
        return_value=Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            text=sse_body(
                delta("Hel"),
                delta("lo"),
                delta(finish_reason="stop"),
                {"choices": [], "usage": {"prompt_tokens": 9, "completion_tokens": 2}},
            ),
        )
    )
    chunks = await _drain(_provider(api_key="sk-test"), ChatArgs(prompt="hi", system_prompt="sys"))

    assert [c.content for c in chunks] == ["Hel", "lo", None, None]
    assert chunks[2].is_terminal
    assert chunks[3].usage == UsageReport(9, 2)

    sent = json.loads(route.calls.last.request.content)
    assert sent["stream"] is True
    assert sent["stream_options"] == {"include_usage": True}
    assert sent["messages"][0] == {"role": "system", "content": "sys"}
    assert sent["messages"][-1] == {"role": "user", "content": "hi"}
    assert route.calls.last.request.headers["Authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
@respx.mock
async def test_stream_chat_falls_back_to_text_completions_on_404() -> None:
    respx.post(f"{BASE}/v1/chat/completions").mock(return_value=Response(404, text="no such route"))
    legacy = respx.post(f"{BASE}/v1/completions").mock(
        return_value=Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            text=sse_body({"choices": [{"text": "ok", "finish_reason": "stop"}]}),
        )
    )
    chunks = await _drain(_provider(), ChatArgs(prompt="hi"))
    assert [c.content for c in chunks] == ["ok"]
    assert legacy.called
    assert "prompt" in json.loads(legacy.calls.last.request.content)


@pytest.mark.asyncio
@respx.mock
async def test_stream_chat_http_error_becomes_provider_error() -> None:
    respx.post(f"{BASE}/v1/chat/completions").mock(return_value=Response(500, text="kaput"))
    with pytest.raises(ProviderError) as exc:
        await _drain(_provider(), ChatArgs(prompt="hi"))
    assert "LLM provider error 500" in str(exc.value)
    assert "kaput" in str(exc.value)


@pytest.mark.asyncio
@respx.mock
async def test_unreachable_provider_is_described() -> None:
    respx.post(f"{BASE}/v1/chat/completions").mock(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(ProviderError) as exc:
        await _drain(_provider(), ChatArgs(prompt="hi"))
    assert str(exc.value).startswith("Failed to reach LLM provider")


@pytest.mark.asyncio
@respx.mock
async def test_chat_sync_reads_chat_completion_envelope() -> None:
    respx.post(f"{BASE}/v1/chat/completions").mock(
        return_value=Response(
            200,
            json={
                "choices": [{"message": {"role": "assistant", "content": "Hello!"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 5, "completion_tokens": 2},
            },
        )
    )
    result = await _provider().chat_sync(ChatArgs(prompt="hi"))
    assert result.text == "Hello!"
    assert result.usage == UsageReport(5, 2)


@pytest.mark.asyncio
@respx.mock
async def test_chat_sync_falls_back_on_404() -> None:
    respx.post(f"{BASE}/v1/chat/completions").mock(return_value=Response(404))
    respx.post(f"{BASE}/v1/completions").mock(return_value=Response(200, json={"choices": [{"text": "legacy"}]}))
    assert (await _provider().chat_sync(ChatArgs(prompt="hi"))).text == "legacy"


def test_completion_normalizes_raw_text_payload() -> None:
    c = Completion.from_payload({"text": "plain"})
    assert c.text == "plain"
    assert c.finish_reason == "stop"
    assert c.usage is None


def test_image_attachments_become_multimodal_parts() -> None:
    args = ChatArgs(
        prompt="what is this",
        history=[{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}],
        attachments=[
            {"name": "cat.png", "mime": "image/png", "contentString": "data:image/png;base64,AAAA"},
            {"name": "notes.txt", "mime": "text/plain", "contentString": "ignored"},
        ],
    )
    msgs = args.messages()
    assert [m["role"] for m in msgs] == ["user", "assistant", "user"]
    parts = msgs[-1]["content"]
    assert parts[0] == {"type": "text", "text": "what is this"}
    assert parts[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}
    assert len(parts) == 2


def test_factory_uses_settings_defaults() -> None:
    provider = get_llm_provider()
    assert provider.base_url == BASE
    assert provider.model == "test-model"
    assert provider.name == "openai"
    assert get_llm_provider("lmstudio", "other").model == "other"
