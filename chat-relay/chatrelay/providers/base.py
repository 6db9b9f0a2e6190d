# chatrelay/providers/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

from chatrelay.relay.chunks import StreamChunk, UsageReport


@dataclass
class ChatArgs:
    prompt: str
    system_prompt: Optional[str] = None
    history: List[Dict[str, str]] = field(default_factory=list)
    temperature: float = 0.7
    attachments: List[Dict[str, Any]] = field(default_factory=list)

    def _user_content(self) -> Union[str, List[Dict[str, Any]]]:
        images = [
            a for a in self.attachments
            if str(a.get("mime", "")).startswith("image/") and a.get("contentString")
        ]
        if not images:
            return self.prompt
        parts: List[Dict[str, Any]] = [{"type": "text", "text": self.prompt}]
        for a in images:
            parts.append({"type": "image_url", "image_url": {"url": a["contentString"]}})
        return parts

    def messages(self) -> List[Dict[str, Any]]:
        msgs: List[Dict[str, Any]] = []
        if self.system_prompt:
            msgs.append({"role": "system", "content": self.system_prompt})
        msgs.extend({"role": m["role"], "content": m["content"]} for m in self.history)
        msgs.append({"role": "user", "content": self._user_content()})
        return msgs


def content_text(content: Any) -> str:
    """Plain text of a message content (string or list of typed parts)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(p.get("text", "") for p in content if isinstance(p, dict) and p.get("type") == "text")
    return ""


@dataclass
class Completion:
    """Canonical non-streaming result, whatever shape the provider answered in."""

    text: str
    finish_reason: Optional[str] = "stop"
    usage: Optional[UsageReport] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Completion":
        choices = data.get("choices") or []
        choice = (choices[0] or {}) if choices else {}
        text = (choice.get("message") or {}).get("content")
        if not isinstance(text, str) or not text:
            text = choice.get("text")
        if not isinstance(text, str) or not text:
            text = data.get("text")
        return cls(
            text=text if isinstance(text, str) else "",
            finish_reason=choice.get("finish_reason") or "stop",
            usage=UsageReport.from_payload(data.get("usage")),
            raw=data,
        )


class ChatProvider(Protocol):
    name: str
    model: str

    def stream_chat(self, args: ChatArgs) -> AsyncIterator[StreamChunk]:
        """Open the upstream stream; iteration yields normalized chunks."""
        ...

    async def chat_sync(self, args: ChatArgs) -> Completion:
        ...
