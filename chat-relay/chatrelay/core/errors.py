# chatrelay/core/errors.py
from __future__ import annotations

from typing import Optional


class ChatRelayError(Exception):
    """Base class for errors raised by the relay and its collaborators."""


class ChatValidationError(ChatRelayError):
    """Request rejected before any upstream call (e.g. empty message)."""

    status_code = 400


class UnknownWorkspaceError(ChatRelayError):
    status_code = 404

    def __init__(self, slug: str) -> None:
        super().__init__(f"Workspace {slug!r} does not exist.")
        self.slug = slug


class QuotaExceededError(ChatRelayError):
    def __init__(self, limit: Optional[int]) -> None:
        super().__init__(
            f"You have met your maximum 24 hour chat quota of {limit} chats. Try again later."
        )
        self.limit = limit


class TransportClosedError(ChatRelayError):
    """The client side of a stream went away; writes can no longer be delivered."""


class ProviderError(ChatRelayError):
    """Upstream LLM call failed; message is safe to show to the client."""
