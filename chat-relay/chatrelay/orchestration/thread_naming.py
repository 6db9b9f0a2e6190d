# chatrelay/orchestration/thread_naming.py
from __future__ import annotations

from typing import Awaitable, Callable, Optional

from chatrelay.storage import repo
from chatrelay.storage.models import WorkspaceThread

DEFAULT_THREAD_NAME = "Thread"


async def auto_rename_thread(
    thread: Optional[WorkspaceThread],
    *,
    new_name: str,
    on_rename: Callable[[WorkspaceThread], Awaitable[None]],
) -> bool:
    """Name a fresh thread after its first message.

    Only threads still carrying the default name and holding exactly one chat
    are renamed.
    """
    if thread is None or thread.name != DEFAULT_THREAD_NAME or not new_name:
        return False
    if repo.count_thread_chats(thread.id) != 1:
        return False
    updated = repo.rename_thread(thread.id, new_name)
    if updated is None:
        return False
    await on_rename(updated)
    return True
