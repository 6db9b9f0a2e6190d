# chatrelay/storage/repo.py
from __future__ import annotations

import json
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select

from chatrelay.storage.database import session_scope
from chatrelay.storage.models import EventLog, User, Workspace, WorkspaceChat, WorkspaceThread, utcnow
from chatrelay.utils.text import slugify

__all__ = [
    "session_scope",
    "create_user",
    "get_user",
    "can_send_chat",
    "create_workspace",
    "get_workspace",
    "list_workspaces",
    "create_thread",
    "get_thread",
    "rename_thread",
    "count_thread_chats",
    "recent_chats",
    "new_chat",
    "update_feedback",
    "insert_event_log",
]


# Users

def create_user(username: str, role: str = "default", daily_message_limit: Optional[int] = None) -> User:
    user = User(username=username, role=role, daily_message_limit=daily_message_limit)
    with session_scope() as s:
        s.add(user)
        s.flush()
    return user


def get_user(user_id: int) -> Optional[User]:
    with session_scope() as s:
        return s.get(User, user_id)


def can_send_chat(user: Optional[User]) -> bool:
    """Rolling 24h quota; users without a limit are never blocked."""
    if user is None or user.daily_message_limit is None:
        return True
    since = utcnow() - timedelta(hours=24)
    with session_scope() as s:
        sent = s.scalar(
            select(func.count(WorkspaceChat.id)).where(
                WorkspaceChat.user_id == user.id,
                WorkspaceChat.created_at >= since,
            )
        )
    return int(sent or 0) < user.daily_message_limit


# Workspaces / threads

def create_workspace(name: str, slug: Optional[str] = None, **fields: Any) -> Workspace:
    ws = Workspace(name=name, slug=slug or slugify(name), **fields)
    with session_scope() as s:
        s.add(ws)
        s.flush()
    return ws


def get_workspace(slug: str) -> Optional[Workspace]:
    with session_scope() as s:
        return s.scalars(select(Workspace).where(Workspace.slug == slug)).first()


def list_workspaces() -> List[Workspace]:
    with session_scope() as s:
        return list(s.scalars(select(Workspace).order_by(Workspace.id.asc())))


def create_thread(workspace_id: int, user_id: Optional[int] = None, name: str = "Thread") -> WorkspaceThread:
    th = WorkspaceThread(workspace_id=workspace_id, user_id=user_id, slug=uuid.uuid4().hex, name=name)
    with session_scope() as s:
        s.add(th)
        s.flush()
    return th


def get_thread(workspace_id: int, slug: str, user_id: Optional[int] = None) -> Optional[WorkspaceThread]:
    with session_scope() as s:
        q = select(WorkspaceThread).where(
            WorkspaceThread.workspace_id == workspace_id,
            WorkspaceThread.slug == slug,
        )
        if user_id is not None:
            q = q.where(WorkspaceThread.user_id == user_id)
        return s.scalars(q).first()


def rename_thread(thread_id: int, name: str) -> Optional[WorkspaceThread]:
    with session_scope() as s:
        th = s.get(WorkspaceThread, thread_id)
        if th is None:
            return None
        th.name = name
        s.add(th)
    return th


def count_thread_chats(thread_id: int) -> int:
    with session_scope() as s:
        n = s.scalar(select(func.count(WorkspaceChat.id)).where(WorkspaceChat.thread_id == thread_id))
    return int(n or 0)


# Chats

def recent_chats(
    workspace_id: int,
    *,
    thread_id: Optional[int] = None,
    user_id: Optional[int] = None,
    limit: Optional[int] = 20,
) -> List[WorkspaceChat]:
    """Latest `limit` included chats of one conversation, oldest first.

    `thread_id=None` selects the workspace's default (thread-less) conversation.
    """
    with session_scope() as s:
        q = select(WorkspaceChat).where(
            WorkspaceChat.workspace_id == workspace_id,
            WorkspaceChat.include.is_(True),
        )
        if thread_id is None:
            q = q.where(WorkspaceChat.thread_id.is_(None))
        else:
            q = q.where(WorkspaceChat.thread_id == thread_id)
        if user_id is not None:
            q = q.where(WorkspaceChat.user_id == user_id)
        q = q.order_by(WorkspaceChat.id.desc())
        if limit is not None:
            q = q.limit(limit)
        rows = list(s.scalars(q))
    rows.reverse()
    return rows


def new_chat(
    workspace_id: int,
    prompt: str,
    response: Dict[str, Any],
    *,
    user_id: Optional[int] = None,
    thread_id: Optional[int] = None,
) -> WorkspaceChat:
    chat = WorkspaceChat(
        workspace_id=workspace_id,
        thread_id=thread_id,
        user_id=user_id,
        prompt=prompt,
        response=json.dumps(response, ensure_ascii=False),
    )
    with session_scope() as s:
        s.add(chat)
        s.flush()
    return chat


def update_feedback(chat_id: int, score: Optional[float], workspace_id: Optional[int] = None) -> bool:
    with session_scope() as s:
        chat = s.get(WorkspaceChat, chat_id)
        if chat is None or (workspace_id is not None and chat.workspace_id != workspace_id):
            return False
        chat.feedback_score = score
        s.add(chat)
    return True


# Event log

def insert_event_log(event: str, metadata: Dict[str, Any], user_id: Optional[int] = None) -> EventLog:
    row = EventLog(
        event=event,
        metadata_json=json.dumps(metadata, ensure_ascii=False, default=str),
        user_id=user_id,
    )
    with session_scope() as s:
        s.add(row)
    return row
