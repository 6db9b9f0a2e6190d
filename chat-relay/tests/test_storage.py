# tests/test_storage.py
from __future__ import annotations

import json
import uuid
from datetime import timedelta

from chatrelay.storage.repo import (
    can_send_chat,
    count_thread_chats,
    create_thread,
    create_user,
    create_workspace,
    get_thread,
    get_workspace,
    new_chat,
    recent_chats,
    rename_thread,
    session_scope,
    update_feedback,
)
from chatrelay.storage.models import WorkspaceChat, utcnow


def _ws():
    return create_workspace("Storage Test", slug=f"st-{uuid.uuid4().hex[:8]}")


def test_workspace_slug_generated_and_lookup() -> None:
    ws = create_workspace(f"My Notes {uuid.uuid4().hex[:6]}")
    assert ws.slug.startswith("my-notes-")
    assert get_workspace(ws.slug).id == ws.id
    assert get_workspace("missing-slug") is None


def test_recent_chats_window_is_latest_oldest_first() -> None:
    ws = _ws()
    for i in range(5):
        new_chat(ws.id, f"q{i}", {"text": f"a{i}"})
    rows = recent_chats(ws.id, limit=3)
    assert [r.prompt for r in rows] == ["q2", "q3", "q4"]
    assert json.loads(rows[-1].response) == {"text": "a4"}


def test_recent_chats_skips_excluded_and_separates_threads() -> None:
    ws = _ws()
    th = create_thread(ws.id)
    new_chat(ws.id, "default", {"text": "d"})
    new_chat(ws.id, "threaded", {"text": "t"}, thread_id=th.id)
    hidden = new_chat(ws.id, "hidden", {"text": "h"})
    with session_scope() as s:
        s.get(WorkspaceChat, hidden.id).include = False

    assert [r.prompt for r in recent_chats(ws.id)] == ["default"]
    assert [r.prompt for r in recent_chats(ws.id, thread_id=th.id)] == ["threaded"]
    assert count_thread_chats(th.id) == 1


def test_thread_lookup_scoped_to_user() -> None:
    ws = _ws()
    owner = create_user(f"owner-{uuid.uuid4().hex[:8]}")
    th = create_thread(ws.id, user_id=owner.id)
    assert get_thread(ws.id, th.slug, owner.id).id == th.id
    assert get_thread(ws.id, th.slug, owner.id + 1000) is None


def test_daily_quota_counts_last_24_hours() -> None:
    ws = _ws()
    user = create_user(f"quota-{uuid.uuid4().hex[:8]}", daily_message_limit=2)
    assert can_send_chat(user)
    old = new_chat(ws.id, "old", {"text": "x"}, user_id=user.id)
    with session_scope() as s:
        s.get(WorkspaceChat, old.id).created_at = utcnow() - timedelta(hours=30)
    new_chat(ws.id, "one", {"text": "x"}, user_id=user.id)
    assert can_send_chat(user)
    new_chat(ws.id, "two", {"text": "x"}, user_id=user.id)
    assert not can_send_chat(user)
    assert can_send_chat(None)


def test_feedback_requires_matching_workspace() -> None:
    ws, other = _ws(), _ws()
    chat = new_chat(ws.id, "q", {"text": "a"})
    assert not update_feedback(chat.id, 1, workspace_id=other.id)
    assert update_feedback(chat.id, -1, workspace_id=ws.id)
    with session_scope() as s:
        assert s.get(WorkspaceChat, chat.id).feedback_score == -1


def test_rename_thread_persists_and_ignores_missing() -> None:
    ws = _ws()
    th = create_thread(ws.id)
    renamed = rename_thread(th.id, "Trip planning")
    assert renamed is not None and renamed.name == "Trip planning"
    assert get_thread(ws.id, th.slug).name == "Trip planning"
    assert rename_thread(999999, "nope") is None


def test_created_at_is_naive_utc() -> None:
    before = utcnow()
    chat = new_chat(_ws().id, "q", {"text": "a"})
    assert chat.created_at.tzinfo is None
    assert before <= chat.created_at <= utcnow()
