# chatrelay/storage/models.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC; DateTime columns store UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(128), unique=True, nullable=False)
    role = Column(String(32), default="default")  # admin|manager|default
    # None means unlimited
    daily_message_limit = Column(Integer, nullable=True)
    suspended = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("role in ('admin','manager','default')", name="ck_users_role"),
    )


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(256), nullable=False)
    slug = Column(String(256), unique=True, nullable=False, index=True)

    chat_provider = Column(String(64), nullable=True)
    chat_model = Column(String(256), nullable=True)
    system_prompt = Column(Text, nullable=True)
    temperature = Column(Float, nullable=True)
    history_count = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    threads = relationship("WorkspaceThread", back_populates="workspace", cascade="all, delete-orphan")
    chats = relationship("WorkspaceChat", back_populates="workspace", cascade="all, delete-orphan")


class WorkspaceThread(Base):
    __tablename__ = "workspace_threads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug = Column(String(256), unique=True, nullable=False, index=True)
    name = Column(String(256), nullable=False, default="Thread")
    created_at = Column(DateTime, default=utcnow)

    workspace = relationship("Workspace", back_populates="threads")


class WorkspaceChat(Base):
    """One prompt/response exchange. `response` holds serialized JSON."""

    __tablename__ = "workspace_chats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    thread_id = Column(Integer, ForeignKey("workspace_threads.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    prompt = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    include = Column(Boolean, default=True)
    feedback_score = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    workspace = relationship("Workspace", back_populates="chats")


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event = Column(String(128), nullable=False, index=True)
    metadata_json = Column(Text, nullable=True)
    user_id = Column(Integer, nullable=True)
    occurred_at = Column(DateTime, default=utcnow, index=True)
