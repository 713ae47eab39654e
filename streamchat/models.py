"""SQLAlchemy models for agents, threads and messages, plus plain read records."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .db import Base, UTCDateTime, utcnow

ROLES = ("user", "assistant", "system", "tool")


class AgentModel(Base):
    """A named system-instruction profile."""

    __tablename__ = "agents"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    system_prompt = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)


class ThreadModel(Base):
    """A conversation thread.

    ``agent_id`` carries no foreign key: deleting an agent leaves the value in
    place and readers resolve it to "no agent".
    """

    __tablename__ = "threads"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False, default="")
    agent_id = Column(Integer, nullable=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    messages = relationship(
        "MessageModel", back_populates="thread",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="MessageModel.id",
    )


class MessageModel(Base):
    """A message in a thread."""

    __tablename__ = "messages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    thread_id = Column(Integer, ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(16), nullable=False)  # user | assistant | system | tool
    content = Column(Text, nullable=False, default="")
    reasoning_content = Column(Text, nullable=True)
    metrics = Column(JSON, nullable=True)
    tool_calls = Column(JSON, nullable=True)
    tool_call_id = Column(String(128), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    thread = relationship("ThreadModel", back_populates="messages")


# ── Read records ───────────────────────────────────


@dataclass(frozen=True)
class Agent:
    id: int
    name: str
    description: str
    system_prompt: str
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @classmethod
    def from_model(cls, row: AgentModel) -> "Agent":
        return cls(
            id=row.id, name=row.name, description=row.description or "",
            system_prompt=row.system_prompt,
            created_at=row.created_at, updated_at=row.updated_at,
        )


@dataclass(frozen=True)
class Thread:
    id: int
    title: str
    agent_id: Optional[int]
    updated_at: Optional[dt.datetime] = None

    @classmethod
    def from_model(cls, row: ThreadModel, agent_exists: bool = True) -> "Thread":
        return cls(
            id=row.id, title=row.title,
            agent_id=row.agent_id if agent_exists else None,
            updated_at=row.updated_at,
        )


@dataclass(frozen=True)
class Message:
    id: int
    thread_id: int
    role: str
    content: str
    reasoning_content: Optional[str] = None
    metrics: Optional[Dict[str, Any]] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None
    created_at: Optional[dt.datetime] = None

    @classmethod
    def from_model(cls, row: MessageModel) -> "Message":
        return cls(
            id=row.id, thread_id=row.thread_id, role=row.role,
            content=row.content or "",
            reasoning_content=row.reasoning_content,
            metrics=dict(row.metrics) if isinstance(row.metrics, dict) else None,
            tool_calls=list(row.tool_calls) if isinstance(row.tool_calls, list) else None,
            tool_call_id=row.tool_call_id,
            created_at=row.created_at,
        )

    def to_api(self) -> Dict[str, Any]:
        """Chat-completions message dict."""
        msg: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = self.tool_calls
        if self.tool_call_id:
            msg["tool_call_id"] = self.tool_call_id
        return msg
