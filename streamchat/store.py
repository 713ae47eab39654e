"""Conversation store: agents, threads and append-only message history."""

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from .db import Base, create_db_engine, create_session_factory, utcnow
from .errors import NotFoundError, StoreError
from .logger import get_logger
from .models import (
    ROLES,
    Agent,
    AgentModel,
    Message,
    MessageModel,
    Thread,
    ThreadModel,
)

_log = get_logger(__name__)

__all__ = ["ConversationStore"]

_UNSET: Any = object()


def _require_text(value: Optional[str], field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValueError(f"{field_name} must not be empty")
    return text


class ConversationStore:
    """Relational storage behind the chat engine.

    Every public method runs in its own transaction. Writes that touch a
    thread row (appends, title/agent changes, deletion) are serialized per
    thread, so independent threads can be driven from separate OS threads.
    """

    def __init__(self, database_url: str = "sqlite:///:memory:"):
        self.database_url = database_url
        self._engine = None
        self._sessions = None
        self._locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ── Lifecycle ──────────────────────────────────

    def open(self) -> "ConversationStore":
        if self._engine is None:
            self._engine = create_db_engine(self.database_url)
            Base.metadata.create_all(self._engine)
            self._sessions = create_session_factory(self._engine)
            _log.info("Conversation store opened: %s", self.database_url)
        return self

    def close(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._sessions = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        if self._sessions is None:
            raise StoreError("Conversation store is not open")
        try:
            with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreError(f"Database error: {e}") from e

    def _thread_lock(self, thread_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(thread_id)
            if lock is None:
                lock = self._locks[thread_id] = threading.Lock()
            return lock

    # ── Agents ─────────────────────────────────────

    def create_agent(self, name: str, system_prompt: str, description: str = "") -> Agent:
        name = _require_text(name, "name")
        system_prompt = _require_text(system_prompt, "system_prompt")
        with self._transaction() as session:
            now = utcnow()
            row = AgentModel(name=name, description=description or "",
                             system_prompt=system_prompt, created_at=now, updated_at=now)
            session.add(row)
            session.flush()
            return Agent.from_model(row)

    def get_agent(self, agent_id: Optional[int]) -> Optional[Agent]:
        if agent_id is None:
            return None
        with self._transaction() as session:
            row = session.get(AgentModel, agent_id)
            return Agent.from_model(row) if row else None

    def list_agents(self) -> List[Agent]:
        with self._transaction() as session:
            rows = session.scalars(
                select(AgentModel).order_by(AgentModel.updated_at.desc(), AgentModel.id.desc())
            ).all()
            return [Agent.from_model(row) for row in rows]

    def update_agent(self, agent_id: int, *, name: Optional[str] = None,
                     description: Optional[str] = None,
                     system_prompt: Optional[str] = None) -> Agent:
        with self._transaction() as session:
            row = session.get(AgentModel, agent_id)
            if row is None:
                raise NotFoundError("Agent", agent_id)
            if name is not None:
                row.name = _require_text(name, "name")
            if description is not None:
                row.description = description
            if system_prompt is not None:
                row.system_prompt = _require_text(system_prompt, "system_prompt")
            row.updated_at = utcnow()
            session.flush()
            return Agent.from_model(row)

    def delete_agent(self, agent_id: int):
        """Delete an agent. Threads bound to it keep the id, which reads as no agent."""
        with self._transaction() as session:
            row = session.get(AgentModel, agent_id)
            if row is None:
                raise NotFoundError("Agent", agent_id)
            session.delete(row)
        _log.info("Deleted agent %s", agent_id)

    # ── Threads ────────────────────────────────────

    def create_thread(self, title: str, agent_id: Optional[int] = None) -> Thread:
        with self._transaction() as session:
            row = ThreadModel(title=title or "", agent_id=agent_id, updated_at=utcnow())
            session.add(row)
            session.flush()
            agent_exists = agent_id is None or session.get(AgentModel, agent_id) is not None
            return Thread.from_model(row, agent_exists=agent_exists)

    def _thread_query(self):
        agent = aliased(AgentModel)
        return (
            select(ThreadModel, agent.id)
            .outerjoin(agent, agent.id == ThreadModel.agent_id)
        )

    def get_thread(self, thread_id: int) -> Optional[Thread]:
        with self._transaction() as session:
            result = session.execute(
                self._thread_query().where(ThreadModel.id == thread_id)
            ).first()
            if result is None:
                return None
            row, resolved_agent_id = result
            return Thread.from_model(row, agent_exists=resolved_agent_id is not None)

    def list_threads(self) -> List[Thread]:
        """All threads, most recently updated first."""
        with self._transaction() as session:
            results = session.execute(
                self._thread_query().order_by(ThreadModel.updated_at.desc(), ThreadModel.id.desc())
            ).all()
            return [
                Thread.from_model(row, agent_exists=resolved is not None)
                for row, resolved in results
            ]

    def update_thread(self, thread_id: int, *, title: Any = _UNSET, agent_id: Any = _UNSET) -> Thread:
        """Change title and/or agent binding. Pass ``agent_id=None`` to unbind."""
        with self._thread_lock(thread_id), self._transaction() as session:
            row = session.get(ThreadModel, thread_id)
            if row is None:
                raise NotFoundError("Thread", thread_id)
            if title is not _UNSET:
                row.title = title or ""
            if agent_id is not _UNSET:
                row.agent_id = agent_id
            row.updated_at = utcnow()
            session.flush()
            agent_exists = row.agent_id is None or session.get(AgentModel, row.agent_id) is not None
            return Thread.from_model(row, agent_exists=agent_exists)

    def delete_thread(self, thread_id: int):
        """Delete a thread and all of its messages."""
        with self._thread_lock(thread_id), self._transaction() as session:
            row = session.get(ThreadModel, thread_id)
            if row is None:
                raise NotFoundError("Thread", thread_id)
            session.execute(delete(MessageModel).where(MessageModel.thread_id == thread_id))
            session.delete(row)
        with self._locks_guard:
            self._locks.pop(thread_id, None)
        _log.info("Deleted thread %s", thread_id)

    def resolve_agent(self, thread: Optional[Thread]) -> Optional[Agent]:
        """The agent bound to ``thread``, or None when unbound or deleted."""
        if thread is None or thread.agent_id is None:
            return None
        return self.get_agent(thread.agent_id)

    # ── Messages ───────────────────────────────────

    @staticmethod
    def _message_row(thread_id: int, now, *, role: str, content: str = "",
                     reasoning_content: Optional[str] = None,
                     metrics: Optional[Dict[str, Any]] = None,
                     tool_calls: Optional[List[Dict[str, Any]]] = None,
                     tool_call_id: Optional[str] = None) -> MessageModel:
        return MessageModel(
            thread_id=thread_id, role=role, content=content or "",
            reasoning_content=reasoning_content or None,
            metrics=dict(metrics) if metrics else None,
            tool_calls=list(tool_calls) if tool_calls else None,
            tool_call_id=tool_call_id,
            created_at=now,
        )

    def append_message(self, thread_id: int, role: str, content: str = "", *,
                       reasoning_content: Optional[str] = None,
                       metrics: Optional[Dict[str, Any]] = None,
                       tool_calls: Optional[List[Dict[str, Any]]] = None,
                       tool_call_id: Optional[str] = None) -> Message:
        """Append one message and refresh the thread's ``updated_at`` atomically."""
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role!r}")
        with self._thread_lock(thread_id), self._transaction() as session:
            thread = session.get(ThreadModel, thread_id)
            if thread is None:
                raise NotFoundError("Thread", thread_id)
            now = utcnow()
            row = self._message_row(
                thread_id, now, role=role, content=content,
                reasoning_content=reasoning_content, metrics=metrics,
                tool_calls=tool_calls, tool_call_id=tool_call_id,
            )
            session.add(row)
            thread.updated_at = now
            session.flush()
            return Message.from_model(row)

    def list_messages(self, thread_id: int, limit: Optional[int] = None, offset: int = 0) -> List[Message]:
        """Messages in chronological order.

        With ``limit``, returns the page that ends ``offset`` messages before
        the newest one, still oldest first.
        """
        with self._transaction() as session:
            query = select(MessageModel).where(MessageModel.thread_id == thread_id)
            if limit is None:
                rows = session.scalars(query.order_by(MessageModel.id.asc())).all()
                return [Message.from_model(row) for row in rows]
            rows = session.scalars(
                query.order_by(MessageModel.id.desc()).limit(limit).offset(offset)
            ).all()
            return [Message.from_model(row) for row in reversed(rows)]

    def recent_messages(self, thread_id: int, count: int) -> List[Message]:
        return self.list_messages(thread_id, limit=count)

    def append_messages(self, thread_id: int, entries: List[Dict[str, Any]]) -> List[Message]:
        """Append several messages in one transaction; all or none are stored.

        Each entry holds ``role`` plus any ``append_message`` keyword.
        """
        for entry in entries:
            if entry.get("role") not in ROLES:
                raise ValueError(f"Invalid role: {entry.get('role')!r}")
        with self._thread_lock(thread_id), self._transaction() as session:
            thread = session.get(ThreadModel, thread_id)
            if thread is None:
                raise NotFoundError("Thread", thread_id)
            now = utcnow()
            rows = [self._message_row(thread_id, now, **entry) for entry in entries]
            session.add_all(rows)
            thread.updated_at = now
            session.flush()
            return [Message.from_model(row) for row in rows]
