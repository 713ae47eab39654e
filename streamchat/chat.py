"""Caller-facing chat API: submit a user message and stream the turn."""

import functools
import threading
import weakref
from typing import Callable, Dict, Iterator, Optional

from .config import Config
from .controller import TurnController, TurnEvent, conversation_history
from .errors import NotFoundError, TurnInProgressError
from .llm import LLMClient
from .logger import get_logger
from .store import ConversationStore
from .tools import ToolRegistry

_log = get_logger(__name__)

__all__ = ["ChatService", "TurnStream", "derive_thread_title"]

TITLE_WORDS = 5
TITLE_MAX_CHARS = 30


def derive_thread_title(text: str) -> str:
    """First five words of ``text``, cut to 30 characters plus ``...``."""
    title = " ".join(text.split()[:TITLE_WORDS])
    if len(title) > TITLE_MAX_CHARS:
        title = title[:TITLE_MAX_CHARS] + "..."
    return title


class TurnStream:
    """Events of one submitted turn, tagged with the thread they belong to.

    The thread stays busy until the stream is exhausted, closed or garbage
    collected, whether or not iteration ever started.
    """

    def __init__(self, thread_id: int, events: Iterator[TurnEvent],
                 release: Optional[Callable[[], None]] = None):
        self.thread_id = thread_id
        self._events = events
        self._finalizer = weakref.finalize(self, release) if release else None

    def __iter__(self) -> Iterator[TurnEvent]:
        # holds a reference to self so iteration keeps the slot alive
        yield from self._events

    def close(self):
        try:
            self._events.close()
        finally:
            if self._finalizer is not None:
                self._finalizer()


class ChatService:
    """Glue between the store, the tool registry and the model client.

    Each submission gets a fresh ``TurnController``; at most one turn runs
    per thread at a time.
    """

    def __init__(self, config: Config, store: ConversationStore,
                 registry: ToolRegistry, client: LLMClient):
        self.config = config
        self.store = store
        self.registry = registry
        self.client = client
        self._active: Dict[int, TurnController] = {}
        self._active_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config) -> "ChatService":
        return cls(
            config=config,
            store=ConversationStore(config.database_url),
            registry=ToolRegistry.from_config(config),
            client=LLMClient.from_config(config),
        )

    def open(self) -> "ChatService":
        self.store.open()
        self.registry.open()
        self.client.open()
        return self

    def close(self):
        self.client.close()
        self.registry.close()
        self.store.close()

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    def is_busy(self, thread_id: int) -> bool:
        with self._active_lock:
            return thread_id in self._active

    def cancel(self, thread_id: int) -> bool:
        """Cancel the running turn of ``thread_id``. Returns False if none runs."""
        with self._active_lock:
            controller = self._active.get(thread_id)
        if controller is None:
            return False
        controller.cancel()
        return True

    def submit_user_message(self, thread_id: Optional[int], text: str,
                            agent_id: Optional[int] = None,
                            reasoning_level: Optional[str] = None) -> "TurnStream":
        """Persist ``text`` as a user message and return the turn's event stream.

        With ``thread_id=None`` a thread is created first, titled from
        ``text`` and bound to ``agent_id``; an existing thread is rebound when
        ``agent_id`` names a different agent. The user message is stored
        before this returns; model work starts when the iterator is consumed.
        """
        if not text or not text.strip():
            raise ValueError("Message must not be empty")

        if thread_id is None:
            agent = self.store.get_agent(agent_id)
            thread = self.store.create_thread(
                derive_thread_title(text), agent_id=agent.id if agent else None)
            _log.info("Created thread %s (%r)", thread.id, thread.title)
        else:
            thread = self.store.get_thread(thread_id)
            if thread is None:
                raise NotFoundError("Thread", thread_id)
            if agent_id is not None and agent_id != thread.agent_id:
                if self.is_busy(thread.id):
                    raise TurnInProgressError(thread.id)
                if self.store.get_agent(agent_id) is None:
                    raise NotFoundError("Agent", agent_id)
                thread = self.store.update_thread(thread.id, agent_id=agent_id)
                _log.info("Thread %s rebound to agent %s", thread.id, agent_id)

        controller = TurnController(
            self.store, self.registry, self.client, self.config, thread.id,
            agent=self.store.resolve_agent(thread),
            reasoning_level=reasoning_level,
        )
        with self._active_lock:
            if thread.id in self._active:
                raise TurnInProgressError(thread.id)
            self._active[thread.id] = controller

        try:
            self.store.append_message(thread.id, "user", text)
            history = conversation_history(self.store.list_messages(thread.id))
        except Exception:
            self._release(thread.id, controller)
            raise
        return TurnStream(thread.id, self._drive(controller, history),
                          release=functools.partial(self._release, thread.id, controller))

    def _drive(self, controller: TurnController, history) -> Iterator[TurnEvent]:
        try:
            yield from controller.run(history)
        finally:
            self._release(controller.thread_id, controller)

    def _release(self, thread_id: int, controller: TurnController):
        with self._active_lock:
            if self._active.get(thread_id) is controller:
                del self._active[thread_id]
