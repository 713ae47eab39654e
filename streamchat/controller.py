"""Turn controller: one user turn, driven through request and tool rounds.

A turn moves IDLE -> REQUESTING -> STREAMING and then either finalizes
(the model answered), goes to TOOLS_PENDING and back to REQUESTING (the
model asked for tools), aborts (transport failure or the iteration budget
ran out) or is cancelled. ``run`` is a generator of ``RenderState``
snapshots ending in exactly one ``TurnResult``.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from .config import Config
from .deltas import AccumulatedMessage, DeltaAccumulator, Snapshot
from .errors import IterationLimitError, StoreError, TransportError, TurnInProgressError
from .llm import LLMClient, build_request
from .logger import get_logger
from .models import Agent, Message
from .store import ConversationStore
from .tools import ToolRegistry

_log = get_logger(__name__)

__all__ = [
    "TurnState", "TurnStatus", "ToolActivity", "RenderState", "TurnResult",
    "TurnController", "conversation_history", "localized_error",
]


class TurnState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    TOOLS_PENDING = "tools_pending"
    FINALIZED = "finalized"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class TurnStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    TurnState.IDLE: {TurnState.REQUESTING, TurnState.CANCELLED},
    TurnState.REQUESTING: {TurnState.STREAMING, TurnState.ABORTED, TurnState.CANCELLED},
    TurnState.STREAMING: {TurnState.FINALIZED, TurnState.TOOLS_PENDING,
                          TurnState.ABORTED, TurnState.CANCELLED},
    TurnState.TOOLS_PENDING: {TurnState.REQUESTING, TurnState.ABORTED, TurnState.CANCELLED},
    TurnState.FINALIZED: set(),
    TurnState.ABORTED: set(),
    TurnState.CANCELLED: set(),
}


# ── User-visible messages ──────────────────────────

MESSAGES = {
    "en": {
        "transport": "Start your local server to get an answer. ({detail})",
        "iterations": "Could not complete the answer after {n} tool rounds.",
        "store": "The conversation could not be saved. ({detail})",
        "cancelled": "Answer cancelled.",
    },
    "es": {
        "transport": "Inicia tu servidor local para responder. ({detail})",
        "iterations": "No se pudo completar la respuesta tras {n} rondas de herramientas.",
        "store": "No se pudo guardar la conversación. ({detail})",
        "cancelled": "Respuesta cancelada.",
    },
}


def localized_error(kind: str, language: str = "en", **params) -> str:
    table = MESSAGES.get(language) or MESSAGES["en"]
    return table[kind].format(**params)


# ── Events ─────────────────────────────────────────

@dataclass
class ToolActivity:
    call_id: str
    name: str
    arguments: Dict[str, Any]
    result: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.result is not None


@dataclass
class RenderState:
    """What a front end should show right now for the in-progress turn.

    ``content``/``reasoning``/``metrics`` describe the message being streamed
    in the current iteration. ``placeholder`` is set on the first snapshot of
    each iteration, before any fragment arrived.
    """
    state: TurnState
    iteration: int
    content: str = ""
    reasoning: str = ""
    metrics: Dict[str, Any] = field(default_factory=dict)
    tool_activity: List[ToolActivity] = field(default_factory=list)
    placeholder: bool = False


@dataclass
class TurnResult:
    status: TurnStatus
    thread_id: int
    message: Optional[Message] = None
    error: Optional[str] = None
    requests: int = 0
    persisted: List[Message] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == TurnStatus.SUCCESS


TurnEvent = Union[RenderState, TurnResult]


def conversation_history(messages: List[Message]) -> List[Dict[str, Any]]:
    """Wire-format history of the conversational messages only.

    User messages and final assistant answers are kept; tool-call requests,
    tool results, system rows and empty assistant entries are left out so a
    trailing window never splits a tool round.
    """
    history = []
    for msg in messages:
        if msg.role == "user" or (msg.role == "assistant" and not msg.tool_calls and msg.content):
            history.append(msg.to_api())
    return history


# ── Controller ─────────────────────────────────────

class TurnController:
    """Drives a single turn. Not reusable: create one per submission."""

    def __init__(self, store: ConversationStore, registry: ToolRegistry,
                 client: LLMClient, config: Config, thread_id: int,
                 agent: Optional[Agent] = None,
                 reasoning_level: Optional[str] = None,
                 clock: Callable[[], float] = time.monotonic,
                 cancel_event: Optional[threading.Event] = None):
        self.store = store
        self.registry = registry
        self.client = client
        self.config = config
        self.thread_id = thread_id
        self.agent = agent
        self.reasoning_level = reasoning_level or config.reasoning_level
        self.state = TurnState.IDLE
        self.requests = 0
        self.loop_messages: List[Dict[str, Any]] = []
        self.tool_activity: List[ToolActivity] = []
        self.persisted: List[Message] = []
        self._clock = clock
        self._cancel = cancel_event or threading.Event()
        self._running = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self):
        """Ask the turn to stop. Takes effect at the next frame or tool boundary."""
        self._cancel.set()

    def _transition(self, state: TurnState):
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid turn transition {self.state.value} -> {state.value}")
        _log.debug("Turn %s: %s -> %s", self.thread_id, self.state.value, state.value)
        self.state = state

    def _render(self, snap: Optional[Snapshot] = None, placeholder: bool = False) -> RenderState:
        return RenderState(
            state=self.state,
            iteration=self.requests,
            content=snap.content if snap else "",
            reasoning=snap.reasoning if snap else "",
            metrics=dict(snap.metrics) if snap else {},
            tool_activity=list(self.tool_activity),
            placeholder=placeholder,
        )

    def _result(self, status: TurnStatus, message: Optional[Message] = None,
                error: Optional[str] = None) -> TurnResult:
        return TurnResult(status=status, thread_id=self.thread_id, message=message,
                          error=error, requests=self.requests,
                          persisted=list(self.persisted))

    def _cancelled_result(self) -> TurnResult:
        self._transition(TurnState.CANCELLED)
        _log.info("Turn %s cancelled after %d request(s)", self.thread_id, self.requests)
        return self._result(TurnStatus.CANCELLED,
                            error=localized_error("cancelled", self.config.language))

    def _aborted_result(self, kind: str, **params) -> TurnResult:
        self._transition(TurnState.ABORTED)
        return self._result(TurnStatus.FAILED,
                            error=localized_error(kind, self.config.language, **params))

    # ── Public API ──

    def run(self, history: List[Dict[str, Any]]) -> Iterator[TurnEvent]:
        """Run the turn over ``history`` (wire-format messages, oldest first).

        ``history`` must already end with the user's message.
        """
        if not self._running.acquire(blocking=False):
            raise TurnInProgressError(self.thread_id)
        try:
            if self.state != TurnState.IDLE:
                raise TurnInProgressError(self.thread_id)
            yield from self._run(history)
        finally:
            self._running.release()

    def _run(self, history: List[Dict[str, Any]]) -> Iterator[TurnEvent]:
        try:
            yield from self._loop(history)
        except IterationLimitError as e:
            _log.warning("Turn %s: %s", self.thread_id, e)
            yield self._aborted_result("iterations", n=e.max_iterations)

    def _loop(self, history: List[Dict[str, Any]]) -> Iterator[TurnEvent]:
        max_iterations = self.config.max_iterations
        agent_prompt = self.agent.system_prompt if self.agent else None
        reasoning_enabled = self.reasoning_level != "instant"

        while True:
            if self.cancelled:
                yield self._cancelled_result()
                return
            if self.requests >= max_iterations:
                raise IterationLimitError(max_iterations)

            self._transition(TurnState.REQUESTING)
            body = build_request(
                self.config, history=history, loop_messages=self.loop_messages,
                tools=self.registry.schemas, agent_prompt=agent_prompt,
                reasoning_level=self.reasoning_level,
            )
            acc = DeltaAccumulator(reasoning_enabled=reasoning_enabled, clock=self._clock)
            self.requests += 1
            _log.info("Turn %s: request %d/%d", self.thread_id, self.requests, max_iterations)

            try:
                stream = self.client.stream(body)
            except TransportError as e:
                _log.error("Turn %s: transport error: %s", self.thread_id, e)
                yield self._aborted_result("transport", detail=e)
                return

            self._transition(TurnState.STREAMING)
            try:
                with stream:
                    yield self._render(placeholder=True)
                    for frame in stream:
                        if self.cancelled:
                            break
                        for snap in acc.feed_frame(frame):
                            yield self._render(snap)
                        if self.cancelled:
                            break
            except TransportError as e:
                _log.error("Turn %s: stream failed: %s", self.thread_id, e)
                yield self._aborted_result("transport", detail=e)
                return

            if self.cancelled:
                yield self._cancelled_result()
                return

            response = acc.finish()
            if response.has_tool_calls():
                self._transition(TurnState.TOOLS_PENDING)
                outcome = yield from self._tool_round(response)
                if outcome is not None:
                    yield outcome
                    return
                continue

            try:
                final = self.store.append_message(
                    self.thread_id, "assistant", response.content,
                    reasoning_content=response.reasoning_content,
                    metrics=response.metrics,
                )
            except StoreError as e:
                _log.error("Turn %s: could not persist answer: %s", self.thread_id, e)
                yield self._aborted_result("store", detail=e)
                return
            self.persisted.append(final)
            self._transition(TurnState.FINALIZED)
            _log.info("Turn %s finalized after %d request(s)", self.thread_id, self.requests)
            yield self._result(TurnStatus.SUCCESS, message=final)
            return

    def _tool_round(self, response: AccumulatedMessage):
        """Execute every requested tool, then persist the round in one go.

        Yields render snapshots; returns a terminal TurnResult when the
        round could not complete, otherwise None.
        """
        calls = response.tool_calls
        activity = [ToolActivity(tc.id, tc.name, tc.arguments) for tc in calls]
        self.tool_activity.extend(activity)
        yield self._render()

        for tc, entry in zip(calls, activity):
            if self.cancelled:
                return self._cancelled_result()
            entry.result = self.registry.execute(tc.name, tc.arguments)
            yield self._render()

        tc_raw = [tc.to_dict() for tc in calls]
        assistant_msg = {"role": "assistant", "content": response.content, "tool_calls": tc_raw}
        tool_msgs = [
            {"role": "tool", "tool_call_id": tc.id, "content": entry.result}
            for tc, entry in zip(calls, activity)
        ]
        try:
            stored = self.store.append_messages(self.thread_id, [
                dict(assistant_msg, reasoning_content=response.reasoning_content,
                     metrics=response.metrics),
                *tool_msgs,
            ])
        except StoreError as e:
            _log.error("Turn %s: could not persist tool round: %s", self.thread_id, e)
            return self._aborted_result("store", detail=e)

        self.persisted.extend(stored)
        self.loop_messages.append(assistant_msg)
        self.loop_messages.extend(tool_msgs)
        return None
