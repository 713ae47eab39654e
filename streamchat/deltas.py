"""Delta accumulation: fold streamed fragments into one assistant message.

Each frame's ``choices[0].delta`` is split into tagged fragments. Tool-call
fragments are explicit: a fragment carrying a call id opens a descriptor,
a fragment without one appends argument text to the most recently opened
descriptor. Positional ``index`` fields sent by some providers are ignored.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .logger import get_logger

_log = get_logger(__name__)

__all__ = [
    "ReasoningDelta", "AnswerDelta", "ToolCallOpen", "ToolCallAppend",
    "ToolCall", "Snapshot", "AccumulatedMessage", "DeltaAccumulator",
    "parse_frame", "REASONING_DURATION_KEY",
]

REASONING_DURATION_KEY = "reasoning_duration_ms"


# ── Fragments ──────────────────────────────────────

@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class AnswerDelta:
    text: str


@dataclass(frozen=True)
class ToolCallOpen:
    call_id: str
    name: str
    arguments: str = ""


@dataclass(frozen=True)
class ToolCallAppend:
    arguments: str


Fragment = Union[ReasoningDelta, AnswerDelta, ToolCallOpen, ToolCallAppend]


def parse_frame(frame: Dict[str, Any]) -> List[Fragment]:
    """Split one decoded frame into fragments, in reasoning/answer/tool order."""
    choices = frame.get("choices")
    if not isinstance(choices, list) or not choices:
        return []
    choice = choices[0]
    if not isinstance(choice, dict):
        return []
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        return []

    fragments: List[Fragment] = []

    reasoning = delta.get("reasoning_content")
    if reasoning is None:
        reasoning = delta.get("reasoning")
    if isinstance(reasoning, str) and reasoning:
        fragments.append(ReasoningDelta(reasoning))

    content = delta.get("content")
    if isinstance(content, str) and content:
        fragments.append(AnswerDelta(content))

    tool_calls = delta.get("tool_calls")
    if isinstance(tool_calls, list):
        for tc in tool_calls:
            if not isinstance(tc, dict):
                continue
            fn = tc.get("function") if isinstance(tc.get("function"), dict) else {}
            arguments = fn.get("arguments") or ""
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            if tc.get("id"):
                fragments.append(ToolCallOpen(str(tc["id"]), str(fn.get("name") or ""), arguments))
            elif arguments:
                fragments.append(ToolCallAppend(arguments))

    return fragments


# ── Results ────────────────────────────────────────

@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any]
    raw_arguments: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """OpenAI-style tool call entry for an assistant message."""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": self.raw_arguments or json.dumps(self.arguments),
            },
        }


@dataclass
class Snapshot:
    reasoning: str
    content: str
    metrics: Dict[str, Any]
    tool_names: List[str] = field(default_factory=list)


@dataclass
class AccumulatedMessage:
    content: str = ""
    reasoning_content: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    tool_calls: List[ToolCall] = field(default_factory=list)

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class _OpenCall:
    id: str
    name: str
    arguments: str = ""


def _parse_arguments(raw: str) -> Dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        return {"_raw": raw}
    return args if isinstance(args, dict) else {"_raw": raw}


def _elapsed_ms(start: float, end: float) -> int:
    return max(0, int(round((end - start) * 1000)))


# ── Accumulator ────────────────────────────────────

class DeltaAccumulator:
    """Running buffers for one streamed response.

    Reasoning timing rules:
      - the first reasoning fragment starts the reasoning clock;
      - the first answer fragment after it stops the clock, once;
      - a stream that ends while still reasoning is timed to its end;
      - a response without reasoning reports the elapsed time since
        ``started_at`` (the request start).
    """

    def __init__(self, reasoning_enabled: bool = True,
                 started_at: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.reasoning_enabled = reasoning_enabled
        self._clock = clock
        self.started_at = clock() if started_at is None else started_at
        self.content = ""
        self.reasoning = ""
        self.metrics: Dict[str, Any] = {}
        self._reasoning_started_at: Optional[float] = None
        self._reasoning_closed = False
        self._calls: Dict[str, _OpenCall] = {}
        self._last_call_id: Optional[str] = None
        self._finished: Optional[AccumulatedMessage] = None

    def feed(self, fragment: Fragment) -> Optional[Snapshot]:
        """Apply one fragment. Returns a snapshot when the fragment was accepted."""
        if self._finished is not None:
            raise RuntimeError("accumulator already finished")

        if isinstance(fragment, ReasoningDelta):
            if not self.reasoning_enabled:
                return None
            if self._reasoning_started_at is None:
                self._reasoning_started_at = self._clock()
            self.reasoning += fragment.text

        elif isinstance(fragment, AnswerDelta):
            now = self._clock()
            if self._reasoning_started_at is not None:
                if not self._reasoning_closed:
                    self._reasoning_closed = True
                    self.metrics[REASONING_DURATION_KEY] = _elapsed_ms(self._reasoning_started_at, now)
            else:
                self.metrics[REASONING_DURATION_KEY] = _elapsed_ms(self.started_at, now)
            self.content += fragment.text

        elif isinstance(fragment, ToolCallOpen):
            existing = self._calls.get(fragment.call_id)
            if existing is not None:
                existing.arguments += fragment.arguments
            else:
                self._calls[fragment.call_id] = _OpenCall(
                    fragment.call_id, fragment.name, fragment.arguments)
            self._last_call_id = fragment.call_id

        elif isinstance(fragment, ToolCallAppend):
            if self._last_call_id is None:
                _log.debug("Dropping tool-call arguments with no open call")
                return None
            self._calls[self._last_call_id].arguments += fragment.arguments

        else:
            return None

        return self.snapshot()

    def feed_frame(self, frame: Dict[str, Any]) -> List[Snapshot]:
        snapshots = []
        for fragment in parse_frame(frame):
            snap = self.feed(fragment)
            if snap is not None:
                snapshots.append(snap)
        return snapshots

    def snapshot(self) -> Snapshot:
        return Snapshot(
            reasoning=self.reasoning,
            content=self.content,
            metrics=dict(self.metrics),
            tool_names=[call.name for call in self._calls.values()],
        )

    def finish(self) -> AccumulatedMessage:
        """Close the stream: settle metrics and assemble tool-call arguments."""
        if self._finished is not None:
            return self._finished

        now = self._clock()
        if self._reasoning_started_at is not None:
            if not self._reasoning_closed:
                self._reasoning_closed = True
                self.metrics[REASONING_DURATION_KEY] = _elapsed_ms(self._reasoning_started_at, now)
        else:
            self.metrics[REASONING_DURATION_KEY] = _elapsed_ms(self.started_at, now)

        tool_calls = [
            ToolCall(id=call.id, name=call.name,
                     arguments=_parse_arguments(call.arguments),
                     raw_arguments=call.arguments)
            for call in self._calls.values()
        ]
        self._finished = AccumulatedMessage(
            content=self.content,
            reasoning_content=self.reasoning or None,
            metrics=dict(self.metrics),
            tool_calls=tool_calls,
        )
        return self._finished
