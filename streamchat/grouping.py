"""Display projection: fold a stored message list into renderable units.

One user turn can end with several assistant messages (one per tool round).
For display they are merged into a single unit; system and tool messages are
not shown. Nothing here touches storage.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from .deltas import REASONING_DURATION_KEY

__all__ = ["ReasoningPart", "DisplayMessage", "group_messages", "REASONING_SEPARATOR"]

REASONING_SEPARATOR = "\n\n---\n\n"
HIDDEN_ROLES = ("system", "tool")


@dataclass(frozen=True)
class ReasoningPart:
    content: str
    duration_ms: Optional[int] = None


@dataclass
class DisplayMessage:
    role: str
    content: str
    reasoning_parts: List[ReasoningPart] = field(default_factory=list)
    duration_ms: Optional[int] = None
    message_ids: List[int] = field(default_factory=list)

    @property
    def reasoning_text(self) -> str:
        return REASONING_SEPARATOR.join(p.content for p in self.reasoning_parts if p.content)


def _get(msg: Any, name: str, default=None):
    if isinstance(msg, dict):
        return msg.get(name, default)
    return getattr(msg, name, default)


def _duration(msg: Any) -> Optional[int]:
    metrics = _get(msg, "metrics")
    if not isinstance(metrics, dict):
        return None
    value = metrics.get(REASONING_DURATION_KEY)
    return int(value) if isinstance(value, (int, float)) else None


def _start_unit(msg: Any) -> DisplayMessage:
    reasoning = _get(msg, "reasoning_content") or ""
    duration = _duration(msg)
    msg_id = _get(msg, "id")
    return DisplayMessage(
        role=_get(msg, "role"),
        content=_get(msg, "content") or "",
        reasoning_parts=[ReasoningPart(reasoning, duration)] if reasoning else [],
        duration_ms=duration,
        message_ids=[msg_id] if msg_id is not None else [],
    )


def _merge_into(unit: DisplayMessage, msg: Any):
    content = _get(msg, "content") or ""
    unit.content = "\n\n".join(part for part in (unit.content, content) if part)

    duration = _duration(msg)
    reasoning = _get(msg, "reasoning_content") or ""
    if reasoning:
        unit.reasoning_parts.append(ReasoningPart(reasoning, duration))

    if duration is not None:
        unit.duration_ms = (unit.duration_ms or 0) + duration

    msg_id = _get(msg, "id")
    if msg_id is not None:
        unit.message_ids.append(msg_id)


def group_messages(messages: Iterable[Any]) -> List[DisplayMessage]:
    """Merge consecutive assistant messages; drop system and tool messages.

    Accepts store ``Message`` records or plain dicts with the same keys.
    """
    groups: List[DisplayMessage] = []
    for msg in messages:
        role = _get(msg, "role")
        if role in HIDDEN_ROLES:
            continue
        last = groups[-1] if groups else None
        if last is not None and last.role == "assistant" and role == "assistant":
            _merge_into(last, msg)
        else:
            groups.append(_start_unit(msg))
    return groups
