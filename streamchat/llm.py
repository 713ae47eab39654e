"""Model endpoint client: request building and streamed frames over requests."""

import json
from typing import Any, Dict, Iterator, List, Optional

import requests

from .config import Config
from .errors import TransportError
from .logger import get_logger
from .sse import iter_frames

_log = get_logger(__name__)

__all__ = ["LLMClient", "FrameStream", "build_system_prompt", "build_request", "BASE_SYSTEM_PROMPT"]


BASE_SYSTEM_PROMPT = """\
You are a helpful conversational assistant.

## Rules:
- Respond in the same language the user uses.
- Use the available tools when the question depends on the current date or on
  recent information; never guess dates or news.
- When you use web results, cite the sources as Markdown links.
- Format answers with Markdown when it helps readability.
"""

REASONING_DIRECTIVES = {
    "instant": (
        "## Reasoning: instant\n"
        "Answer directly. Do not think out loud and do not narrate step-by-step reasoning."
    ),
    "low": (
        "## Reasoning: low\n"
        "Keep any internal reasoning short. Do not narrate your steps in the answer."
    ),
    "medium": "",
    "high": (
        "## Reasoning: high\n"
        "Reason step by step before answering. Check each step and consider "
        "alternatives before committing to the final answer."
    ),
}


def build_system_prompt(agent_prompt: Optional[str] = None,
                        reasoning_level: str = "medium") -> str:
    prompt = BASE_SYSTEM_PROMPT
    if agent_prompt and agent_prompt.strip():
        prompt += f"\n\n## Agent instructions:\n{agent_prompt.strip()}"
    directive = REASONING_DIRECTIVES.get(reasoning_level, "")
    if directive:
        prompt += f"\n\n{directive}"
    return prompt


def build_request(config: Config, *, history: List[Dict[str, Any]],
                  loop_messages: Optional[List[Dict[str, Any]]] = None,
                  tools: Optional[List[Dict[str, Any]]] = None,
                  agent_prompt: Optional[str] = None,
                  reasoning_level: Optional[str] = None) -> Dict[str, Any]:
    """Assemble one chat-completions body.

    ``history`` is the chronological conversation; only its trailing
    ``config.context_window`` entries are sent. ``loop_messages`` are the
    tool-call and tool-result messages of the current turn, sent in full.
    """
    level = reasoning_level or config.reasoning_level
    window = history[-config.context_window:] if config.context_window else []
    messages = [{"role": "system", "content": build_system_prompt(agent_prompt, level)}]
    messages.extend(window)
    messages.extend(loop_messages or [])

    body: Dict[str, Any] = {
        "model": config.model,
        "messages": messages,
        "stream": True,
        "max_tokens": config.max_tokens_for(level),
        "reasoning": {"enabled": level != "instant"},
    }
    if tools:
        body["tools"] = tools
    return body


def _error_message(resp: requests.Response) -> str:
    text = resp.text or ""
    try:
        parsed = json.loads(text)
    except ValueError:
        return text.strip() or f"HTTP {resp.status_code}"
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if parsed.get("message"):
            return str(parsed["message"])
    return text.strip() or f"HTTP {resp.status_code}"


class FrameStream:
    """An open streamed response. Iterate for frames; close to release it."""

    def __init__(self, response: requests.Response, encoding: str = "utf-8"):
        self.response = response
        self.encoding = encoding
        self.status_code = response.status_code

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        try:
            yield from iter_frames(self.response.iter_content(chunk_size=None), self.encoding)
        except requests.RequestException as e:
            raise TransportError(f"Stream interrupted: {type(e).__name__}: {e}")

    def close(self):
        self.response.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class LLMClient:
    """Streaming client for an OpenAI-compatible ``/chat/completions`` endpoint.

    The bearer token is optional; local servers usually run without one.
    """

    def __init__(self, chat_url: str, api_key: Optional[str] = None,
                 timeout: float = 120, models_url: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.chat_url = chat_url
        self.models_url = models_url
        self.api_key = api_key
        self.timeout = timeout
        self._session = session

    @classmethod
    def from_config(cls, config: Config) -> "LLMClient":
        return cls(
            chat_url=config.chat_url,
            api_key=config.resolve_api_key(),
            timeout=config.request_timeout,
            models_url=config.models_url,
        )

    def open(self) -> "LLMClient":
        if self._session is None:
            self._session = requests.Session()
        return self

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def stream(self, body: Dict[str, Any]) -> FrameStream:
        """POST ``body`` and return the open response as a FrameStream.

        Raises TransportError on connection failure, a non-success status
        or a missing body. Iterating the stream raises TransportError if
        the connection breaks mid-way.
        """
        self.open()
        try:
            resp = self._session.post(
                self.chat_url, json=body, headers=self._headers(),
                stream=True, timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"Cannot connect to {self.chat_url}: {type(e).__name__}: {e}")

        if not resp.ok:
            try:
                raise TransportError(_error_message(resp), status_code=resp.status_code)
            finally:
                resp.close()
        if resp.raw is None:
            resp.close()
            raise TransportError("Response has no body", status_code=resp.status_code)

        encoding = resp.encoding or "utf-8"
        if encoding.lower() == "iso-8859-1":
            # requests' default for text/* without a charset
            encoding = "utf-8"
        _log.info("Streaming response from %s (status %s)", self.chat_url, resp.status_code)
        return FrameStream(resp, encoding)

    def list_models(self) -> List[str]:
        """Model ids advertised by ``GET /models``."""
        if not self.models_url:
            return []
        self.open()
        try:
            resp = self._session.get(self.models_url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Cannot connect to {self.models_url}: {type(e).__name__}: {e}")
        if not resp.ok:
            raise TransportError(_error_message(resp), status_code=resp.status_code)
        try:
            payload = resp.json()
        except ValueError:
            raise TransportError("Invalid JSON from models endpoint", status_code=resp.status_code)
        entries = payload.get("data", []) if isinstance(payload, dict) else payload
        models = []
        for entry in entries or []:
            if isinstance(entry, dict) and entry.get("id"):
                models.append(str(entry["id"]))
            elif isinstance(entry, str):
                models.append(entry)
        return models
