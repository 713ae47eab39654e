"""Shared fixtures for streamchat tests."""

import datetime as dt
import json
import os

import pytest
import yaml

from streamchat.config import Config
from streamchat.errors import TransportError
from streamchat.store import ConversationStore
from streamchat.tools import ToolRegistry, WebSearch

FIXED_NOW = dt.datetime(2026, 10, 18, 9, 5)


# ── Frame builders ─────────────────────────────────

def delta_frame(**delta):
    return {"choices": [{"index": 0, "delta": delta}]}


def answer(text):
    return delta_frame(content=text)


def reasoning(text):
    return delta_frame(reasoning_content=text)


def tool_open(call_id, name, arguments=""):
    return delta_frame(tool_calls=[{
        "index": 0, "id": call_id, "type": "function",
        "function": {"name": name, "arguments": arguments},
    }])


def tool_append(arguments):
    return delta_frame(tool_calls=[{"index": 0, "function": {"arguments": arguments}}])


def sse_bytes(frames, done=True):
    """Encode frames the way the endpoint sends them."""
    body = "".join(f"data: {json.dumps(f, ensure_ascii=False)}\n\n" for f in frames)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


# ── Fakes ──────────────────────────────────────────

class FakeClock:
    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeStream:
    """Iterable of frames; entries may be callables run when reached."""

    def __init__(self, frames, fail_with=None):
        self.frames = frames
        self.fail_with = fail_with
        self.closed = False

    def __iter__(self):
        for frame in self.frames:
            if callable(frame):
                frame()
                continue
            yield frame
        if self.fail_with is not None:
            raise self.fail_with

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeClient:
    """Scripted stand-in for LLMClient.

    ``script`` is a list of responses, one per request: a list of frames,
    a ``FakeStream``, or an exception to raise instead of connecting. The
    last entry is reused once the script runs out.
    """

    def __init__(self, script):
        self.script = list(script)
        self.bodies = []
        self.streams = []

    @property
    def requests(self):
        return len(self.bodies)

    def stream(self, body):
        self.bodies.append(body)
        index = min(len(self.bodies), len(self.script)) - 1
        entry = self.script[index]
        if isinstance(entry, Exception):
            raise entry
        stream = entry if isinstance(entry, FakeStream) else FakeStream(list(entry))
        self.streams.append(stream)
        return stream

    def list_models(self):
        return ["local-model"]

    def open(self):
        return self

    def close(self):
        pass


# ── Fixtures ───────────────────────────────────────

@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory and cd into it."""
    orig = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(orig)


@pytest.fixture
def clean_env(monkeypatch):
    for var in ("STREAMCHAT_API_BASE", "STREAMCHAT_MODEL", "STREAMCHAT_API_KEY",
                "STREAMCHAT_REASONING", "STREAMCHAT_VERBOSE", "STREAMCHAT_DATABASE_URL",
                "STREAMCHAT_LANGUAGE", "SERPAPI_KEY"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def sample_config_data():
    """Minimal .streamchat.yml data dict."""
    return {
        "api-base": "http://localhost:9000/v1/",
        "model": "test-model",
        "reasoning-level": "high",
        "token-ceilings": {"high": 16000},
        "max-iterations": 4,
        "context-window": 6,
        "request-timeout": 30,
        "database-url": "sqlite:///:memory:",
        "language": "es",
        "search-max-results": 3,
        "verbose": False,
    }


@pytest.fixture
def config_yaml_file(tmp_dir, sample_config_data):
    """Write a config YAML to tmp_dir and return its Path."""
    path = tmp_dir / ".streamchat.yml"
    with open(path, "w") as f:
        yaml.dump(sample_config_data, f, default_flow_style=False)
    return path


@pytest.fixture
def config():
    return Config(database_url="sqlite:///:memory:")


@pytest.fixture
def store():
    with ConversationStore("sqlite:///:memory:") as s:
        yield s


@pytest.fixture
def registry():
    reg = ToolRegistry(web=WebSearch(), now=lambda: FIXED_NOW)
    yield reg
    reg.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def thread(store):
    return store.create_thread("Test thread")


def connection_refused():
    return TransportError("Cannot connect to http://localhost:8080/v1/chat/completions: "
                          "ConnectionError: refused")
