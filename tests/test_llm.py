"""Tests for request building and the streaming HTTP client."""

from unittest.mock import MagicMock

import pytest
import requests

from streamchat.errors import TransportError
from streamchat.llm import (
    BASE_SYSTEM_PROMPT,
    FrameStream,
    LLMClient,
    _error_message,
    build_request,
    build_system_prompt,
)

from conftest import answer, sse_bytes


class TestBuildRequest:

    def test_body_shape(self, config):
        history = [{"role": "user", "content": "hi"}]
        body = build_request(config, history=history, tools=[{"type": "function"}])
        assert body["model"] == config.model
        assert body["stream"] is True
        assert body["max_tokens"] == 4096
        assert body["reasoning"] == {"enabled": True}
        assert body["tools"] == [{"type": "function"}]
        assert body["messages"][0]["role"] == "system"
        assert body["messages"][1:] == history

    def test_no_tools_key_without_tools(self, config):
        assert "tools" not in build_request(config, history=[])

    def test_window_applies_to_history_only(self, config):
        config.context_window = 2
        history = [{"role": "user", "content": str(i)} for i in range(5)]
        loop = [{"role": "tool", "tool_call_id": "a", "content": "r"}]
        body = build_request(config, history=history, loop_messages=loop)
        assert body["messages"][1:] == history[-2:] + loop

    @pytest.mark.parametrize("level,tokens,enabled", [
        ("instant", 1024, False), ("low", 2048, True),
        ("medium", 4096, True), ("high", 8192, True),
    ])
    def test_reasoning_levels(self, config, level, tokens, enabled):
        body = build_request(config, history=[], reasoning_level=level)
        assert body["max_tokens"] == tokens
        assert body["reasoning"]["enabled"] is enabled

    def test_system_prompt_parts(self):
        prompt = build_system_prompt("Be brief.", "high")
        assert prompt.startswith(BASE_SYSTEM_PROMPT)
        assert "Be brief." in prompt
        assert "Reasoning: high" in prompt
        assert build_system_prompt(None, "medium") == BASE_SYSTEM_PROMPT


class TestErrorMessage:

    @pytest.mark.parametrize("text,expected", [
        ('{"error": {"message": "context too long"}}', "context too long"),
        ('{"error": "rate limited"}', "rate limited"),
        ('{"message": "bad request"}', "bad request"),
        ("plain failure", "plain failure"),
        ("", "HTTP 500"),
    ])
    def test_extraction(self, text, expected):
        resp = MagicMock(text=text, status_code=500)
        assert _error_message(resp) == expected


def _response(status=200, chunks=(), encoding="utf-8", text=""):
    resp = MagicMock()
    resp.ok = status < 400
    resp.status_code = status
    resp.encoding = encoding
    resp.text = text
    resp.raw = object()
    resp.iter_content.return_value = iter(chunks)
    return resp


class TestLLMClient:

    def _client(self, resp=None, exc=None, api_key=None):
        session = MagicMock()
        if exc is not None:
            session.post.side_effect = exc
        else:
            session.post.return_value = resp
        return LLMClient("http://localhost:8080/v1/chat/completions",
                         api_key=api_key, session=session), session

    def test_streams_frames(self):
        resp = _response(chunks=[sse_bytes([answer("hé"), answer("llo")])])
        client, session = self._client(resp)
        with client.stream({"model": "m"}) as stream:
            assert isinstance(stream, FrameStream)
            assert list(stream) == [answer("hé"), answer("llo")]
        resp.close.assert_called()
        assert session.post.call_args.kwargs["stream"] is True

    def test_latin1_default_is_read_as_utf8(self):
        resp = _response(chunks=[sse_bytes([answer("ñ")])], encoding="ISO-8859-1")
        client, _ = self._client(resp)
        assert list(client.stream({})) == [answer("ñ")]

    def test_bearer_header_only_with_key(self):
        client, session = self._client(_response(), api_key="secret")
        client.stream({})
        assert session.post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"

        client, session = self._client(_response())
        client.stream({})
        assert "Authorization" not in session.post.call_args.kwargs["headers"]

    def test_connection_error(self):
        client, _ = self._client(exc=requests.ConnectionError("refused"))
        with pytest.raises(TransportError, match="Cannot connect"):
            client.stream({})

    def test_error_status(self):
        resp = _response(status=404, text='{"error": {"message": "model not found"}}')
        client, _ = self._client(resp)
        with pytest.raises(TransportError, match="model not found") as info:
            client.stream({})
        assert info.value.status_code == 404
        resp.close.assert_called()

    def test_missing_body(self):
        resp = _response()
        resp.raw = None
        client, _ = self._client(resp)
        with pytest.raises(TransportError, match="no body"):
            client.stream({})

    def test_interrupted_stream(self):
        def chunks():
            yield sse_bytes([answer("a")], done=False)
            raise requests.exceptions.ChunkedEncodingError("reset")

        resp = _response()
        resp.iter_content.return_value = chunks()
        client, _ = self._client(resp)
        stream = client.stream({})
        frames = iter(stream)
        assert next(frames) == answer("a")
        with pytest.raises(TransportError, match="Stream interrupted"):
            next(frames)

    def test_list_models(self):
        session = MagicMock()
        session.get.return_value = MagicMock(ok=True)
        session.get.return_value.json.return_value = {"data": [{"id": "a"}, {"id": "b"}, {}]}
        client = LLMClient("http://x/v1/chat/completions", models_url="http://x/v1/models",
                           session=session)
        assert client.list_models() == ["a", "b"]

    def test_list_models_without_url(self):
        assert LLMClient("http://x/v1/chat/completions").list_models() == []

    def test_from_config(self, config):
        config.api_key = "k"
        client = LLMClient.from_config(config)
        assert client.chat_url == "http://localhost:8080/v1/chat/completions"
        assert client.models_url == "http://localhost:8080/v1/models"
        assert client.api_key == "k"
