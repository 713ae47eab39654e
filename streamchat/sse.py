"""Event-stream framing: raw byte chunks → ``data:`` JSON frames.

The endpoint answers with newline-delimited lines of the form
``data: {...json...}`` and finishes with ``data: [DONE]``. Chunk boundaries
may fall anywhere, including inside a multi-byte character.
"""

import codecs
import json
from typing import Any, Dict, Iterable, Iterator

from .logger import get_logger

_log = get_logger(__name__)

__all__ = ["iter_lines", "iter_frames", "DATA_PREFIX", "DONE_SENTINEL"]

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def iter_lines(chunks: Iterable[bytes], encoding: str = "utf-8") -> Iterator[str]:
    """Yield complete lines from a stream of byte chunks.

    The trailing fragment left after the source ends has no terminating
    newline and is discarded.
    """
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    buffer = ""
    for chunk in chunks:
        if not chunk:
            continue
        if isinstance(chunk, str):
            buffer += chunk
        else:
            buffer += decoder.decode(chunk)
        if "\n" not in buffer:
            continue
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line[:-1] if line.endswith("\r") else line


def iter_frames(chunks: Iterable[bytes], encoding: str = "utf-8") -> Iterator[Dict[str, Any]]:
    """Yield decoded JSON frames until ``[DONE]`` or end of stream.

    Lines without the ``data:`` prefix and payloads that are not JSON objects
    are skipped.
    """
    for line in iter_lines(chunks, encoding):
        trimmed = line.strip()
        if not trimmed.startswith(DATA_PREFIX):
            continue
        payload = trimmed[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            return
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError:
            _log.debug("Dropping malformed frame: %.80s", payload)
            continue
        if not isinstance(frame, dict):
            _log.debug("Dropping non-object frame: %.80s", payload)
            continue
        yield frame
