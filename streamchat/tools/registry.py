"""Tool registry: dict-based dispatch over declared tool schemas."""
import datetime as dt
from typing import Any, Callable, Dict, List, Optional

from ..errors import ToolError
from ..logger import get_logger
from .date_ops import format_current_date
from .web_ops import WebOpsError, WebSearch

_log = get_logger(__name__)


class _ToolEntry:
    """Single tool registration: handler + schema."""
    __slots__ = ("handler", "schema")

    def __init__(self, handler: Callable, schema: dict):
        self.handler = handler
        self.schema = schema


def _schema(name: str, description: str, properties: dict,
            required: list) -> dict:
    """Build an OpenAI-compatible function schema."""
    parameters = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = required
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": parameters,
        },
    }


_S = lambda desc, **kw: {"type": "string", "description": desc, **kw}


class ToolRegistry:
    """Tools the model may call. ``execute`` always returns a string."""

    def __init__(self, web: Optional[WebSearch] = None, language: str = "en",
                 now: Optional[Callable[[], dt.datetime]] = None):
        self.web = web or WebSearch(language=language)
        self.language = language
        self._now = now
        self._tools: Dict[str, _ToolEntry] = {}
        self._register_tools()

    @classmethod
    def from_config(cls, config) -> "ToolRegistry":
        web = WebSearch(
            serpapi_key=config.serpapi_key,
            max_results=config.search_max_results,
            language=config.language,
        )
        return cls(web=web, language=config.language)

    def _register_tools(self):
        T = _ToolEntry
        S = _schema

        self._tools["get_current_date"] = T(
            handler=lambda **a: self._handle_current_date(),
            schema=S("get_current_date",
                     "Return the current system date and time.",
                     {}, []),
        )
        self._tools["web_search"] = T(
            handler=lambda **a: self.web.search(a["query"]),
            schema=S("web_search",
                     "Search the web. Useful for current information, news, "
                     "or verifying recent facts.",
                     {"query": _S("The exact term or question to search for.")},
                     ["query"]),
        )

    def register(self, name: str, handler: Callable[..., str], description: str,
                 properties: Optional[dict] = None, required: Optional[list] = None):
        """Add or replace a tool."""
        self._tools[name] = _ToolEntry(
            handler=handler,
            schema=_schema(name, description, properties or {}, required or []),
        )

    def _handle_current_date(self) -> str:
        now = self._now() if self._now else None
        return format_current_date(now, self.language)

    # ── Lifecycle ──

    def open(self) -> "ToolRegistry":
        return self

    def close(self):
        self.web.close()

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    # ── Public API ──

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    @property
    def schemas(self) -> List[dict]:
        return [entry.schema for entry in self._tools.values()]

    @staticmethod
    def _check_arguments(tool_name: str, entry: _ToolEntry, args: Dict[str, Any]):
        if "_raw" in args:
            _log.warning("Tool %s called with unparseable arguments: %.120s", tool_name, args["_raw"])
            raise ToolError(tool_name, "arguments are not valid JSON")
        required = entry.schema["function"]["parameters"].get("required", [])
        missing = [name for name in required if name not in args]
        if missing:
            raise ToolError(tool_name, f"missing argument: {', '.join(missing)}")

    def execute(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """Dispatch a tool call by name. Failures come back as strings for the model."""
        entry = self._tools.get(tool_name)
        if not entry:
            _log.warning("Unknown tool requested: %s", tool_name)
            return f"Unknown tool: {tool_name}"

        args = arguments if isinstance(arguments, dict) else {}
        _log.info("Executing tool %s %s", tool_name, args)
        try:
            self._check_arguments(tool_name, entry, args)
            result = entry.handler(**args)
        except WebOpsError as e:
            result = f"Web error: {e}"
        except ToolError as e:
            result = str(e)
        except KeyError as e:
            result = f"{tool_name} error: missing argument: {e}"
        except Exception as e:
            result = f"{tool_name} error: {type(e).__name__}: {e}"
        return result if isinstance(result, str) else str(result)
