from .registry import ToolRegistry
from .web_ops import WebSearch, WebOpsError
__all__ = ["ToolRegistry", "WebSearch", "WebOpsError"]
