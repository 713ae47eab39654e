"""streamchat: streaming chat client with tool calls and local conversation storage."""

__version__ = "1.0.0"
