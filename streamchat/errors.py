"""Structured error types for the chat engine."""


class ChatError(Exception):
    """Base error for all chat operations."""
    pass


class TransportError(ChatError):
    """The model endpoint could not be reached or the stream broke."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class IterationLimitError(ChatError):
    """Raised when a turn keeps asking for tools past the iteration budget."""

    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(f"Could not complete after {max_iterations} tool rounds")


class TurnInProgressError(ChatError):
    """A turn is already running for this thread."""

    def __init__(self, thread_id):
        self.thread_id = thread_id
        super().__init__(f"A turn is already in progress for thread {thread_id}")


class ToolError(ChatError):
    """Error raised during tool execution."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"{tool_name} error: {message}")


class StoreError(ChatError):
    """Base error for conversation store operations."""
    pass


class NotFoundError(StoreError):
    """Raised when a row does not exist."""

    def __init__(self, kind: str, ident):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} {ident} not found")
