"""Custom exceptions for agentloop."""


class AgentError(Exception):
    """Base exception for agentloop."""

    pass


class ConfigurationError(AgentError):
    """Configuration-related errors."""

    pass


class LLMError(AgentError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (auth, bad request, unexpected status)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RetryableLLMError(LLMError):
    """Transient model call failure that should be retried after backoff."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class IncompleteStreamError(RetryableLLMError):
    """Stream ended without the vendor's terminal success event."""

    pass


class NoCandidateError(RetryableLLMError):
    """Model returned no candidate; retried with a synthetic continue turn."""

    pass


class StreamDecodeError(LLMError):
    """Vendor stream frame or event could not be decoded."""

    pass


class EventStreamError(StreamDecodeError):
    """Malformed binary event-stream frame."""

    pass


class ToolError(AgentError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolInputError(ToolError):
    """Tool input failed validation."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class SubagentError(AgentError):
    """Delegation or report rejected by the subagent manager."""

    pass
