"""Error taxonomy for agent actions.

Every error carries a short ``kind`` used in structured error payloads and a
``status_code`` hint for HTTP callers.
"""


class AgentError(Exception):
    """Base class for all agent subsystem errors."""

    kind = "agent_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidParametersError(AgentError):
    """A required action input is missing or the action is unknown."""

    kind = "invalid_parameters"
    status_code = 422


class ValidationError(AgentError):
    """A record failed validation and was not persisted."""

    kind = "validation"
    status_code = 422


class ContextNotLoadedError(AgentError):
    """A message or tool call operation ran before a context was bound."""

    kind = "context_not_loaded"

    def __init__(self, message: str = "No context loaded. Call load_context or create_context first."):
        super().__init__(message)


class ContextNotFoundError(AgentError):
    kind = "not_found"
    status_code = 404


class InvalidStatusTransitionError(AgentError):
    kind = "invalid_transition"

    def __init__(self, record: str, current: str, requested: str):
        super().__init__(f"{record} cannot move from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class ImmutableRecordError(AgentError):
    kind = "immutable_record"


class UnknownToolError(AgentError):
    """The model asked for a tool the agent does not register."""

    kind = "unknown_tool"

    def __init__(self, tool_name: str, agent_name: str):
        super().__init__(f"Unknown tool '{tool_name}' requested for {agent_name}")
        self.tool_name = tool_name
        self.agent_name = agent_name


class ToolExecutionError(AgentError):
    """A tool raised while running; the original exception is chained."""

    kind = "tool_failed"

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolTimeoutError(ToolExecutionError):
    """A tool exceeded its time bound.

    Threads cannot be stopped, so the call is abandoned: ``abandoned`` is the
    future of the body, which may still be running.
    """

    kind = "timeout"
    status_code = 504

    def __init__(self, tool_name: str, timeout: float, abandoned=None):
        super().__init__(tool_name, f"timed out after {timeout:g}s; the call was abandoned and may still be running")
        self.timeout = timeout
        self.abandoned = abandoned


class GenerationTimeoutError(AgentError):
    kind = "timeout"
    status_code = 504


class GenerationProviderError(AgentError):
    """The generation capability failed (network, auth, rate limit)."""

    kind = "provider_error"
    status_code = 502


class MissingToolSchemaError(AgentError):
    """A registered tool has no schema; this is a configuration error."""

    kind = "configuration"

    def __init__(self, agent_name: str, tool_name: str):
        super().__init__(f"No tool schema for '{tool_name}' on {agent_name}")
        self.agent_name = agent_name
        self.tool_name = tool_name


class BrowserPoolExhaustedError(AgentError):
    kind = "resource_exhausted"
    status_code = 503


class SessionBusyError(AgentError):
    """A session context already has a turn in progress."""

    kind = "conflict"
    status_code = 409
