class PlanError(Exception):
    """A controller-level failure. ``str(exc)`` is safe to show to the user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(PlanError):
    pass


class ToolElicitationError(PlanError):
    pass


class DeadlineExceeded(PlanError):
    def __init__(self, phase: str, message: str = "Request took too long. Please try again.") -> None:
        super().__init__(message)
        self.phase = phase


class SynthesisError(PlanError):
    pass


class ClientDisconnected(Exception):
    """The caller went away; stop producing work without reporting an error."""


class StreamClosed(ClientDisconnected):
    """An event was emitted after the stream already delivered its terminal event."""


class UnknownToolError(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidToolArguments(ValueError):
    pass


class LLMError(RuntimeError):
    pass
