"""
Exception types for specflow.

Everything below the tool runtime raises these; the runtime converts them
into error results at the call_tool boundary.
"""


class SpecflowError(Exception):
    """Base class for orchestrator errors."""
    pass


class ToolValidationError(SpecflowError):
    """Tool arguments failed validation."""

    def __init__(self, tool: str, message: str, path: str = None):
        self.tool = tool
        self.path = path
        super().__init__(f"[{tool}] {message}" + (f" at {path}" if path else ""))


class UnknownToolError(ToolValidationError):
    """No handler registered for the tool name."""

    def __init__(self, tool: str):
        super().__init__(tool, f"Unknown tool: {tool}")


class UnknownDeliverableError(ToolValidationError):
    """Deliverable type has no generator method."""

    def __init__(self, deliverable_type: str):
        self.deliverable_type = deliverable_type
        super().__init__("generate_deliverable", f"Unknown deliverable type: {deliverable_type}")


class StateWriteError(SpecflowError):
    """A durable write to the state directory failed."""

    def __init__(self, path, cause: Exception):
        self.file_path = path
        self.cause = cause
        super().__init__(f"Failed to write {path}: {cause}")


class TransitionError(SpecflowError):
    """Phase transition pipeline failed before commit."""

    def __init__(self, from_phase: str, to_phase: str, message: str):
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Phase transition from {from_phase} to {to_phase} failed: {message}")


class DependenciesNotBound(SpecflowError):
    """Transition hooks used before bind_dependencies()."""
    pass


class AgentNotFound(SpecflowError):
    """Agent persona file does not exist."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent not found: {agent_id}")


class AgentRunError(SpecflowError):
    """Agent CLI run did not complete successfully."""

    def __init__(self, agent_id: str, message: str):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} failed: {message}")
