"""
Exceptions raised by the Workflow Engine.

Build-time errors are raised while a graph is being declared or compiled,
run-time errors while a compiled graph is being invoked. Every error derives
from GraphError so callers can catch the whole family at once.
"""

from typing import Any, List, Optional


class GraphError(Exception):
    """Base class for all engine errors."""


# ============================================================
# Build-time Errors
# ============================================================

class DuplicateNodeError(GraphError):
    """A node name was registered twice."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Node '{name}' already exists in the graph")


class UnknownNodeError(GraphError):
    """An edge references a node that was never registered."""

    def __init__(self, name: str, role: str = "node"):
        self.name = name
        self.role = role
        super().__init__(f"{role.capitalize()} '{name}' not found in graph")


class InvalidNodeError(GraphError, ValueError):
    """A node declaration is malformed (empty or reserved name, bad step)."""


class InvalidEdgeError(GraphError, ValueError):
    """An edge declaration is malformed (e.g. an edge leaving END)."""


class GraphValidationError(GraphError):
    """Aggregates every structural violation found by compile()."""

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        details = "; ".join(self.violations)
        super().__init__(f"Graph validation failed: {details}")


# ============================================================
# Run-time Errors
# ============================================================

class StateValidationError(GraphError, ValueError):
    """A state value does not fit the declared state schema."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class RoutingError(GraphError):
    """A router returned a label that does not resolve to a registered node."""

    def __init__(self, source: str, label: Any, message: Optional[str] = None):
        self.source = source
        self.label = label
        super().__init__(
            message or f"Router on node '{source}' returned unknown route '{label}'"
        )


class StepExecutionError(GraphError):
    """A step function failed. The original exception is kept as the cause."""

    def __init__(self, node: str, cause: BaseException):
        self.node = node
        self.cause = cause
        super().__init__(f"Error in node '{node}': {cause}")


class StepTimeoutError(StepExecutionError):
    """A step did not finish within the configured per-step deadline."""

    def __init__(self, node: str, timeout: float, cause: BaseException):
        self.timeout = timeout
        super().__init__(node, cause)
        self.args = (f"Node '{node}' timed out after {timeout}s",)


class RecursionLimitError(GraphError):
    """The run exceeded the configured number of supersteps."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Recursion limit ({limit} supersteps) exceeded")


class ExecutionTimeoutError(GraphError):
    """The whole invocation did not finish within its deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Execution timed out after {timeout}s")


class ExecutionCancelledError(GraphError):
    """The run was cancelled through Executor.cancel()."""
