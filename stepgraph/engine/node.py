"""
Node Definition for Workflow Engine.

Nodes are the building blocks of a workflow. Each node wraps a step
function that receives a read-only view of the state and returns a
partial update: only the fields it wants to change.
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union
from dataclasses import dataclass
import asyncio
import inspect
import functools

from pydantic import BaseModel

from stepgraph.engine.errors import InvalidNodeError, StepExecutionError


# Special node names
START = "__START__"
END = "__END__"

RESERVED_NAMES = (START, END)

StepResult = Optional[Union[Mapping[str, Any], BaseModel]]
StepFunction = Callable[[Mapping[str, Any]], Union[StepResult, Awaitable[StepResult]]]


@dataclass
class Node:
    """
    A node in the workflow graph.

    Attributes:
        name: Unique identifier for the node
        step: Function that processes state (sync or async)
        description: Human-readable description
    """

    name: str
    step: StepFunction
    description: str = ""

    def __post_init__(self):
        """Validate the node after initialization."""
        if not self.name or not isinstance(self.name, str):
            raise InvalidNodeError("Node name cannot be empty")
        if self.name in RESERVED_NAMES:
            raise InvalidNodeError(f"Node name '{self.name}' is reserved")
        if not callable(self.step):
            raise InvalidNodeError(f"Step for node '{self.name}' must be callable")

    @property
    def is_async(self) -> bool:
        """Check if the step is an async function."""
        return inspect.iscoroutinefunction(self.step)

    async def execute(self, state: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Execute the step with a read-only view of the state.

        Handles both sync and async steps transparently.

        Args:
            state: The current state data (read-only)

        Returns:
            The partial state update produced by the step
        """
        try:
            if self.is_async:
                result = await self.step(state)
            else:
                # Run sync step in executor to not block
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(
                    None,
                    functools.partial(self.step, state)
                )

            # A step that returns nothing leaves the state unchanged
            if result is None:
                return {}

            if isinstance(result, BaseModel):
                return result.model_dump(exclude_unset=True)

            if isinstance(result, Mapping):
                return dict(result)

            raise TypeError(
                f"Node '{self.name}' step must return a mapping or None, "
                f"got {type(result).__name__}"
            )

        except Exception as e:
            raise StepExecutionError(self.name, e) from e

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the node to a dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "step": getattr(self.step, "__name__", str(self.step)),
        }


def node(name: Optional[str] = None, description: str = "") -> Callable:
    """
    Decorator to attach node metadata to a step function.

    StateGraph.add_node picks the name and description up when the step is
    added without an explicit name.

    Usage:
        @node(name="evaluate_post", description="Score the current draft")
        def evaluate(state):
            return {"evaluation": "approved"}

        graph.add_node(evaluate)
    """
    def decorator(func: Callable) -> Callable:
        func._node_metadata = {
            "name": name or func.__name__,
            "description": description or (func.__doc__ or "").strip(),
        }
        return func

    return decorator


def create_node_from_function(
    func: StepFunction,
    name: Optional[str] = None,
    description: str = ""
) -> Node:
    """
    Create a Node instance from a step function.

    Args:
        func: The step function
        name: Node name (defaults to the decorator name, then the function name)
        description: Human-readable description

    Returns:
        A Node instance
    """
    meta = getattr(func, "_node_metadata", {})
    return Node(
        name=name or meta.get("name") or getattr(func, "__name__", ""),
        step=func,
        description=description or meta.get("description") or (getattr(func, "__doc__", None) or "").strip(),
    )
