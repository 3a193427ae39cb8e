"""
Engine package - Graph builder, executor and state management.
"""

from stepgraph.engine.errors import (
    GraphError,
    DuplicateNodeError,
    UnknownNodeError,
    InvalidNodeError,
    InvalidEdgeError,
    GraphValidationError,
    StateValidationError,
    RoutingError,
    StepExecutionError,
    StepTimeoutError,
    RecursionLimitError,
    ExecutionTimeoutError,
    ExecutionCancelledError,
)
from stepgraph.engine.state import MergeStrategy, StateSchema, WorkflowState, StateManager
from stepgraph.engine.node import START, END, Node, node
from stepgraph.engine.graph import StateGraph, CompiledGraph, ConditionalEdge, RouteMode
from stepgraph.engine.executor import (
    Executor,
    ExecutionResult,
    ExecutionStatus,
    ExecutionStep,
    execute_graph,
)

__all__ = [
    "GraphError",
    "DuplicateNodeError",
    "UnknownNodeError",
    "InvalidNodeError",
    "InvalidEdgeError",
    "GraphValidationError",
    "StateValidationError",
    "RoutingError",
    "StepExecutionError",
    "StepTimeoutError",
    "RecursionLimitError",
    "ExecutionTimeoutError",
    "ExecutionCancelledError",
    "MergeStrategy",
    "StateSchema",
    "WorkflowState",
    "StateManager",
    "START",
    "END",
    "Node",
    "node",
    "StateGraph",
    "CompiledGraph",
    "ConditionalEdge",
    "RouteMode",
    "Executor",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionStep",
    "execute_graph",
]
