"""
Sequential chain workflow.

START -> step_1 -> step_2 -> ... -> step_n -> END, the shape of a prompt
chain where every call builds on the previous one's output.
"""

from typing import Any, Sequence, Tuple, Union

from stepgraph.engine.graph import CompiledGraph, StateGraph
from stepgraph.engine.node import END, START, StepFunction

ChainStep = Union[StepFunction, Tuple[str, StepFunction]]


def create_chain_workflow(
    schema: Any,
    steps: Sequence[ChainStep],
    name: str = "chain",
    description: str = "",
) -> CompiledGraph:
    """
    Create a linear workflow running the steps in order.

    Args:
        schema: State schema (pydantic model, field mapping or StateSchema)
        steps: Step functions, or (name, step) pairs; unnamed steps take
            their name from the @node decorator or the function name
        name: Workflow name
        description: Human-readable description

    Returns:
        The compiled graph
    """
    if not steps:
        raise ValueError("A chain needs at least one step")

    graph = StateGraph(schema, name=name, description=description)

    previous = START
    for entry in steps:
        if isinstance(entry, tuple):
            step_name, step = entry
            graph.add_node(step_name, step)
        else:
            graph.add_node(entry)
            step_name = list(graph.nodes)[-1]
        graph.add_edge(previous, step_name)
        previous = step_name

    graph.add_edge(previous, END)
    return graph.compile()
