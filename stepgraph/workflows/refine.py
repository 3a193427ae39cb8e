"""
Iterative refine loop workflow.

    START -> generate -> evaluate -+-> END            (approved)
                          ^        |
                          |        +-> optimize       (needs_improvement)
                          +------------'

The loop ends when the writer approves the draft or the iteration counter
passes max_iteration. Every draft and every piece of feedback is kept in
the accumulating history fields.
"""

from typing import Annotated, Any, List, Literal, Mapping, Optional
import logging

from pydantic import BaseModel

from stepgraph.engine.graph import CompiledGraph, StateGraph
from stepgraph.engine.node import END, START, node
from stepgraph.engine.state import MergeStrategy
from stepgraph.workflows.capabilities import DraftWriter, Review, call_capability


logger = logging.getLogger(__name__)


class RefineState(BaseModel):
    """State of the refine loop."""
    topic: str
    draft: str = ""
    evaluation: Optional[Literal["approved", "needs_improvement"]] = None
    feedback: str = ""
    iteration: int = 1
    max_iteration: int = 5
    draft_history: Annotated[List[str], MergeStrategy.ACCUMULATE] = []
    feedback_history: Annotated[List[str], MergeStrategy.ACCUMULATE] = []


def review_route(state: Mapping[str, Any]) -> str:
    """
    Routing condition after evaluation.

    Returns:
    - "approved" if the draft was approved or the iteration budget is spent
    - "needs_improvement" otherwise
    """
    if state["evaluation"] == "approved" or state["iteration"] > state["max_iteration"]:
        logger.info(f"Draft accepted at iteration {state['iteration']}")
        return "approved"
    return "needs_improvement"


def create_refine_workflow(writer: DraftWriter, name: str = "refine_loop") -> CompiledGraph:
    """
    Create a generate/evaluate/optimize loop around an injected writer.

    Args:
        writer: Object implementing DraftWriter (usually backed by an LLM)
        name: Workflow name

    Returns:
        The compiled graph; invoke it with at least {"topic": ...}
    """

    @node(name="generate", description="Write the first draft")
    async def generate(state: Mapping[str, Any]) -> dict:
        draft = await call_capability(writer.generate(state["topic"], state["iteration"]))
        return {"draft": draft, "draft_history": [draft]}

    @node(name="evaluate", description="Judge the current draft")
    async def evaluate(state: Mapping[str, Any]) -> dict:
        raw = await call_capability(writer.evaluate(state["draft"]))
        review = raw if isinstance(raw, Review) else Review.model_validate(raw)
        return {
            "evaluation": review.evaluation,
            "feedback": review.feedback,
            "feedback_history": [review.feedback],
        }

    @node(name="optimize", description="Rewrite the draft using the feedback")
    async def optimize(state: Mapping[str, Any]) -> dict:
        draft = await call_capability(
            writer.optimize(state["draft"], state["feedback"], state["topic"])
        )
        return {
            "draft": draft,
            "draft_history": [draft],
            "iteration": state["iteration"] + 1,
        }

    graph = StateGraph(RefineState, name=name, description="Iterative draft refinement")
    graph.add_node(generate)
    graph.add_node(evaluate)
    graph.add_node(optimize)

    graph.add_edge(START, "generate")
    graph.add_edge("generate", "evaluate")
    graph.add_conditional_edges(
        "evaluate",
        review_route,
        {"approved": END, "needs_improvement": "optimize"},
    )
    graph.add_edge("optimize", "evaluate")

    return graph.compile()
