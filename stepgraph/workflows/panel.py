"""
Parallel evaluation panel workflow.

START fans out to one node per criterion; each evaluator judges the
subject independently, and the aggregate node joins them once all have
delivered:

    START -+-> clarity  --+
           +-> depth    --+-> aggregate -> END
           +-> language --+
"""

from typing import Annotated, Any, Callable, Dict, List, Mapping, Optional
import logging

from pydantic import BaseModel

from stepgraph.engine.graph import CompiledGraph, StateGraph
from stepgraph.engine.node import END, START
from stepgraph.engine.state import MergeStrategy
from stepgraph.workflows.capabilities import Evaluation, Evaluator, Summarizer, call_capability


logger = logging.getLogger(__name__)

AGGREGATE_NODE = "aggregate"


class PanelState(BaseModel):
    """State of the evaluation panel."""
    subject: str
    reviews: Annotated[List[Dict[str, Any]], MergeStrategy.ACCUMULATE] = []
    scores: Annotated[List[float], MergeStrategy.ACCUMULATE] = []
    average_score: float = 0.0
    summary: str = ""


def _evaluation_step(criterion: str, evaluator: Evaluator) -> Callable:
    async def evaluate(state: Mapping[str, Any]) -> dict:
        raw = await call_capability(evaluator(state["subject"]))
        result = raw if isinstance(raw, Evaluation) else Evaluation.model_validate(raw)
        logger.info(f"{criterion}: score {result.score}")
        return {
            "reviews": [{"criterion": criterion, "feedback": result.feedback, "score": result.score}],
            "scores": [result.score],
        }

    evaluate.__name__ = f"evaluate_{criterion}"
    return evaluate


def _aggregate_step(summarize: Optional[Summarizer]) -> Callable:
    async def aggregate(state: Mapping[str, Any]) -> dict:
        scores = state["scores"]
        average = round(sum(scores) / len(scores), 2) if scores else 0.0

        # Sort by criterion so the summary does not depend on branch completion order
        reviews = sorted(state["reviews"], key=lambda r: r["criterion"])
        if summarize is not None:
            summary = await call_capability(summarize(reviews))
        else:
            summary = "\n".join(f"{r['criterion']}: {r['feedback']}" for r in reviews)

        return {"average_score": average, "summary": summary}

    return aggregate


def create_panel_workflow(
    evaluators: Mapping[str, Evaluator],
    summarize: Optional[Summarizer] = None,
    name: str = "evaluation_panel",
) -> CompiledGraph:
    """
    Create a fan-out/join workflow scoring a subject on several criteria.

    Args:
        evaluators: Criterion name -> evaluator; each name becomes a node
        summarize: Optional capability condensing the reviews; without it the
            summary lists each criterion's feedback
        name: Workflow name

    Returns:
        The compiled graph; invoke it with {"subject": ...}
    """
    if not evaluators:
        raise ValueError("An evaluation panel needs at least one evaluator")

    graph = StateGraph(PanelState, name=name, description="Parallel evaluation panel")
    graph.add_node(AGGREGATE_NODE, _aggregate_step(summarize), "Average the scores and summarize")

    for criterion, evaluator in evaluators.items():
        graph.add_node(criterion, _evaluation_step(criterion, evaluator), f"Evaluate {criterion}")
        graph.add_edge(START, criterion)
        graph.add_edge(criterion, AGGREGATE_NODE)

    graph.add_edge(AGGREGATE_NODE, END)
    return graph.compile()
